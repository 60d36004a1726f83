"""
Paquete raíz de PharmaAlert.

Estructura interna:
  shared/          → configuración, logger, excepciones y protocolo compartidos
  solicitudes/     → dominio: horarios, enrutamiento, ciclo de vida y estados
  infrastructure/  → conexiones a servicios externos, repositorios y almacén
  server/          → servidor AsyncIO (TCP + canal de cambios Redis)
  workers/         → tarea Celery que publica los cambios de filas
"""
