"""
Dominio de solicitudes de medicamentos.

  modelos.py      → tipos, enums y duraciones admitidas
  horarios.py     → evaluación de horarios semanales de las farmacias
  enrutamiento.py → qué farmacias reciben una solicitud y en qué orden
  estados.py      → estado efectivo derivado del estado guardado y el reloj
  ciclo_vida.py   → GestorSolicitudes: crear, cancelar, responder y listar
  expiracion.py   → barrido perezoso de solicitudes vencidas
  notificador.py  → suscripciones a los cambios de filas publicados en Redis

No re-exporta nada: la capa de almacén importa los modelos desde acá y
el gestor importa la capa de almacén, así que cada uno se importa por
su módulo.
"""
