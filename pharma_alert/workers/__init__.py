"""
Paquete de workers de PharmaAlert.

Contiene la configuración de Celery (celery_app.py) y la tarea
notificar_cambio (tasks.py), que publica en Redis los cambios de
solicitudes y destinatarios para que el servidor despierte a los
pacientes y farmacias afectados.

La instancia `celery_app` se re-exporta aquí para que Celery la descubra
al usar `-A pharma_alert.workers` desde la línea de comandos.
"""

from pharma_alert.workers.celery_app import celery_app

__all__ = ["celery_app"]
