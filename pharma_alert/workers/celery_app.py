"""
Configuración de la instancia Celery.

El worker solo publica eventos de cambio en el canal Redis. No hay
tareas periódicas: los vencimientos se reconcilian al leer, no con Beat.
"""

from celery import Celery

from pharma_alert.shared.config import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
)

celery_app = Celery("pharma_alert")

celery_app.conf.update(
    broker_url=CELERY_BROKER_URL,
    result_backend=CELERY_RESULT_BACKEND,

    # Los eventos se serializan como JSON plano: tabla, evento y fila.
    task_serializer="json",
    accept_content=["json"],

    # Confirmar la tarea recién al terminar: si el worker muere a mitad,
    # el broker la reentrega. Un evento duplicado es inofensivo.
    task_acks_late=True,

    # Nadie consulta el resultado de notificar_cambio.
    task_ignore_result=True,

    include=["pharma_alert.workers.tasks"],
)
