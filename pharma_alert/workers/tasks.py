import json
from pharma_alert.workers.celery_app import celery_app
from pharma_alert.shared.logger import obtener_logger
from pharma_alert.shared.config import REDIS_CHANGES_CHANNEL
from pharma_alert.infrastructure.clients import get_redis_client

logger = obtener_logger("worker")


@celery_app.task(bind=True, max_retries=3)
def notificar_cambio(self, tabla: str, evento: str, fila: dict):
    """
    Publica un evento de cambio de fila en el canal Redis.

    Lo encola el gestor de solicitudes después de cada escritura exitosa
    (solicitud creada o cancelada, respuesta de una farmacia). El servidor
    lo recibe y despierta a los suscriptores que coinciden, que vuelven a
    listar desde el almacén.

    La entrega es al menos una vez: si Redis no está disponible se reintenta,
    y un duplicado solo provoca un refresco de más.
    """
    try:
        payload = json.dumps({
            "tabla": tabla,
            "evento": evento,
            "fila": fila
        }, ensure_ascii=False)

        cliente_redis = get_redis_client()

        # publish() devuelve cuántos suscriptores recibieron el mensaje.
        # Con 0 no se pierde nada: quien vuelva a conectarse lista desde el almacén.
        suscriptores = cliente_redis.publish(REDIS_CHANGES_CHANNEL, payload)
        logger.info(
            f"[task_id={self.request.id}] "
            f"Cambio {evento} en {tabla} publicado. Suscriptores activos: {suscriptores}"
        )
        return suscriptores

    except Exception as e:
        logger.error(
            f"[task_id={self.request.id}] "
            f"Error publicando cambio {evento} en {tabla}: {e}"
        )
        raise self.retry(exc=e, countdown=5)
