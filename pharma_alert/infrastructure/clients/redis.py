"""
Cliente de Redis.
Provee conexiones sync (para el worker de Celery que publica cambios) y
async (para el notificador que escucha el canal dentro del servidor).
"""

import redis
import redis.asyncio as aioredis
from pharma_alert.shared.config import REDIS_HOST, REDIS_PORT, REDIS_DB, STORE_TIMEOUT_SECONDS


def get_redis_client() -> redis.Redis:
    """
    Cliente Redis sincrónico para los workers de Celery.
    Usado para publicar eventos de cambio en el canal pub/sub.
    """
    return redis.Redis(
        host=REDIS_HOST,
        port=REDIS_PORT,
        db=REDIS_DB,
        socket_connect_timeout=STORE_TIMEOUT_SECONDS,
        socket_timeout=STORE_TIMEOUT_SECONDS,
    )


def get_async_redis_client() -> aioredis.Redis:
    """
    Cliente Redis asíncrono para el servidor AsyncIO.
    Sin socket_timeout: la suscripción pasa largos ratos esperando mensajes.
    """
    return aioredis.Redis(
        host=REDIS_HOST,
        port=REDIS_PORT,
        db=REDIS_DB,
        socket_connect_timeout=STORE_TIMEOUT_SECONDS,
    )
