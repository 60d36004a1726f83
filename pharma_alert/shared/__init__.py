"""
Módulo compartido con configuraciones y utilidades usadas por todos los componentes.
"""

# Exponemos las configuraciones más usadas
from .config import (
    SERVER_LISTEN_HOST,
    SERVER_PORT,
    DB_HOST,
    DB_PORT,
    DB_NAME,
    DB_USER,
    DB_PASSWORD,
    STORE_TIMEOUT_SECONDS,
    REDIS_HOST,
    REDIS_PORT,
    REDIS_DB,
    REDIS_CHANGES_CHANNEL,
    PHARMACY_TIMEZONE,
    DEFAULT_REQUEST_DURATION
)

# Exponemos la función para obtener loggers configurados
from .logger import obtener_logger

# Exponemos las funciones del protocolo de comunicación
from .protocol import (
    enviar_mensaje,
    recibir_mensaje
)

from .exceptions import ErrorPharmaAlert

__all__ = [
    'SERVER_LISTEN_HOST', 'SERVER_PORT',
    'DB_HOST', 'DB_PORT', 'DB_NAME', 'DB_USER', 'DB_PASSWORD',
    'STORE_TIMEOUT_SECONDS',
    'REDIS_HOST', 'REDIS_PORT', 'REDIS_DB', 'REDIS_CHANGES_CHANNEL',
    'PHARMACY_TIMEZONE', 'DEFAULT_REQUEST_DURATION',
    'obtener_logger',
    'enviar_mensaje', 'recibir_mensaje',
    'ErrorPharmaAlert'
]
