"""
Paquete de infraestructura de PharmaAlert.

Estructura interna:
  clients/      → conexiones a servicios externos (MariaDB, Redis)
  repositories/ → consultas SQL por entidad del dominio
  almacen.py    → adaptador con timeouts y errores del dominio

Todo se re-exporta desde aquí para que el resto del sistema
importe desde pharma_alert.infrastructure sin conocer la estructura interna.
"""

from pharma_alert.infrastructure.clients import (
    get_async_connection,
    get_redis_client,
    get_async_redis_client,
)
from pharma_alert.infrastructure.almacen import AlmacenMariaDB

__all__ = [
    "get_async_connection",
    "get_redis_client",
    "get_async_redis_client",
    "AlmacenMariaDB",
]
