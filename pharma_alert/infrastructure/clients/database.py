"""
Cliente de conexión a MariaDB.

El servidor AsyncIO usa aiomysql para no bloquear el event loop mientras
espera a la BD. Centralizar la creación de conexiones aquí significa que si
la BD cambia de host, credenciales o motor, el cambio ocurre en un único lugar.
"""

import aiomysql
from pharma_alert.shared.config import DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD, STORE_TIMEOUT_SECONDS


async def get_async_connection():
    """
    Conexión async a MariaDB.
    autocommit=True deja cada UPDATE atómico por sí solo; las inserciones
    multi-fila abren su propia transacción explícita con begin().
    """
    return await aiomysql.connect(
        host=DB_HOST,
        port=DB_PORT,
        user=DB_USER,
        password=DB_PASSWORD,
        db=DB_NAME,
        autocommit=True,
        connect_timeout=STORE_TIMEOUT_SECONDS,
    )
