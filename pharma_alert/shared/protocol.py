"""
Protocolo de comunicación TCP con prefijo de longitud.

Define enviar_mensaje() y recibir_mensaje(), que usan el servidor y
cualquier interfaz de paciente o farmacia para intercambiar diccionarios
por TCP. Cada mensaje se serializa como JSON y se antepone un prefijo
de 4 bytes (big-endian) con la longitud del payload.

Las solicitudes y destinatarios llevan timestamps y enums: el serializador
los convierte a ISO 8601 y a su valor de texto respectivamente.
"""

import asyncio
import json
import struct
from datetime import datetime
from enum import Enum

# "!I": big-endian, unsigned int de 4 bytes
LONGITUD_PREFIJO = 4

# Un mensaje más grande que esto se considera corrupto y se corta la conexión.
TAMANO_MAXIMO_MENSAJE = 4 * 1024 * 1024


def _serializar_extra(valor):
    if isinstance(valor, datetime):
        return valor.isoformat()
    if isinstance(valor, Enum):
        return valor.value
    raise TypeError(f"Tipo no serializable: {type(valor).__name__}")


def codificar_mensaje(datos: dict) -> bytes:
    """Serializa un diccionario y le antepone el prefijo de longitud."""
    mensaje_json = json.dumps(datos, ensure_ascii=False, default=_serializar_extra).encode("utf-8")
    return struct.pack("!I", len(mensaje_json)) + mensaje_json


async def enviar_mensaje(writer, datos: dict) -> None:
    """
    Envía un diccionario por TCP con el prefijo de 4 bytes de longitud.

    :param writer: asyncio.StreamWriter hacia el otro extremo
    :param datos:  diccionario con los datos a enviar
    """
    writer.write(codificar_mensaje(datos))
    await writer.drain()


async def recibir_mensaje(reader) -> dict | None:
    """
    Lee un mensaje con prefijo de longitud y lo deserializa.
    Devuelve None si el otro extremo cerró la conexión limpiamente
    entre mensajes. Un cierre a mitad de mensaje propaga IncompleteReadError.

    :param reader: asyncio.StreamReader desde el otro extremo
    """
    try:
        prefijo = await reader.readexactly(LONGITUD_PREFIJO)
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            return None
        raise

    longitud = struct.unpack("!I", prefijo)[0]
    if longitud > TAMANO_MAXIMO_MENSAJE:
        raise ValueError(f"Mensaje de {longitud} bytes supera el máximo permitido.")

    datos_crudos = await reader.readexactly(longitud)
    return json.loads(datos_crudos.decode("utf-8"))
