"""
Reconciliador de vencimientos.

No hay un proceso programado que expire solicitudes: cada lectura corre
primero este barrido. El UPDATE solo toca filas pending con el plazo
cumplido, así que repetirlo, o correrlo desde varios lectores a la vez,
no cambia nada una vez barridas.

Los destinatarios de una solicitud expirada no se tocan: su estado
guardado queda tapado por la regla de estado efectivo al leer.
"""

from datetime import datetime

from pharma_alert.shared.exceptions import ErrorAlmacen
from pharma_alert.shared.logger import obtener_logger

logger = obtener_logger("expiracion")


async def reconciliar_expiradas(almacen, ahora: datetime) -> int:
    """
    Pasa a expired las solicitudes pendientes vencidas y devuelve cuántas.

    La escritura es solo un caché: si el almacén falla acá, la lectura que
    viene después igual deriva "expired" del reloj. Por eso el error se
    registra y no se propaga.
    """
    try:
        barridas = await almacen.expirar_pendientes(ahora)
    except ErrorAlmacen as e:
        logger.error(f"Barrido de vencimientos fallido ({e.codigo}); se sigue con la lectura.")
        return 0

    if barridas:
        logger.info(f"{barridas} solicitud(es) pendiente(s) marcada(s) como expired.")
    return barridas
