"""
Reglas de estado efectivo.

El estado guardado en la BD es un caché de buena fe: la verdad se deriva
en cada lectura combinando los campos guardados con el reloj. Una
solicitud pendiente cuyo vencimiento ya pasó está expirada aunque nadie
haya escrito "expired" todavía.
"""

import math
from collections import Counter
from datetime import datetime
from typing import Iterable

from pharma_alert.solicitudes.modelos import (
    Destinatario,
    EstadoDestinatario,
    EstadoSolicitud,
    Solicitud,
)

# Pestañas de la bandeja de la farmacia
FILTROS = ("pending", "accepted", "rejected", "cancelled-expired", "all")

_ETIQUETAS_RESTANTE = {
    "en": {
        "vencida": "Expired",
        "horas": "Expires in {horas}h {minutos}m",
        "minutos": "Expires in {minutos}m",
    },
    "el": {
        "vencida": "Έληξε",
        "horas": "Λήγει σε {horas}ω {minutos}λ",
        "minutos": "Λήγει σε {minutos}λ",
    },
}


def estado_efectivo_solicitud(solicitud: Solicitud, ahora: datetime) -> EstadoSolicitud:
    """cancelled gana siempre; después manda el reloj; si no, el estado guardado."""
    if solicitud.estado == EstadoSolicitud.CANCELLED:
        return EstadoSolicitud.CANCELLED
    if ahora >= solicitud.expira_en:
        return EstadoSolicitud.EXPIRED
    return solicitud.estado


def estado_efectivo_destinatario(
    destinatario: Destinatario, solicitud: Solicitud, ahora: datetime
) -> EstadoSolicitud:
    """
    Estado que ve la farmacia. Una solicitud cerrada tapa la respuesta
    individual: si el paciente canceló o venció el plazo, la aceptación
    de la farmacia ya no importa para mostrar.
    """
    if solicitud.estado == EstadoSolicitud.CANCELLED or destinatario.estado == EstadoDestinatario.CANCELLED:
        return EstadoSolicitud.CANCELLED
    if solicitud.estado == EstadoSolicitud.EXPIRED or ahora >= solicitud.expira_en:
        return EstadoSolicitud.EXPIRED
    return EstadoSolicitud(destinatario.estado.value)


def coincide_filtro(estado: EstadoSolicitud, filtro: str) -> bool:
    if filtro == "all":
        return True
    if filtro == "cancelled-expired":
        return estado in (EstadoSolicitud.CANCELLED, EstadoSolicitud.EXPIRED)
    return estado.value == filtro


def contar_por_estado(estados: Iterable[EstadoSolicitud]) -> dict:
    """Contadores de las pestañas: cancelados y expirados van juntos."""
    conteo = Counter(estados)
    return {
        "pending": conteo[EstadoSolicitud.PENDING],
        "accepted": conteo[EstadoSolicitud.ACCEPTED],
        "rejected": conteo[EstadoSolicitud.REJECTED],
        "cancelled_expired": conteo[EstadoSolicitud.CANCELLED] + conteo[EstadoSolicitud.EXPIRED],
        "all": sum(conteo.values()),
    }


def etiqueta_tiempo_restante(expira_en: datetime | None, ahora: datetime, idioma: str = "en") -> str:
    if expira_en is None:
        return "-"
    etiquetas = _ETIQUETAS_RESTANTE.get(idioma, _ETIQUETAS_RESTANTE["en"])

    segundos = (expira_en - ahora).total_seconds()
    if segundos <= 0:
        return etiquetas["vencida"]

    # Redondeo hacia arriba: con 30 segundos restantes se muestra "1m", no "0m".
    minutos_totales = math.ceil(segundos / 60)
    horas, minutos = divmod(minutos_totales, 60)
    if horas > 0:
        return etiquetas["horas"].format(horas=horas, minutos=minutos)
    return etiquetas["minutos"].format(minutos=minutos)


def resumir_respuestas(destinatarios: Iterable[Destinatario], solicitud: Solicitud, ahora: datetime) -> dict:
    """Respuestas de las farmacias a una solicitud del paciente, agrupadas por estado efectivo."""
    return contar_por_estado(estado_efectivo_destinatario(d, solicitud, ahora) for d in destinatarios)
