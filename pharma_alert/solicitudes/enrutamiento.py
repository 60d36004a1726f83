"""
Motor de elegibilidad y ruteo.

Decide a qué farmacias llega una solicitud nueva. Es una función pura
de (candidatas, favoritas, instante): no guarda estado y se puede volver
a correr cuantas veces haga falta.

No garantiza que la farmacia siga abierta cuando alguien responda: lo
que vale es la foto del momento del envío.
"""

from datetime import datetime, tzinfo
from typing import Iterable

from pharma_alert.solicitudes.horarios import esta_abierta_ahora
from pharma_alert.solicitudes.modelos import FarmaciaCandidata


def es_elegible(farmacia: FarmaciaCandidata, ahora: datetime, zona: tzinfo | None = None) -> bool:
    """
    Una farmacia es elegible si tiene dueño registrado, está verificada,
    y se la puede alcanzar ahora: está de guardia o su horario la da abierta.
    """
    if not (farmacia.tiene_dueno and farmacia.verificada):
        return False
    return farmacia.de_guardia or esta_abierta_ahora(farmacia.horario, ahora, zona)


def calcular_destinatarios(
    candidatas: Iterable[FarmaciaCandidata],
    favoritas: Iterable[str],
    ahora: datetime,
    zona: tzinfo | None = None,
) -> list[str]:
    """
    Devuelve los ids de las farmacias a notificar: primero las favoritas
    del paciente, después el resto, respetando el orden de entrada dentro
    de cada grupo y sin ids repetidos.

    Una lista vacía es un resultado válido: quien llama decide qué hacer
    (el gestor de solicitudes se niega a crear una solicitud sin destinatarios).
    """
    favoritas = set(favoritas)
    primeras, resto = [], []
    vistas = set()

    for farmacia in candidatas:
        if farmacia.id in vistas:
            continue
        if not es_elegible(farmacia, ahora, zona):
            continue
        vistas.add(farmacia.id)

        if farmacia.id in favoritas or farmacia.es_favorita:
            primeras.append(farmacia.id)
        else:
            resto.append(farmacia.id)

    return primeras + resto
