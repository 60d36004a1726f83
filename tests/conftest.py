"""
Fixtures compartidas para todos los tests.

El almacén en memoria reproduce los predicados de los UPDATE de MariaDB
(pending y sin vencer, dueño correcto, etc.) para poder probar el gestor
de solicitudes sin levantar una BD.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from pharma_alert.solicitudes.ciclo_vida import GestorSolicitudes
from pharma_alert.solicitudes.modelos import (
    EstadoDestinatario,
    EstadoSolicitud,
    FarmaciaCandidata,
)

ATENAS = ZoneInfo("Europe/Athens")

# Lunes 2 de marzo de 2026, 12:00 en Atenas (10:00 UTC)
T0 = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)

HORARIO_SEMANA = {
    dia: {"closed": False, "open": "08:00", "close": "21:00"}
    for dia in ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
}
HORARIO_CERRADO = {
    dia: {"closed": True}
    for dia in ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
}


def farmacia(farmacia_id: str, **campos) -> FarmaciaCandidata:
    """Candidata elegible por defecto: verificada, con dueño y abierta en T0."""
    datos = {
        "id": farmacia_id,
        "es_favorita": False,
        "verificada": True,
        "de_guardia": False,
        "tiene_dueno": True,
        "horario": HORARIO_SEMANA,
    }
    datos.update(campos)
    return FarmaciaCandidata(**datos)


# ============================================================================
# RELOJ Y EMISOR
# ============================================================================


class RelojFalso:

    def __init__(self, ahora: datetime = T0):
        self.ahora = ahora

    def __call__(self) -> datetime:
        return self.ahora

    def avanzar(self, **delta) -> datetime:
        self.ahora = self.ahora + timedelta(**delta)
        return self.ahora


class EmisorFalso:
    """Junta los eventos de cambio en vez de encolarlos en Celery."""

    def __init__(self):
        self.eventos: list[tuple[str, str, dict]] = []

    def __call__(self, tabla: str, evento: str, fila: dict) -> None:
        self.eventos.append((tabla, evento, fila))

    def de_tabla(self, tabla: str) -> list[tuple[str, dict]]:
        return [(evento, fila) for t, evento, fila in self.eventos if t == tabla]


# ============================================================================
# ALMACÉN EN MEMORIA
# ============================================================================


class AlmacenEnMemoria:
    """Misma interfaz que AlmacenMariaDB, sobre diccionarios."""

    def __init__(self, candidatas=None):
        self.candidatas = list(candidatas or [])
        self.solicitudes = {}
        self.destinatarios = {}
        # nombre de método → excepción a lanzar en la próxima llamada
        self.fallos = {}
        self.llamadas = []

    def _registrar(self, nombre: str) -> None:
        self.llamadas.append(nombre)
        if nombre in self.fallos:
            raise self.fallos.pop(nombre)

    def de_solicitud(self, solicitud_id: str) -> list:
        return [d for d in self.destinatarios.values() if d.solicitud_id == solicitud_id]

    # Lecturas

    async def obtener_candidatas(self, paciente_id):
        self._registrar("obtener_candidatas")
        return list(self.candidatas)

    async def obtener_solicitud(self, solicitud_id):
        self._registrar("obtener_solicitud")
        return self.solicitudes.get(solicitud_id)

    async def obtener_destinatario(self, destinatario_id):
        self._registrar("obtener_destinatario")
        return self.destinatarios.get(destinatario_id)

    async def obtener_destinatarios(self, solicitud_id):
        self._registrar("obtener_destinatarios")
        return self.de_solicitud(solicitud_id)

    async def listar_de_paciente(self, paciente_id):
        self._registrar("listar_de_paciente")
        propias = [s for s in self.solicitudes.values() if s.paciente_id == paciente_id]
        propias.sort(key=lambda s: s.creada_en, reverse=True)
        return [
            (s, sorted(self.de_solicitud(s.id), key=lambda d: d.actualizada_en, reverse=True))
            for s in propias
        ]

    async def listar_de_farmacia(self, farmacia_id):
        self._registrar("listar_de_farmacia")
        propios = [d for d in self.destinatarios.values() if d.farmacia_id == farmacia_id]
        propios.sort(key=lambda d: d.actualizada_en, reverse=True)
        return [(d, self.solicitudes[d.solicitud_id]) for d in propios]

    # Escrituras

    async def insertar_solicitud(self, solicitud, destinatarios):
        self._registrar("insertar_solicitud")
        if solicitud.id in self.solicitudes:
            return False
        self.solicitudes[solicitud.id] = solicitud
        for destinatario in destinatarios:
            self.destinatarios[destinatario.id] = destinatario
        return True

    async def marcar_cancelada(self, solicitud_id, paciente_id, ahora):
        self._registrar("marcar_cancelada")
        solicitud = self.solicitudes.get(solicitud_id)
        if (
            solicitud is None
            or solicitud.paciente_id != paciente_id
            or solicitud.estado != EstadoSolicitud.PENDING
            or solicitud.expira_en <= ahora
        ):
            return False
        self.solicitudes[solicitud_id] = replace(solicitud, estado=EstadoSolicitud.CANCELLED, actualizada_en=ahora)
        return True

    async def cancelar_destinatarios(self, solicitud_id, ahora):
        self._registrar("cancelar_destinatarios")
        cantidad = 0
        for destinatario in self.de_solicitud(solicitud_id):
            if destinatario.estado != EstadoDestinatario.CANCELLED:
                self.destinatarios[destinatario.id] = replace(
                    destinatario, estado=EstadoDestinatario.CANCELLED, actualizada_en=ahora
                )
                cantidad += 1
        return cantidad

    async def registrar_respuesta(self, destinatario_id, farmacia_id, decision, ahora):
        self._registrar("registrar_respuesta")
        destinatario = self.destinatarios.get(destinatario_id)
        if destinatario is None or destinatario.farmacia_id != farmacia_id:
            return False
        solicitud = self.solicitudes[destinatario.solicitud_id]
        if (
            destinatario.estado != EstadoDestinatario.PENDING
            or solicitud.estado != EstadoSolicitud.PENDING
            or solicitud.expira_en <= ahora
        ):
            return False
        self.destinatarios[destinatario_id] = replace(
            destinatario,
            estado=EstadoDestinatario(decision),
            respondida_en=ahora,
            actualizada_en=ahora,
        )
        return True

    async def expirar_pendientes(self, ahora):
        self._registrar("expirar_pendientes")
        cantidad = 0
        for solicitud in list(self.solicitudes.values()):
            if solicitud.estado == EstadoSolicitud.PENDING and solicitud.expira_en <= ahora:
                self.solicitudes[solicitud.id] = replace(
                    solicitud, estado=EstadoSolicitud.EXPIRED, actualizada_en=ahora
                )
                cantidad += 1
        return cantidad

    async def cerrar(self):
        self._registrar("cerrar")


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def reloj() -> RelojFalso:
    return RelojFalso()


@pytest.fixture
def emisor() -> EmisorFalso:
    return EmisorFalso()


@pytest.fixture
def candidatas() -> list[FarmaciaCandidata]:
    """Tres farmacias elegibles; B y C son favoritas del paciente."""
    return [
        farmacia("farm-a"),
        farmacia("farm-b", es_favorita=True),
        farmacia("farm-c", es_favorita=True),
    ]


@pytest.fixture
def almacen(candidatas) -> AlmacenEnMemoria:
    return AlmacenEnMemoria(candidatas)


@pytest.fixture
def gestor(almacen, reloj, emisor) -> GestorSolicitudes:
    return GestorSolicitudes(almacen, reloj=reloj, emisor=emisor, zona=ATENAS)
