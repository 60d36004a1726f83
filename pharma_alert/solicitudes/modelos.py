"""
Tipos del dominio de solicitudes de medicamentos.

  Solicitud         → lo que pide un paciente, con vida acotada.
  Destinatario      → la copia de una solicitud que ve (y responde) una farmacia.
  FarmaciaCandidata → datos de solo lectura del directorio de farmacias,
                      ya cruzados con los favoritos del paciente.

Los valores de los enums son los mismos que se guardan en la BD.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum


class EstadoSolicitud(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class EstadoDestinatario(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @classmethod
    def _missing_(cls, valor):
        # Filas viejas guardaron el rechazo como "declined".
        if valor == "declined":
            return cls.REJECTED
        return None


class FormaFarmaceutica(str, Enum):
    TABLET = "tablet"
    CAPSULE = "capsule"
    SYRUP = "syrup"
    CREAM = "cream"
    DROPS = "drops"
    SPRAY = "spray"
    INJECTION = "injection"
    OTHER = "other"


class Urgencia(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"


# Estados finales: una vez alcanzados, nunca se vuelve a pending.
ESTADOS_FINALES_SOLICITUD = frozenset({
    EstadoSolicitud.ACCEPTED,
    EstadoSolicitud.REJECTED,
    EstadoSolicitud.CANCELLED,
    EstadoSolicitud.EXPIRED,
})

DECISIONES = frozenset({EstadoDestinatario.ACCEPTED, EstadoDestinatario.REJECTED})

# Duraciones que el paciente puede elegir al enviar la solicitud.
DURACIONES = {
    "30m": timedelta(minutes=30),
    "1h": timedelta(hours=1),
    "2h": timedelta(hours=2),
    "3h": timedelta(hours=3),
    "5h": timedelta(hours=5),
}


@dataclass(frozen=True)
class Solicitud:
    id: str
    paciente_id: str
    medicamento: str
    estado: EstadoSolicitud
    creada_en: datetime
    expira_en: datetime
    actualizada_en: datetime
    dosis: str | None = None
    forma: FormaFarmaceutica | None = None
    urgencia: Urgencia | None = None

    def como_dict(self) -> dict:
        return {
            "id": self.id,
            "paciente_id": self.paciente_id,
            "medicamento": self.medicamento,
            "dosis": self.dosis,
            "forma": self.forma,
            "urgencia": self.urgencia,
            "estado": self.estado,
            "creada_en": self.creada_en,
            "expira_en": self.expira_en,
            "actualizada_en": self.actualizada_en,
        }


@dataclass(frozen=True)
class Destinatario:
    id: str
    solicitud_id: str
    farmacia_id: str
    estado: EstadoDestinatario
    actualizada_en: datetime
    respondida_en: datetime | None = None

    def como_dict(self) -> dict:
        return {
            "id": self.id,
            "solicitud_id": self.solicitud_id,
            "farmacia_id": self.farmacia_id,
            "estado": self.estado,
            "respondida_en": self.respondida_en,
            "actualizada_en": self.actualizada_en,
        }


@dataclass(frozen=True)
class FarmaciaCandidata:
    id: str
    es_favorita: bool = False
    verificada: bool = False
    de_guardia: bool = False
    tiene_dueno: bool = False
    # Horario semanal tal como viene del directorio: dict, texto JSON o None.
    horario: dict | str | None = None


@dataclass(frozen=True)
class VistaDestinatario:
    """Lo que ve una farmacia: su fila más los campos de consulta de la solicitud."""

    destinatario: Destinatario
    solicitud: Solicitud
    # Puede valer "expired" aunque el destinatario nunca guarde ese estado.
    estado_efectivo: EstadoSolicitud
    tiempo_restante: str

    def como_dict(self) -> dict:
        return {
            **self.destinatario.como_dict(),
            "estado_efectivo": self.estado_efectivo,
            "tiempo_restante": self.tiempo_restante,
            "solicitud": self.solicitud.como_dict(),
        }


@dataclass(frozen=True)
class VistaSolicitud:
    """Lo que ve un paciente: su solicitud y el resumen de respuestas de las farmacias."""

    solicitud: Solicitud
    estado_efectivo: EstadoSolicitud
    tiempo_restante: str
    destinatarios: list[dict] = field(default_factory=list)
    respuestas: dict = field(default_factory=dict)

    def como_dict(self) -> dict:
        return {
            **self.solicitud.como_dict(),
            "estado_efectivo": self.estado_efectivo,
            "tiempo_restante": self.tiempo_restante,
            "destinatarios": self.destinatarios,
            "respuestas": self.respuestas,
        }
