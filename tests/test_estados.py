"""
Tests de las reglas de estado efectivo, contadores y etiquetas.
"""

from datetime import timedelta

import pytest

from pharma_alert.solicitudes.estados import (
    coincide_filtro,
    contar_por_estado,
    estado_efectivo_destinatario,
    estado_efectivo_solicitud,
    etiqueta_tiempo_restante,
    resumir_respuestas,
)
from pharma_alert.solicitudes.modelos import (
    Destinatario,
    EstadoDestinatario,
    EstadoSolicitud,
    Solicitud,
)
from tests.conftest import T0

UNA_HORA = timedelta(hours=1)


def solicitud(estado=EstadoSolicitud.PENDING, expira_en=T0 + UNA_HORA) -> Solicitud:
    return Solicitud(
        id="sol-1",
        paciente_id="pac-1",
        medicamento="Depon",
        estado=estado,
        creada_en=T0,
        expira_en=expira_en,
        actualizada_en=T0,
    )


def destinatario(estado=EstadoDestinatario.PENDING, farmacia_id="farm-a") -> Destinatario:
    return Destinatario(
        id=f"dest-{farmacia_id}",
        solicitud_id="sol-1",
        farmacia_id=farmacia_id,
        estado=estado,
        actualizada_en=T0,
    )


class TestEstadoEfectivoSolicitud:

    def test_pendiente_antes_del_vencimiento(self):
        assert estado_efectivo_solicitud(solicitud(), T0) == EstadoSolicitud.PENDING

    def test_vence_justo_en_expira_en(self):
        assert estado_efectivo_solicitud(solicitud(), T0 + UNA_HORA) == EstadoSolicitud.EXPIRED

    def test_vencida_sin_que_nadie_escriba(self):
        assert estado_efectivo_solicitud(solicitud(), T0 + timedelta(minutes=61)) == EstadoSolicitud.EXPIRED

    def test_cancelada_gana_sobre_el_reloj(self):
        cancelada = solicitud(EstadoSolicitud.CANCELLED)
        assert estado_efectivo_solicitud(cancelada, T0 + timedelta(days=1)) == EstadoSolicitud.CANCELLED

    def test_expirada_guardada(self):
        assert estado_efectivo_solicitud(solicitud(EstadoSolicitud.EXPIRED), T0) == EstadoSolicitud.EXPIRED


class TestEstadoEfectivoDestinatario:

    def test_refleja_la_respuesta_mientras_la_solicitud_sigue_abierta(self):
        aceptado = destinatario(EstadoDestinatario.ACCEPTED)
        assert estado_efectivo_destinatario(aceptado, solicitud(), T0) == EstadoSolicitud.ACCEPTED

    def test_solicitud_cancelada_tapa_la_respuesta(self):
        aceptado = destinatario(EstadoDestinatario.ACCEPTED)
        cancelada = solicitud(EstadoSolicitud.CANCELLED)
        assert estado_efectivo_destinatario(aceptado, cancelada, T0) == EstadoSolicitud.CANCELLED

    def test_destinatario_cancelado(self):
        cancelado = destinatario(EstadoDestinatario.CANCELLED)
        assert estado_efectivo_destinatario(cancelado, solicitud(), T0) == EstadoSolicitud.CANCELLED

    def test_solicitud_vencida_por_reloj(self):
        aceptado = destinatario(EstadoDestinatario.ACCEPTED)
        efectivo = estado_efectivo_destinatario(aceptado, solicitud(), T0 + timedelta(hours=2))
        assert efectivo == EstadoSolicitud.EXPIRED

    def test_solicitud_expirada_guardada_aunque_el_reloj_no_llegue(self):
        expirada = solicitud(EstadoSolicitud.EXPIRED)
        assert estado_efectivo_destinatario(destinatario(), expirada, T0) == EstadoSolicitud.EXPIRED

    def test_declined_se_lee_como_rejected(self):
        viejo = destinatario(EstadoDestinatario("declined"))
        assert estado_efectivo_destinatario(viejo, solicitud(), T0) == EstadoSolicitud.REJECTED


class TestFiltrosYContadores:

    @pytest.mark.parametrize(
        "estado, filtro, esperado",
        [
            (EstadoSolicitud.PENDING, "pending", True),
            (EstadoSolicitud.PENDING, "accepted", False),
            (EstadoSolicitud.CANCELLED, "cancelled-expired", True),
            (EstadoSolicitud.EXPIRED, "cancelled-expired", True),
            (EstadoSolicitud.REJECTED, "cancelled-expired", False),
            (EstadoSolicitud.REJECTED, "all", True),
        ],
    )
    def test_coincide_filtro(self, estado, filtro, esperado):
        assert coincide_filtro(estado, filtro) is esperado

    def test_contar_por_estado(self):
        estados = [
            EstadoSolicitud.PENDING,
            EstadoSolicitud.PENDING,
            EstadoSolicitud.ACCEPTED,
            EstadoSolicitud.CANCELLED,
            EstadoSolicitud.EXPIRED,
        ]
        assert contar_por_estado(estados) == {
            "pending": 2,
            "accepted": 1,
            "rejected": 0,
            "cancelled_expired": 2,
            "all": 5,
        }

    def test_contar_sin_estados(self):
        assert contar_por_estado([])["all"] == 0

    def test_resumir_respuestas(self):
        destinatarios = [
            destinatario(EstadoDestinatario.ACCEPTED, "a"),
            destinatario(EstadoDestinatario.REJECTED, "b"),
            destinatario(EstadoDestinatario.PENDING, "c"),
        ]
        resumen = resumir_respuestas(destinatarios, solicitud(), T0)
        assert (resumen["accepted"], resumen["rejected"], resumen["pending"]) == (1, 1, 1)

    def test_resumir_respuestas_de_solicitud_vencida(self):
        destinatarios = [destinatario(EstadoDestinatario.ACCEPTED, "a"), destinatario(farmacia_id="b")]
        resumen = resumir_respuestas(destinatarios, solicitud(), T0 + timedelta(hours=2))
        assert resumen["cancelled_expired"] == 2


class TestEtiquetaTiempoRestante:

    @pytest.mark.parametrize(
        "restante, esperado",
        [
            (timedelta(minutes=65), "Expires in 1h 5m"),
            (timedelta(hours=2), "Expires in 2h 0m"),
            (timedelta(minutes=7), "Expires in 7m"),
            (timedelta(seconds=30), "Expires in 1m"),
            (timedelta(0), "Expired"),
            (timedelta(minutes=-5), "Expired"),
        ],
    )
    def test_etiquetas_en_ingles(self, restante, esperado):
        assert etiqueta_tiempo_restante(T0 + restante, T0) == esperado

    def test_etiquetas_en_griego(self):
        assert etiqueta_tiempo_restante(T0 + timedelta(minutes=65), T0, "el") == "Λήγει σε 1ω 5λ"
        assert etiqueta_tiempo_restante(T0 - timedelta(minutes=1), T0, "el") == "Έληξε"

    def test_idioma_desconocido_usa_ingles(self):
        assert etiqueta_tiempo_restante(T0 + timedelta(minutes=3), T0, "fr") == "Expires in 3m"

    def test_sin_vencimiento(self):
        assert etiqueta_tiempo_restante(None, T0) == "-"
