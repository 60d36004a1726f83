"""
Tests del notificador de cambios y del emisor por Celery.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import redis.exceptions

from pharma_alert.solicitudes import notificador as modulo_notificador
from pharma_alert.solicitudes.notificador import (
    TABLA_DESTINATARIOS,
    TABLA_SOLICITUDES,
    NotificadorCambios,
    Suscripcion,
    emitir_por_celery,
)


def evento(tabla=TABLA_DESTINATARIOS, **fila) -> dict:
    return {"tabla": tabla, "evento": "UPDATE", "fila": fila}


async def esperar_hasta(condicion, intentos: int = 200):
    for _ in range(intentos):
        if condicion():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("La condición nunca se cumplió")


class PubSubFalso:

    def __init__(self, mensajes=(), error_al_suscribir=None):
        self.mensajes = list(mensajes)
        self.subscribe = AsyncMock(side_effect=error_al_suscribir)
        self.unsubscribe = AsyncMock()

    async def listen(self):
        for mensaje in self.mensajes:
            yield mensaje
        # Queda esperando como un canal sin tráfico
        await asyncio.Event().wait()


def cliente_redis(pubsub) -> MagicMock:
    cliente = MagicMock()
    cliente.pubsub.return_value = pubsub
    cliente.aclose = AsyncMock()
    return cliente


class TestSuscripcion:

    def test_coincide_por_tabla_columna_y_valor(self):
        suscripcion = Suscripcion(TABLA_DESTINATARIOS, "pharmacy_id", "farm-a", AsyncMock())

        assert suscripcion.coincide(evento(pharmacy_id="farm-a")) is True
        assert suscripcion.coincide(evento(pharmacy_id="farm-b")) is False
        assert suscripcion.coincide(evento(TABLA_SOLICITUDES, pharmacy_id="farm-a")) is False
        assert suscripcion.coincide(evento(patient_id="farm-a")) is False

    def test_compara_como_texto(self):
        suscripcion = Suscripcion(TABLA_SOLICITUDES, "patient_id", "7", AsyncMock())
        assert suscripcion.coincide(evento(TABLA_SOLICITUDES, patient_id=7)) is True


class TestNotificadorCambios:

    @pytest.mark.asyncio
    async def test_despacha_solo_a_las_suscripciones_que_coinciden(self):
        notificador = NotificadorCambios()
        refresco_a, refresco_b = AsyncMock(), AsyncMock()
        notificador.suscribir(TABLA_DESTINATARIOS, "pharmacy_id", "farm-a", refresco_a)
        notificador.suscribir(TABLA_DESTINATARIOS, "pharmacy_id", "farm-b", refresco_b)

        assert notificador.despachar(evento(pharmacy_id="farm-a")) == 1
        await notificador.esperar_refrescos()

        refresco_a.assert_awaited_once()
        refresco_b.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_desuscribir(self):
        notificador = NotificadorCambios()
        refresco = AsyncMock()
        clave = notificador.suscribir(TABLA_DESTINATARIOS, "pharmacy_id", "farm-a", refresco)

        notificador.desuscribir(clave)
        notificador.desuscribir(clave)

        assert notificador.total_suscripciones == 0
        assert notificador.despachar(evento(pharmacy_id="farm-a")) == 0

    @pytest.mark.asyncio
    async def test_junta_los_eventos_que_llegan_durante_un_refresco(self):
        notificador = NotificadorCambios()
        liberar = asyncio.Event()
        llamadas = []

        async def refresco_lento():
            llamadas.append(len(llamadas))
            if len(llamadas) == 1:
                await liberar.wait()

        notificador.suscribir(TABLA_DESTINATARIOS, "pharmacy_id", "farm-a", refresco_lento)

        notificador.despachar(evento(pharmacy_id="farm-a"))
        await asyncio.sleep(0)
        for _ in range(3):
            notificador.despachar(evento(pharmacy_id="farm-a"))

        liberar.set()
        await notificador.esperar_refrescos()

        # Un refresco en curso más una única repetición por los tres eventos
        assert len(llamadas) == 2

    @pytest.mark.asyncio
    async def test_un_refresco_fallido_no_rompe_la_suscripcion(self):
        notificador = NotificadorCambios()
        refresco = AsyncMock(side_effect=[RuntimeError("lectura fallida"), None])
        notificador.suscribir(TABLA_SOLICITUDES, "patient_id", "pac-1", refresco)

        notificador.despachar(evento(TABLA_SOLICITUDES, patient_id="pac-1"))
        await notificador.esperar_refrescos()
        notificador.despachar(evento(TABLA_SOLICITUDES, patient_id="pac-1"))
        await notificador.esperar_refrescos()

        assert refresco.await_count == 2

    @pytest.mark.asyncio
    async def test_desuscribir_cancela_el_refresco_en_curso(self):
        notificador = NotificadorCambios()
        empezado = asyncio.Event()

        async def refresco_eterno():
            empezado.set()
            await asyncio.Event().wait()

        clave = notificador.suscribir(TABLA_SOLICITUDES, "patient_id", "pac-1", refresco_eterno)
        notificador.despachar(evento(TABLA_SOLICITUDES, patient_id="pac-1"))
        await empezado.wait()

        tarea = notificador._suscripciones[clave].tarea
        notificador.desuscribir(clave)
        with pytest.raises(asyncio.CancelledError):
            await tarea

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "datos",
        [b"\xff\xfe", "no es json", json.dumps([1, 2]), json.dumps({"tabla": TABLA_SOLICITUDES})],
    )
    async def test_mensajes_invalidos_se_descartan(self, datos):
        notificador = NotificadorCambios()
        refresco = AsyncMock()
        notificador.suscribir(TABLA_SOLICITUDES, "patient_id", "pac-1", refresco)

        assert notificador.procesar_mensaje(datos) == 0
        refresco.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_procesa_bytes_del_canal(self):
        notificador = NotificadorCambios()
        refresco = AsyncMock()
        notificador.suscribir(TABLA_SOLICITUDES, "patient_id", "pac-1", refresco)

        datos = json.dumps(evento(TABLA_SOLICITUDES, patient_id="pac-1")).encode("utf-8")
        assert notificador.procesar_mensaje(datos) == 1
        await notificador.esperar_refrescos()
        refresco.assert_awaited_once()


class TestEscuchar:

    @pytest.mark.asyncio
    async def test_consume_el_canal_y_limpia_al_cancelar(self):
        mensaje = json.dumps(evento(pharmacy_id="farm-a")).encode("utf-8")
        pubsub = PubSubFalso([
            {"type": "subscribe", "data": 1},
            {"type": "message", "data": mensaje},
        ])
        cliente = cliente_redis(pubsub)
        notificador = NotificadorCambios(canal="canal-test", fabrica_redis=lambda: cliente)
        refresco = AsyncMock()
        notificador.suscribir(TABLA_DESTINATARIOS, "pharmacy_id", "farm-a", refresco)

        tarea = asyncio.create_task(notificador.escuchar())
        await esperar_hasta(lambda: refresco.await_count == 1)

        tarea.cancel()
        with pytest.raises(asyncio.CancelledError):
            await tarea

        pubsub.subscribe.assert_awaited_once_with("canal-test")
        pubsub.unsubscribe.assert_awaited_once_with("canal-test")
        cliente.aclose.assert_awaited()

    @pytest.mark.asyncio
    async def test_reconecta_si_el_canal_se_cae(self, monkeypatch):
        monkeypatch.setattr(modulo_notificador, "ESPERA_RECONEXION", (0,))
        caido = cliente_redis(PubSubFalso(error_al_suscribir=redis.exceptions.ConnectionError("sin redis")))
        sano = cliente_redis(PubSubFalso())
        fabrica = MagicMock(side_effect=[caido, sano])

        notificador = NotificadorCambios(fabrica_redis=fabrica)
        tarea = asyncio.create_task(notificador.escuchar())
        await esperar_hasta(lambda: sano.pubsub.return_value.subscribe.await_count == 1)

        tarea.cancel()
        with pytest.raises(asyncio.CancelledError):
            await tarea

        assert fabrica.call_count == 2
        caido.aclose.assert_awaited_once()


class TestEmitirPorCelery:

    def test_encola_la_tarea(self):
        from pharma_alert.workers.tasks import notificar_cambio

        with patch.object(notificar_cambio, "delay") as delay:
            emitir_por_celery(TABLA_SOLICITUDES, "INSERT", {"id": "sol-1"})

        delay.assert_called_once_with(tabla=TABLA_SOLICITUDES, evento="INSERT", fila={"id": "sol-1"})
