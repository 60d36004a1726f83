"""
Notificador de cambios.

Cada mutación del gestor de solicitudes publica un evento de cambio de
fila en el canal Redis (vía la tarea Celery notificar_cambio). Este
módulo es el otro extremo: escucha el canal, compara cada evento con las
suscripciones registradas, y dispara el refresco de cada interesado.

El evento es solo una señal para despertar. Nadie confía en su payload:
el refresco vuelve a correr el listado, que deriva la verdad del almacén
y del reloj. Un vencimiento no genera ningún evento de escritura, así
que el payload nunca podría contarlo todo.

Los eventos pueden llegar repetidos o perderse. Mientras un refresco
está corriendo, los eventos nuevos para la misma suscripción se juntan
en una única repetición al terminar.
"""

import asyncio
import itertools
import json
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import redis.exceptions

from pharma_alert.infrastructure.clients import get_async_redis_client
from pharma_alert.shared.config import REDIS_CHANGES_CHANNEL
from pharma_alert.shared.logger import obtener_logger

logger = obtener_logger("notificador")

TABLA_SOLICITUDES = "patient_requests"
TABLA_DESTINATARIOS = "patient_request_recipients"

# Espera entre reintentos de conexión al canal, en segundos
ESPERA_RECONEXION = (1, 2, 5, 10, 30)


def emitir_por_celery(tabla: str, evento: str, fila: dict) -> None:
    """Emisor por defecto: encola la publicación sin esperar al worker."""
    # Import diferido para que cargar el dominio no levante la app de Celery.
    from pharma_alert.workers.tasks import notificar_cambio

    notificar_cambio.delay(tabla=tabla, evento=evento, fila=fila)


@dataclass
class Suscripcion:
    tabla: str
    columna: str
    valor: str
    refrescar: Callable[[], Awaitable[None]]
    tarea: asyncio.Task | None = field(default=None, repr=False)
    pendiente: bool = False

    def coincide(self, evento: dict) -> bool:
        if evento.get("tabla") != self.tabla:
            return False
        fila = evento.get("fila") or {}
        return self.columna in fila and str(fila[self.columna]) == self.valor


class NotificadorCambios:

    def __init__(self, canal: str = REDIS_CHANGES_CHANNEL, fabrica_redis=get_async_redis_client):
        self.canal = canal
        self._fabrica_redis = fabrica_redis
        self._suscripciones: dict[int, Suscripcion] = {}
        self._claves = itertools.count(1)

    @property
    def total_suscripciones(self) -> int:
        return len(self._suscripciones)

    def suscribir(self, tabla: str, columna: str, valor, refrescar: Callable[[], Awaitable[None]]) -> int:
        """
        Registra interés en los cambios de `tabla` donde `columna == valor`.
        Devuelve la clave para desuscribirse.
        """
        clave = next(self._claves)
        self._suscripciones[clave] = Suscripcion(tabla, columna, str(valor), refrescar)
        logger.info(f"Suscripción {clave}: {tabla} donde {columna}={valor}")
        return clave

    def desuscribir(self, clave: int) -> None:
        suscripcion = self._suscripciones.pop(clave, None)
        if suscripcion is None:
            return
        if suscripcion.tarea and not suscripcion.tarea.done():
            suscripcion.tarea.cancel()
        logger.info(f"Suscripción {clave} eliminada")

    def despachar(self, evento: dict) -> int:
        """Dispara el refresco de cada suscripción que coincide. Devuelve cuántas coincidieron."""
        coincidencias = [s for s in self._suscripciones.values() if s.coincide(evento)]
        for suscripcion in coincidencias:
            self._disparar(suscripcion)
        return len(coincidencias)

    def procesar_mensaje(self, datos) -> int:
        """Decodifica un mensaje crudo del canal y lo despacha. Los mensajes inválidos se descartan."""
        try:
            if isinstance(datos, bytes):
                datos = datos.decode("utf-8")
            evento = json.loads(datos)
        except (UnicodeDecodeError, ValueError) as e:
            logger.error(f"Evento de cambio ilegible descartado: {e}")
            return 0

        if not isinstance(evento, dict) or not isinstance(evento.get("fila"), dict):
            logger.error(f"Evento de cambio sin fila descartado: {evento!r}")
            return 0
        return self.despachar(evento)

    async def esperar_refrescos(self) -> None:
        """Espera a que terminen los refrescos en curso."""
        tareas = [s.tarea for s in self._suscripciones.values() if s.tarea and not s.tarea.done()]
        if tareas:
            await asyncio.gather(*tareas, return_exceptions=True)

    def _disparar(self, suscripcion: Suscripcion) -> None:
        if suscripcion.tarea and not suscripcion.tarea.done():
            suscripcion.pendiente = True
            return
        suscripcion.tarea = asyncio.create_task(self._correr_refresco(suscripcion))

    async def _correr_refresco(self, suscripcion: Suscripcion) -> None:
        while True:
            suscripcion.pendiente = False
            try:
                await suscripcion.refrescar()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Un refresco fallido no rompe la suscripción: el próximo evento lo reintenta.
                logger.error(f"Error refrescando {suscripcion.tabla}/{suscripcion.valor}: {e}")
            if not suscripcion.pendiente:
                break

    async def escuchar(self) -> None:
        """
        Corrutina que consume el canal Redis y despacha cada evento.
        Si la conexión se cae, reintenta con espera creciente; mientras
        tanto los eventos perdidos no importan porque cada lectura
        vuelve a derivar el estado completo.
        """
        intento = 0
        while True:
            cliente = self._fabrica_redis()
            pubsub = cliente.pubsub()
            try:
                await pubsub.subscribe(self.canal)
                logger.info(f"Suscrito al canal Redis: {self.canal}")
                intento = 0

                async for mensaje_raw in pubsub.listen():
                    # El primer mensaje es la confirmación de suscripción.
                    if mensaje_raw["type"] != "message":
                        continue
                    self.procesar_mensaje(mensaje_raw["data"])

            except asyncio.CancelledError:
                await pubsub.unsubscribe(self.canal)
                await cliente.aclose()
                raise

            except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError, OSError) as e:
                espera = ESPERA_RECONEXION[min(intento, len(ESPERA_RECONEXION) - 1)]
                intento += 1
                logger.error(f"Canal de cambios caído ({e}). Reintento en {espera}s.")
                await cliente.aclose()
                await asyncio.sleep(espera)
