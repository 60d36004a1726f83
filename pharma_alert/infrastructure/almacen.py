"""
Adaptador del almacén sobre MariaDB.

Envuelve los repositorios con las tres garantías que el gestor de
solicitudes necesita de cualquier llamada de red:

  1. Tope de tiempo: cada operación corre bajo asyncio.wait_for con
     STORE_TIMEOUT_SECONDS y, si se pasa, falla con TiempoAgotadoAlmacen.
  2. Traducción de errores: los errores de conexión de PyMySQL/aiomysql
     se convierten en AlmacenNoDisponible.
  3. Una operación a la vez por conexión: aiomysql no admite consultas
     concurrentes sobre la misma conexión, y el refresco disparado por el
     notificador convive con las acciones del usuario.

Después de un timeout o una caída la conexión se descarta y la próxima
operación abre una nueva.
"""

import asyncio
from datetime import datetime

import pymysql

from pharma_alert.infrastructure.clients import get_async_connection
from pharma_alert.infrastructure.repositories import farmacias, solicitudes
from pharma_alert.shared.config import STORE_TIMEOUT_SECONDS
from pharma_alert.shared.exceptions import (
    AlmacenNoDisponible,
    CreacionFallida,
    TiempoAgotadoAlmacen,
)
from pharma_alert.shared.logger import obtener_logger
from pharma_alert.solicitudes.modelos import Destinatario, FarmaciaCandidata, Solicitud

logger = obtener_logger("almacen")

# Código de MariaDB para clave duplicada
ER_DUP_ENTRY = 1062


class AlmacenMariaDB:

    def __init__(self, fabrica_conexion=get_async_connection, timeout: float = STORE_TIMEOUT_SECONDS):
        self._fabrica_conexion = fabrica_conexion
        self._timeout = timeout
        self._conn = None
        self._candado = asyncio.Lock()

    async def cerrar(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _descartar_conexion(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except Exception as e:
                logger.debug(f"Error cerrando conexión descartada: {e}")
            self._conn = None

    async def _ejecutar(self, operacion, *args):
        """Corre operacion(conn, *args) con timeout y errores del dominio."""
        async with self._candado:
            try:
                if self._conn is None:
                    self._conn = await asyncio.wait_for(self._fabrica_conexion(), self._timeout)
                return await asyncio.wait_for(operacion(self._conn, *args), self._timeout)

            except asyncio.CancelledError:
                # Cancelada a mitad de una consulta la conexión queda desincronizada.
                self._descartar_conexion()
                raise

            except asyncio.TimeoutError:
                logger.error(f"Timeout de {self._timeout}s en {operacion.__name__}")
                self._descartar_conexion()
                raise TiempoAgotadoAlmacen()

            except (pymysql.err.OperationalError, pymysql.err.InterfaceError, OSError) as e:
                logger.error(f"Almacén no disponible en {operacion.__name__}: {e}")
                self._descartar_conexion()
                raise AlmacenNoDisponible()

    # -------------------------------------------------------------------------
    # Lecturas
    # -------------------------------------------------------------------------

    async def obtener_candidatas(self, paciente_id: str) -> list[FarmaciaCandidata]:
        return await self._ejecutar(farmacias.listar_candidatas, paciente_id)

    async def obtener_solicitud(self, solicitud_id: str) -> Solicitud | None:
        return await self._ejecutar(solicitudes.obtener_solicitud, solicitud_id)

    async def obtener_destinatario(self, destinatario_id: str) -> Destinatario | None:
        return await self._ejecutar(solicitudes.obtener_destinatario, destinatario_id)

    async def obtener_destinatarios(self, solicitud_id: str) -> list[Destinatario]:
        return await self._ejecutar(solicitudes.listar_destinatarios_de_solicitud, solicitud_id)

    async def listar_de_paciente(self, paciente_id: str) -> list[tuple[Solicitud, list[Destinatario]]]:
        return await self._ejecutar(solicitudes.listar_de_paciente, paciente_id)

    async def listar_de_farmacia(self, farmacia_id: str) -> list[tuple[Destinatario, Solicitud]]:
        return await self._ejecutar(solicitudes.listar_de_farmacia, farmacia_id)

    # -------------------------------------------------------------------------
    # Escrituras
    # -------------------------------------------------------------------------

    async def insertar_solicitud(self, solicitud: Solicitud, destinatarios: list[Destinatario]) -> bool:
        """
        Inserta solicitud y destinatarios de forma atómica.
        Devuelve False si ya existía una solicitud con ese id (reintento de
        una creación que sí llegó a confirmarse). Cualquier otro error de la
        BD revierte todo y se reporta como CreacionFallida.
        """
        try:
            await self._ejecutar(solicitudes.insertar_solicitud_con_destinatarios, solicitud, destinatarios)
            return True
        except pymysql.err.IntegrityError as e:
            if e.args and e.args[0] == ER_DUP_ENTRY:
                return False
            logger.error(f"Integridad violada creando la solicitud {solicitud.id}: {e}")
            raise CreacionFallida()
        except pymysql.err.MySQLError as e:
            logger.error(f"Error de BD creando la solicitud {solicitud.id}: {e}")
            raise CreacionFallida()

    async def marcar_cancelada(self, solicitud_id: str, paciente_id: str, ahora: datetime) -> bool:
        return await self._ejecutar(solicitudes.marcar_cancelada, solicitud_id, paciente_id, ahora)

    async def cancelar_destinatarios(self, solicitud_id: str, ahora: datetime) -> int:
        return await self._ejecutar(solicitudes.cancelar_destinatarios, solicitud_id, ahora)

    async def registrar_respuesta(self, destinatario_id: str, farmacia_id: str, decision: str, ahora: datetime) -> bool:
        return await self._ejecutar(solicitudes.registrar_respuesta, destinatario_id, farmacia_id, decision, ahora)

    async def expirar_pendientes(self, ahora: datetime) -> int:
        return await self._ejecutar(solicitudes.expirar_pendientes, ahora)
