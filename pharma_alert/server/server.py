"""
Servidor principal de PharmaAlert.

Orquesta dos corrutinas concurrentes dentro del mismo event loop:
  1. Servidor TCP: acepta conexiones de pacientes y farmacias y despacha
     sus acciones al gestor de solicitudes.
  2. Escucha del canal de cambios Redis: recibe los cambios de filas que
     publican los workers de Celery y despierta a los clientes afectados,
     que vuelven a listar y reciben el resultado como "actualizacion".

El servidor actúa como coordinador: no contiene lógica de negocio
ni acceso directo a la BD. Toda operación la delega al GestorSolicitudes,
que a su vez usa el AlmacenMariaDB.
"""

import asyncio
import argparse

from pharma_alert.shared import (
    SERVER_LISTEN_HOST, SERVER_PORT, DEFAULT_REQUEST_DURATION,
    ErrorPharmaAlert,
    enviar_mensaje, recibir_mensaje,
    obtener_logger
)
from pharma_alert.shared.exceptions import ErrorValidacion, PermisoDenegado
from pharma_alert.infrastructure import AlmacenMariaDB
from pharma_alert.solicitudes.ciclo_vida import GestorSolicitudes
from pharma_alert.solicitudes.estados import FILTROS, coincide_filtro, contar_por_estado
from pharma_alert.solicitudes.horarios import esta_abierta_ahora, formatear_horario
from pharma_alert.solicitudes.notificador import (
    NotificadorCambios,
    TABLA_DESTINATARIOS,
    TABLA_SOLICITUDES,
)

logger = obtener_logger("servidor")

ROL_PACIENTE = "paciente"
ROL_FARMACIA = "farmacia"

# Qué puede pedir cada rol. horario_abierto es una consulta sin dueño.
ACCIONES_POR_ROL = {
    ROL_PACIENTE: {"crear_solicitud", "cancelar_solicitud", "listar_solicitudes", "horario_abierto"},
    ROL_FARMACIA: {"responder_solicitud", "listar_solicitudes", "horario_abierto"},
}

# Cantidad de sesiones identificadas abiertas. Un mismo actor puede tener varias.
clientes_activos = 0

# Un único notificador por proceso: todas las sesiones se suscriben acá
# y una sola corrutina consume el canal Redis.
notificador = NotificadorCambios()


class Sesion:
    """Estado de UNA conexión: quién es y cómo quiere ver su listado."""

    def __init__(self, rol: str, actor_id: str, gestor: GestorSolicitudes, writer: asyncio.StreamWriter):
        self.rol = rol
        self.actor_id = actor_id
        self.gestor = gestor
        self.writer = writer
        # El último filtro e idioma pedidos se reusan en las actualizaciones empujadas.
        self.filtro = "all"
        self.idioma = "en"

    @property
    def etiqueta(self) -> str:
        return f"{self.rol}_id={self.actor_id}"

    async def listado(self) -> dict:
        """Arma la respuesta de listar_solicitudes según el rol."""
        if self.rol == ROL_PACIENTE:
            vistas = await self.gestor.listar_para_paciente(self.actor_id, idioma=self.idioma)
            return {"ok": True, "solicitudes": [v.como_dict() for v in vistas]}

        # Los contadores de las pestañas se calculan sobre la bandeja completa.
        vistas = await self.gestor.listar_para_farmacia(self.actor_id, idioma=self.idioma)
        filtradas = [v for v in vistas if coincide_filtro(v.estado_efectivo, self.filtro)]
        return {
            "ok": True,
            "filtro": self.filtro,
            "conteo": contar_por_estado(v.estado_efectivo for v in vistas),
            "destinatarios": [v.como_dict() for v in filtradas],
        }

    async def empujar_actualizacion(self) -> None:
        """Refresco disparado por el notificador: vuelve a listar y lo empuja al cliente."""
        if self.writer.is_closing():
            return
        listado = await self.listado()
        await enviar_mensaje(self.writer, {"tipo": "actualizacion", **listado})
        logger.info(f"[{self.etiqueta}] Actualización empujada")


def _texto(mensaje: dict, campo: str, por_defecto: str | None = None) -> str | None:
    """Lee un campo de texto del mensaje. Cualquier otro tipo es un error de validación."""
    valor = mensaje.get(campo, por_defecto)
    if valor is not None and not isinstance(valor, str):
        raise ErrorValidacion(f"El campo '{campo}' debe ser texto.")
    return valor


async def manejar_accion(sesion: Sesion, mensaje: dict) -> None:
    """
    Despachador central de acciones.
    Los errores se devuelven al cliente con su código; la conexión sigue
    abierta para la próxima acción.
    """
    writer = sesion.writer
    gestor = sesion.gestor

    try:
        if not isinstance(mensaje, dict):
            raise ErrorValidacion("El mensaje debe ser un objeto JSON.")

        accion = mensaje.get("accion", "")
        if not isinstance(accion, str) or accion not in ACCIONES_POR_ROL[sesion.rol]:
            logger.warning(f"[{sesion.etiqueta}] Acción desconocida o no permitida: {accion!r}")
            await enviar_mensaje(writer, {
                "tipo": "error",
                "codigo": "UNKNOWN_ACTION",
                "mensaje": f"Acción '{accion}' no reconocida.",
                "transitorio": False
            })
            return

        if accion == "crear_solicitud":
            vista = await gestor.crear_solicitud(
                sesion.actor_id,
                mensaje.get("medicamento", ""),
                dosis=mensaje.get("dosis"),
                forma=mensaje.get("forma"),
                urgencia=mensaje.get("urgencia"),
                duracion=mensaje.get("duracion") or DEFAULT_REQUEST_DURATION,
                solicitud_id=_texto(mensaje, "solicitud_id"),
            )
            logger.info(f"[{sesion.etiqueta}] crear_solicitud '{vista.solicitud.medicamento}' → {vista.solicitud.id}")
            await enviar_mensaje(writer, {"tipo": "respuesta", "ok": True, "solicitud": vista.como_dict()})

        elif accion == "cancelar_solicitud":
            vista = await gestor.cancelar_solicitud(sesion.actor_id, _texto(mensaje, "solicitud_id", ""))
            logger.info(f"[{sesion.etiqueta}] cancelar_solicitud {vista.solicitud.id} → {vista.estado_efectivo.value}")
            await enviar_mensaje(writer, {"tipo": "respuesta", "ok": True, "solicitud": vista.como_dict()})

        elif accion == "responder_solicitud":
            vista = await gestor.responder_solicitud(
                sesion.actor_id,
                _texto(mensaje, "destinatario_id", ""),
                _texto(mensaje, "decision", ""),
            )
            logger.info(f"[{sesion.etiqueta}] responder_solicitud {vista.destinatario.id} → {vista.estado_efectivo.value}")
            await enviar_mensaje(writer, {"tipo": "respuesta", "ok": True, "destinatario": vista.como_dict()})

        elif accion == "listar_solicitudes":
            filtro = _texto(mensaje, "filtro", sesion.filtro)
            if filtro not in FILTROS:
                raise ErrorValidacion(f"Filtro desconocido: '{filtro}'. Opciones: {', '.join(FILTROS)}.")
            idioma = _texto(mensaje, "idioma", sesion.idioma)
            sesion.filtro = filtro
            sesion.idioma = idioma

            listado = await sesion.listado()
            cantidad = len(listado.get("solicitudes", listado.get("destinatarios", [])))
            logger.info(f"[{sesion.etiqueta}] listar_solicitudes → {cantidad} registros")
            await enviar_mensaje(writer, {"tipo": "respuesta", **listado})

        elif accion == "horario_abierto":
            # Consulta pura para la interfaz: no toca el almacén.
            horario = mensaje.get("horario")
            idioma = _texto(mensaje, "idioma", sesion.idioma)
            await enviar_mensaje(writer, {
                "tipo": "respuesta",
                "ok": True,
                "abierta": esta_abierta_ahora(horario, gestor.reloj(), gestor.zona),
                "resumen": formatear_horario(horario, idioma),
            })

    except ErrorPharmaAlert as e:
        # El gestor ya registró el detalle con el nivel que corresponde.
        await enviar_mensaje(writer, e.como_dict())

    except (ConnectionError, asyncio.IncompleteReadError):
        # Problemas del socket: los resuelve manejar_cliente cerrando la sesión.
        raise

    except Exception as e:
        logger.error(f"[{sesion.etiqueta}] Error inesperado procesando {mensaje!r}: {e!r}")
        await enviar_mensaje(writer, ErrorPharmaAlert().como_dict())


def registrar_suscripciones(sesion: Sesion) -> list[int]:
    """
    Suscribe la sesión a los cambios de filas que le importan.
    El paciente escucha sus solicitudes y también los destinatarios de
    ellas (cada respuesta de farmacia); la farmacia, sus destinatarios.
    """
    if sesion.rol == ROL_PACIENTE:
        return [
            notificador.suscribir(TABLA_SOLICITUDES, "patient_id", sesion.actor_id, sesion.empujar_actualizacion),
            notificador.suscribir(TABLA_DESTINATARIOS, "patient_id", sesion.actor_id, sesion.empujar_actualizacion),
        ]
    return [
        notificador.suscribir(TABLA_DESTINATARIOS, "pharmacy_id", sesion.actor_id, sesion.empujar_actualizacion),
    ]


def identificar(mensaje_inicial: dict | None) -> tuple[str, str]:
    """
    Valida el saludo inicial y devuelve (rol, actor_id).
    La autenticación la resuelve el proveedor externo: acá solo se lee la identidad.
    """
    if not isinstance(mensaje_inicial, dict):
        raise ErrorValidacion("Saludo inicial ausente.")

    rol = mensaje_inicial.get("rol", "")
    if not isinstance(rol, str) or rol not in ACCIONES_POR_ROL:
        raise ErrorValidacion(f"Rol desconocido: '{rol}'.")

    actor_id = str(mensaje_inicial.get(f"{rol}_id") or "").strip()
    if not actor_id:
        raise PermisoDenegado(f"Falta el identificador de {rol}.")
    return rol, actor_id


async def manejar_cliente(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
    """
    Corrutina que maneja el ciclo de vida completo de UN cliente conectado.
    AsyncIO la llama automáticamente cada vez que llega una nueva conexión TCP.
    """
    global clientes_activos

    direccion = writer.get_extra_info("peername")
    logger.info(f"Nueva conexión entrante desde {direccion}")

    almacen = None
    sesion = None
    claves: list[int] = []

    try:
        try:
            rol, actor_id = identificar(await recibir_mensaje(reader))
        except ErrorPharmaAlert as e:
            logger.warning(f"Saludo inválido desde {direccion}: {e.mensaje}")
            await enviar_mensaje(writer, {**e.como_dict(), "tipo": "rechazo"})
            return  # sale del try, va directo al finally

        # Cada conexión tiene su propio almacén: el lock del adaptador
        # serializa las llamadas de esta sesión sin frenar a las demás.
        almacen = AlmacenMariaDB()
        sesion = Sesion(rol, actor_id, GestorSolicitudes(almacen), writer)

        clientes_activos += 1
        # Suscribirse antes de listar: un cambio entre ambas cosas dispara un refresco de más, nunca de menos.
        claves = registrar_suscripciones(sesion)
        logger.info(
            f"[{sesion.etiqueta}] Conectado desde {direccion}. "
            f"Clientes activos: {clientes_activos}, suscripciones: {notificador.total_suscripciones}"
        )

        try:
            listado = await sesion.listado()
        except ErrorPharmaAlert as e:
            listado = {"ok": False, "error": e.como_dict()}
        await enviar_mensaje(writer, {"tipo": "bienvenida", "rol": rol, f"{rol}_id": actor_id, **listado})

        # Loop de escucha
        while True:
            mensaje = await recibir_mensaje(reader)
            if mensaje is None:
                break
            await manejar_accion(sesion, mensaje)

    except asyncio.IncompleteReadError:
        # El cliente cortó a mitad de un mensaje. Es un caso esperado.
        logger.info(f"Desconexión abrupta: {sesion.etiqueta if sesion else direccion}")

    except (ConnectionError, ValueError) as e:
        logger.warning(f"Conexión descartada ({sesion.etiqueta if sesion else direccion}): {e}")

    except Exception as e:
        logger.error(f"Error inesperado con cliente {sesion.etiqueta if sesion else direccion}: {e}")

    finally:
        for clave in claves:
            notificador.desuscribir(clave)

        if sesion:
            clientes_activos -= 1
            logger.info(
                f"[{sesion.etiqueta}] Desconectado. "
                f"Clientes activos: {clientes_activos}, suscripciones: {notificador.total_suscripciones}"
            )

        if almacen:
            await almacen.cerrar()

        writer.close()
        try:
            await writer.wait_closed()
        except ConnectionError:
            pass


async def iniciar_servidor(host: str, puerto: int):
    """
    Lanza el servidor TCP y la escucha del canal de cambios como tareas
    concurrentes dentro del mismo event loop.
    """
    servidor = await asyncio.start_server(manejar_cliente, host or None, puerto)
    logger.info(f"Servidor PharmaAlert escuchando en {host or '*'}:{puerto}")

    tarea_cambios = asyncio.create_task(notificador.escuchar())

    try:
        async with servidor:
            await servidor.serve_forever()
    finally:
        tarea_cambios.cancel()
        try:
            await tarea_cambios
        except asyncio.CancelledError:
            pass
        # Los refrescos ya disparados terminan antes de cerrar el loop.
        await notificador.esperar_refrescos()


def parsear_argumentos():
    """
    Procesa los argumentos de línea de comandos del servidor: --host y --puerto.
    """
    parser = argparse.ArgumentParser(
        description="PharmaAlert: servidor TCP de solicitudes de medicamentos"
    )
    parser.add_argument(
        "--host",
        default=SERVER_LISTEN_HOST,
        help=f"Host donde escuchar conexiones (default: '{SERVER_LISTEN_HOST}', todas las interfaces)"
    )
    parser.add_argument(
        "--puerto",
        type=int,
        default=SERVER_PORT,
        help=f"Puerto donde escuchar conexiones (default: {SERVER_PORT})"
    )
    return parser.parse_args()


if __name__ == "__main__":
    args = parsear_argumentos()
    try:
        asyncio.run(iniciar_servidor(args.host, args.puerto))
    except KeyboardInterrupt:
        logger.info("Servidor detenido.")
