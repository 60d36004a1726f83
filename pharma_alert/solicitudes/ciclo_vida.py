"""
Gestor del ciclo de vida de las solicitudes.

Dueño de la máquina de estados de una solicitud y de sus destinatarios:

    pending ──(paciente cancela)──▶ cancelled
       │
       └──(vence el plazo)──▶ expired      (lo escribe el reconciliador)

accepted/rejected nunca se escriben sobre la solicitud: son respuestas
individuales de cada farmacia en su fila de destinatario, y la interfaz
las resume como quiera.

Cada campo tiene un único escritor legítimo: la solicitud la cambia su
paciente (cancelar) o el reconciliador (expirar); cada destinatario lo
cambia su farmacia (responder) o la cascada de una cancelación. Por eso
no hacen falta locks entre actores: alcanza con UPDATEs condicionados al
estado esperado y con volver a leer cuando el UPDATE no toca ninguna fila.

Todas las operaciones son idempotentes para quien llama: repetir una
cancelación o una respuesta con la misma decisión no es un error.
"""

import re
import uuid
from dataclasses import replace
from datetime import datetime, timezone, tzinfo
from typing import Callable
from zoneinfo import ZoneInfo

from pharma_alert.shared.config import DEFAULT_REQUEST_DURATION, PHARMACY_TIMEZONE
from pharma_alert.shared.exceptions import (
    CreacionFallida,
    ErrorAlmacen,
    ErrorValidacion,
    PermisoDenegado,
    SinDestinatariosElegibles,
    SolicitudCerrada,
    YaRespondida,
)
from pharma_alert.shared.logger import obtener_logger
from pharma_alert.solicitudes.enrutamiento import calcular_destinatarios
from pharma_alert.solicitudes.estados import (
    FILTROS,
    coincide_filtro,
    estado_efectivo_destinatario,
    estado_efectivo_solicitud,
    etiqueta_tiempo_restante,
    resumir_respuestas,
)
from pharma_alert.solicitudes.expiracion import reconciliar_expiradas
from pharma_alert.solicitudes.modelos import (
    DECISIONES,
    DURACIONES,
    Destinatario,
    EstadoDestinatario,
    EstadoSolicitud,
    FormaFarmaceutica,
    Solicitud,
    Urgencia,
    VistaDestinatario,
    VistaSolicitud,
)
from pharma_alert.solicitudes.notificador import (
    TABLA_DESTINATARIOS,
    TABLA_SOLICITUDES,
    emitir_por_celery,
)

logger = obtener_logger("solicitudes")

LARGO_MAXIMO_MEDICAMENTO = 200
LARGO_MAXIMO_ID = 36
_PATRON_DOSIS = re.compile(r"^\d+(?:[.,]\d+)?$")


def reloj_utc() -> datetime:
    return datetime.now(timezone.utc)


def validar_datos_solicitud(medicamento, dosis=None, forma=None, urgencia=None, duracion=None, solicitud_id=None):
    """
    Normaliza y valida lo que manda el paciente antes de tocar el almacén.
    Devuelve (medicamento, dosis, forma, urgencia, plazo) o lanza ErrorValidacion.
    """
    if not isinstance(medicamento, str) or not medicamento.strip():
        raise ErrorValidacion("Indicá qué medicamento necesitás.")
    medicamento = medicamento.strip()
    if len(medicamento) > LARGO_MAXIMO_MEDICAMENTO:
        raise ErrorValidacion(f"El nombre del medicamento supera los {LARGO_MAXIMO_MEDICAMENTO} caracteres.")

    # La dosis es numérica pero viaja y se guarda como texto.
    if dosis is None or (isinstance(dosis, str) and not dosis.strip()):
        dosis = None
    else:
        if isinstance(dosis, bool) or not isinstance(dosis, (str, int, float)):
            raise ErrorValidacion("La dosis debe ser un número.")
        dosis = str(dosis).strip()
        if not _PATRON_DOSIS.match(dosis) or float(dosis.replace(",", ".")) <= 0:
            raise ErrorValidacion(f"Dosis inválida: '{dosis}'.")

    try:
        forma = FormaFarmaceutica(forma) if forma else None
    except ValueError:
        raise ErrorValidacion(f"Forma farmacéutica desconocida: '{forma}'.")

    try:
        urgencia = Urgencia(urgencia) if urgencia else None
    except ValueError:
        raise ErrorValidacion(f"Urgencia desconocida: '{urgencia}'.")

    if not isinstance(duracion, str) or duracion not in DURACIONES:
        opciones = ", ".join(DURACIONES)
        raise ErrorValidacion(f"Duración inválida: '{duracion}'. Opciones: {opciones}.")

    # El id lo puede elegir el cliente para reintentar; tiene que caber en la columna.
    if solicitud_id is not None and (
        not isinstance(solicitud_id, str) or len(solicitud_id) > LARGO_MAXIMO_ID
    ):
        raise ErrorValidacion(f"El id de solicitud debe ser texto de hasta {LARGO_MAXIMO_ID} caracteres.")

    return medicamento, dosis, forma, urgencia, DURACIONES[duracion]


def validar_decision(decision) -> EstadoDestinatario:
    try:
        decision = EstadoDestinatario(decision)
    except ValueError:
        raise ErrorValidacion(f"Decisión desconocida: '{decision}'.")
    if decision not in DECISIONES:
        raise ErrorValidacion("La decisión debe ser 'accepted' o 'rejected'.")
    return decision


class GestorSolicitudes:
    """
    Operaciones que la interfaz puede pedir sobre solicitudes.

    :param almacen: cualquier objeto con la interfaz de AlmacenMariaDB
    :param reloj:   callable que devuelve el instante actual con zona (inyectable para tests)
    :param emisor:  callable(tabla, evento, fila) que publica los cambios de fila
    :param zona:    zona horaria en la que se evalúan los horarios de las farmacias
    """

    def __init__(
        self,
        almacen,
        reloj: Callable[[], datetime] = reloj_utc,
        emisor: Callable[[str, str, dict], None] = emitir_por_celery,
        zona: tzinfo | None = None,
    ):
        self.almacen = almacen
        self.reloj = reloj
        self.emisor = emisor
        self.zona = zona or ZoneInfo(PHARMACY_TIMEZONE)

    # -------------------------------------------------------------------------
    # Crear
    # -------------------------------------------------------------------------

    async def crear_solicitud(
        self,
        paciente_id: str,
        medicamento: str,
        dosis=None,
        forma=None,
        urgencia=None,
        duracion: str = DEFAULT_REQUEST_DURATION,
        solicitud_id: str | None = None,
    ) -> VistaSolicitud:
        """
        Rutea la solicitud y la guarda con un destinatario por farmacia elegible,
        todo en una única transacción.

        `solicitud_id` permite reintentar a ciegas: si una creación anterior con
        el mismo id llegó a confirmarse, se devuelve esa en lugar de duplicarla.
        """
        medicamento, dosis, forma, urgencia, plazo = validar_datos_solicitud(
            medicamento, dosis, forma, urgencia, duracion, solicitud_id
        )
        ahora = self.reloj()

        candidatas = await self.almacen.obtener_candidatas(paciente_id)
        favoritas = {c.id for c in candidatas if c.es_favorita}
        farmacias_ids = calcular_destinatarios(candidatas, favoritas, ahora, self.zona)

        if not farmacias_ids:
            logger.warning(
                f"[paciente_id={paciente_id}] Sin farmacias alcanzables para '{medicamento}' "
                f"({len(candidatas)} candidata(s))."
            )
            raise SinDestinatariosElegibles()

        solicitud = Solicitud(
            id=solicitud_id or str(uuid.uuid4()),
            paciente_id=paciente_id,
            medicamento=medicamento,
            dosis=dosis,
            forma=forma,
            urgencia=urgencia,
            estado=EstadoSolicitud.PENDING,
            creada_en=ahora,
            expira_en=ahora + plazo,
            actualizada_en=ahora,
        )
        destinatarios = [
            Destinatario(
                id=str(uuid.uuid4()),
                solicitud_id=solicitud.id,
                farmacia_id=farmacia_id,
                estado=EstadoDestinatario.PENDING,
                actualizada_en=ahora,
            )
            for farmacia_id in farmacias_ids
        ]

        insertada = await self.almacen.insertar_solicitud(solicitud, destinatarios)
        if not insertada:
            return await self._recuperar_creada(paciente_id, solicitud.id, ahora)

        logger.info(
            f"[paciente_id={paciente_id}] Solicitud {solicitud.id} creada para '{medicamento}' "
            f"con {len(destinatarios)} destinatario(s), vence {solicitud.expira_en.isoformat()}"
        )

        self._emitir(TABLA_SOLICITUDES, "INSERT", solicitud)
        for destinatario in destinatarios:
            self._emitir(TABLA_DESTINATARIOS, "INSERT", destinatario, paciente_id)

        return self._vista_solicitud(solicitud, destinatarios, ahora)

    async def _recuperar_creada(self, paciente_id: str, solicitud_id: str, ahora: datetime) -> VistaSolicitud:
        """Reintento de una creación que ya se había confirmado."""
        existente = await self.almacen.obtener_solicitud(solicitud_id)
        if existente is None or existente.paciente_id != paciente_id:
            logger.error(f"[paciente_id={paciente_id}] El id {solicitud_id} ya está en uso por otra solicitud.")
            raise CreacionFallida()

        logger.info(f"[paciente_id={paciente_id}] Solicitud {solicitud_id} ya existía; reintento sin efecto.")
        destinatarios = await self.almacen.obtener_destinatarios(solicitud_id)
        return self._vista_solicitud(existente, destinatarios, ahora)

    # -------------------------------------------------------------------------
    # Cancelar
    # -------------------------------------------------------------------------

    async def cancelar_solicitud(self, paciente_id: str, solicitud_id: str) -> VistaSolicitud:
        """
        Cancela una solicitud propia que sigue pendiente.
        La cancelación de la solicitud es la que manda: si la cascada sobre los
        destinatarios falla, se registra y la operación igual se da por hecha.
        """
        ahora = self.reloj()
        solicitud = await self._solicitud_propia(paciente_id, solicitud_id)

        if solicitud.estado == EstadoSolicitud.CANCELLED:
            logger.info(f"[paciente_id={paciente_id}] Solicitud {solicitud_id} ya estaba cancelada.")
            destinatarios = await self.almacen.obtener_destinatarios(solicitud_id)
            return self._vista_solicitud(solicitud, destinatarios, ahora)

        efectivo = estado_efectivo_solicitud(solicitud, ahora)
        if efectivo != EstadoSolicitud.PENDING:
            logger.warning(
                f"[paciente_id={paciente_id}] Cancelación rechazada: solicitud {solicitud_id} está {efectivo.value}."
            )
            raise SolicitudCerrada(f"La solicitud ya está {efectivo.value} y no se puede cancelar.")

        if not await self.almacen.marcar_cancelada(solicitud_id, paciente_id, ahora):
            # Otro escritor llegó primero (una cancelación repetida o el barrido de vencimientos).
            actual = await self._solicitud_propia(paciente_id, solicitud_id)
            if actual.estado != EstadoSolicitud.CANCELLED:
                raise SolicitudCerrada(f"La solicitud ya está {estado_efectivo_solicitud(actual, ahora).value}.")
            destinatarios = await self.almacen.obtener_destinatarios(solicitud_id)
            return self._vista_solicitud(actual, destinatarios, ahora)

        cancelada = replace(solicitud, estado=EstadoSolicitud.CANCELLED, actualizada_en=ahora)
        logger.info(f"[paciente_id={paciente_id}] Solicitud {solicitud_id} cancelada.")
        self._emitir(TABLA_SOLICITUDES, "UPDATE", cancelada)

        destinatarios = await self._cascada_cancelacion(cancelada, ahora)
        return self._vista_solicitud(cancelada, destinatarios, ahora)

    async def _cascada_cancelacion(self, solicitud: Solicitud, ahora: datetime) -> list[Destinatario]:
        try:
            cantidad = await self.almacen.cancelar_destinatarios(solicitud.id, ahora)
            destinatarios = await self.almacen.obtener_destinatarios(solicitud.id)
        except ErrorAlmacen as e:
            # Destinatarios sueltos sin cancelar no molestan: la solicitud cancelada los tapa al leer.
            logger.error(f"Cascada de cancelación fallida para la solicitud {solicitud.id} ({e.codigo}).")
            return []

        logger.info(f"Cascada de cancelación: {cantidad} destinatario(s) de {solicitud.id} cancelado(s).")
        for destinatario in destinatarios:
            self._emitir(TABLA_DESTINATARIOS, "UPDATE", destinatario, solicitud.paciente_id)
        return destinatarios

    async def _solicitud_propia(self, paciente_id: str, solicitud_id: str) -> Solicitud:
        solicitud = await self.almacen.obtener_solicitud(solicitud_id)
        # Una fila ajena es invisible: se responde igual que si no existiera.
        if solicitud is None or solicitud.paciente_id != paciente_id:
            logger.warning(f"[paciente_id={paciente_id}] Sin permiso sobre la solicitud {solicitud_id}.")
            raise PermisoDenegado()
        return solicitud

    # -------------------------------------------------------------------------
    # Responder
    # -------------------------------------------------------------------------

    async def responder_solicitud(self, farmacia_id: str, destinatario_id: str, decision) -> VistaDestinatario:
        """
        Registra la decisión (accepted o rejected) de una farmacia sobre su destinatario.
        Solo se admite mientras la solicitud madre siga efectivamente pendiente.
        """
        decision = validar_decision(decision)
        ahora = self.reloj()

        destinatario = await self.almacen.obtener_destinatario(destinatario_id)
        if destinatario is None or destinatario.farmacia_id != farmacia_id:
            logger.warning(f"[farmacia_id={farmacia_id}] Sin permiso sobre el destinatario {destinatario_id}.")
            raise PermisoDenegado()

        solicitud = await self.almacen.obtener_solicitud(destinatario.solicitud_id)
        if solicitud is None:
            raise PermisoDenegado()

        self._verificar_respuesta(destinatario, solicitud, decision, ahora)
        if destinatario.estado == decision:
            return self._vista_destinatario(destinatario, solicitud, ahora)

        if not await self.almacen.registrar_respuesta(destinatario_id, farmacia_id, decision.value, ahora):
            # El UPDATE condicionado no tocó nada: alguien cambió el estado entre la lectura y la escritura.
            destinatario = await self.almacen.obtener_destinatario(destinatario_id)
            solicitud = await self.almacen.obtener_solicitud(destinatario.solicitud_id) if destinatario else None
            if solicitud is None:
                logger.warning(f"[farmacia_id={farmacia_id}] El destinatario {destinatario_id} desapareció al responder.")
                raise PermisoDenegado()
            self._verificar_respuesta(destinatario, solicitud, decision, ahora)
            if destinatario.estado == decision:
                return self._vista_destinatario(destinatario, solicitud, ahora)
            raise SolicitudCerrada()

        respondido = replace(destinatario, estado=decision, respondida_en=ahora, actualizada_en=ahora)
        logger.info(
            f"[farmacia_id={farmacia_id}] Destinatario {destinatario_id} de la solicitud "
            f"{solicitud.id} → {decision.value}"
        )
        self._emitir(TABLA_DESTINATARIOS, "UPDATE", respondido, solicitud.paciente_id)
        return self._vista_destinatario(respondido, solicitud, ahora)

    def _verificar_respuesta(
        self, destinatario: Destinatario, solicitud: Solicitud, decision: EstadoDestinatario, ahora: datetime
    ) -> None:
        """
        Lanza el error que corresponda si la respuesta no se puede registrar.
        Repetir la misma decisión no es un error, aunque la solicitud ya haya cerrado.
        """
        if destinatario.estado == decision:
            return
        if destinatario.estado in DECISIONES:
            logger.warning(
                f"[farmacia_id={destinatario.farmacia_id}] Destinatario {destinatario.id} ya respondido "
                f"como {destinatario.estado.value}; se intentó {decision.value}."
            )
            raise YaRespondida()

        efectivo = estado_efectivo_solicitud(solicitud, ahora)
        if destinatario.estado == EstadoDestinatario.CANCELLED or efectivo != EstadoSolicitud.PENDING:
            cerrada_como = EstadoSolicitud.CANCELLED if destinatario.estado == EstadoDestinatario.CANCELLED else efectivo
            logger.warning(
                f"[farmacia_id={destinatario.farmacia_id}] Respuesta rechazada: la solicitud "
                f"{solicitud.id} está {cerrada_como.value}."
            )
            raise SolicitudCerrada(f"La solicitud ya está {cerrada_como.value}.")

    # -------------------------------------------------------------------------
    # Listar
    # -------------------------------------------------------------------------

    async def listar_para_paciente(
        self, paciente_id: str, ahora: datetime | None = None, idioma: str = "en"
    ) -> list[VistaSolicitud]:
        ahora = ahora or self.reloj()
        await reconciliar_expiradas(self.almacen, ahora)

        filas = await self.almacen.listar_de_paciente(paciente_id)
        return [self._vista_solicitud(solicitud, destinatarios, ahora, idioma) for solicitud, destinatarios in filas]

    async def listar_para_farmacia(
        self, farmacia_id: str, ahora: datetime | None = None, filtro: str = "all", idioma: str = "en"
    ) -> list[VistaDestinatario]:
        if filtro not in FILTROS:
            raise ErrorValidacion(f"Filtro desconocido: '{filtro}'. Opciones: {', '.join(FILTROS)}.")
        ahora = ahora or self.reloj()
        await reconciliar_expiradas(self.almacen, ahora)

        filas = await self.almacen.listar_de_farmacia(farmacia_id)
        vistas = [self._vista_destinatario(destinatario, solicitud, ahora, idioma) for destinatario, solicitud in filas]
        return [vista for vista in vistas if coincide_filtro(vista.estado_efectivo, filtro)]

    # -------------------------------------------------------------------------
    # Auxiliares
    # -------------------------------------------------------------------------

    def _vista_solicitud(
        self, solicitud: Solicitud, destinatarios: list[Destinatario], ahora: datetime, idioma: str = "en"
    ) -> VistaSolicitud:
        resumen = []
        for destinatario in destinatarios:
            resumen.append({
                "id": destinatario.id,
                "farmacia_id": destinatario.farmacia_id,
                "estado": destinatario.estado,
                "estado_efectivo": estado_efectivo_destinatario(destinatario, solicitud, ahora),
                "respondida_en": destinatario.respondida_en,
            })
        return VistaSolicitud(
            solicitud=solicitud,
            estado_efectivo=estado_efectivo_solicitud(solicitud, ahora),
            tiempo_restante=etiqueta_tiempo_restante(solicitud.expira_en, ahora, idioma),
            destinatarios=resumen,
            respuestas=resumir_respuestas(destinatarios, solicitud, ahora),
        )

    def _vista_destinatario(
        self, destinatario: Destinatario, solicitud: Solicitud, ahora: datetime, idioma: str = "en"
    ) -> VistaDestinatario:
        return VistaDestinatario(
            destinatario=destinatario,
            solicitud=solicitud,
            estado_efectivo=estado_efectivo_destinatario(destinatario, solicitud, ahora),
            tiempo_restante=etiqueta_tiempo_restante(solicitud.expira_en, ahora, idioma),
        )

    def _emitir(self, tabla: str, evento: str, registro, paciente_id: str | None = None) -> None:
        """
        Publica el cambio de fila. Nunca hace fallar la operación: el canal
        de cambios es de buena fe y la lectura siguiente es la que manda.
        """
        fila = registro.como_dict()
        if paciente_id is not None:
            fila["patient_id"] = paciente_id
        if "farmacia_id" in fila:
            fila["pharmacy_id"] = fila["farmacia_id"]
        if "paciente_id" in fila:
            fila["patient_id"] = fila["paciente_id"]
        fila = {clave: _a_json(valor) for clave, valor in fila.items()}

        try:
            self.emisor(tabla, evento, fila)
        except Exception as e:
            logger.error(f"No se pudo publicar el cambio {evento} en {tabla}: {e}")


def _a_json(valor):
    if isinstance(valor, datetime):
        return valor.isoformat()
    if isinstance(valor, (EstadoSolicitud, EstadoDestinatario, FormaFarmaceutica, Urgencia)):
        return valor.value
    return valor
