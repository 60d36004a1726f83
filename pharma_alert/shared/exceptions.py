"""
Excepciones del dominio de PharmaAlert.

Separadas en su propio módulo para que el gestor de solicitudes, la capa
de almacén y el servidor puedan importarlas sin depender unos de otros.

Cada excepción lleva un `codigo` estable que es lo que viaja al cliente,
y un flag `transitorio` que indica si reintentar la operación completa
tiene sentido. Solo los errores del almacén son transitorios: todas las
operaciones son idempotentes o transaccionales, así que un reintento a
ciegas es seguro.
"""


class ErrorPharmaAlert(Exception):
    """Base de todos los errores que el sistema reporta al usuario."""

    codigo = "ERROR"
    mensaje_por_defecto = "Error inesperado."
    transitorio = False

    def __init__(self, mensaje: str | None = None):
        self.mensaje = mensaje or self.mensaje_por_defecto
        super().__init__(self.mensaje)

    def como_dict(self) -> dict:
        return {
            "tipo": "error",
            "codigo": self.codigo,
            "mensaje": self.mensaje,
            "transitorio": self.transitorio,
        }


class ErrorValidacion(ErrorPharmaAlert):
    """Datos de entrada inválidos. Se rechaza antes de cualquier escritura."""

    codigo = "VALIDATION_ERROR"
    mensaje_por_defecto = "Los datos de la solicitud no son válidos."


class SinDestinatariosElegibles(ErrorPharmaAlert):
    """Ninguna farmacia puede recibir la solicitud en este momento."""

    codigo = "NO_ELIGIBLE_RECIPIENTS"
    mensaje_por_defecto = "No pharmacy can be reached right now."


class CreacionFallida(ErrorPharmaAlert):
    """
    La solicitud no pudo crearse y la transacción se revirtió completa.
    Ningún lector llega a ver una solicitud a medio enviar.
    """

    codigo = "CREATE_FAILED"
    mensaje_por_defecto = "La solicitud no pudo crearse. No se envió a ninguna farmacia."
    transitorio = True


class PermisoDenegado(ErrorPharmaAlert):
    """El actor no es dueño de la fila que intenta modificar."""

    codigo = "PERMISSION_DENIED"
    mensaje_por_defecto = "No tenés permiso sobre este registro."


class YaRespondida(ErrorPharmaAlert):
    """La farmacia ya respondió con una decisión distinta."""

    codigo = "ALREADY_RESPONDED"
    mensaje_por_defecto = "La solicitud ya fue respondida con otra decisión."


class SolicitudCerrada(ErrorPharmaAlert):
    """La solicitud está cancelada o expirada y ya no admite cambios."""

    codigo = "REQUEST_CLOSED"
    mensaje_por_defecto = "La solicitud ya no está pendiente."


class ErrorAlmacen(ErrorPharmaAlert):
    """Fallo de comunicación con el almacén. Reintentar es seguro."""

    codigo = "STORE_ERROR"
    transitorio = True


class TiempoAgotadoAlmacen(ErrorAlmacen):
    """La llamada al almacén superó STORE_TIMEOUT_SECONDS."""

    codigo = "STORE_TIMEOUT"
    mensaje_por_defecto = "El almacén no respondió a tiempo. Intentá de nuevo."


class AlmacenNoDisponible(ErrorAlmacen):
    """No se pudo establecer o mantener la conexión con el almacén."""

    codigo = "STORE_UNAVAILABLE"
    mensaje_por_defecto = "El almacén no está disponible en este momento."
