# Configuración centralizada del logging para todos los componentes del sistema.
import logging
import sys


# =============================================================================
# Formato del log
# =============================================================================
# Cada línea de log va a verse así:
#   2026-10-19 14:32:01 [INFO] solicitudes: Solicitud 3f2a... creada con 3 destinatario(s)
#
#   %(asctime)s   → Fecha y hora
#   %(levelname)s → Nivel del mensaje (INFO, WARNING, ERROR)
#   %(name)s      → Componente (servidor, solicitudes, expiracion, notificador, worker, almacen)
#   %(message)s   → El mensaje en sí
FORMATO_LOG = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FORMATO_FECHA = "%Y-%m-%d %H:%M:%S"


def obtener_logger(nombre: str, nivel: int = logging.INFO) -> logging.Logger:
    """
    Crea y devuelve un logger configurado con el formato estándar del sistema.

    :param nombre: Identificador del componente (ej: "servidor", "solicitudes").
    :param nivel:  Nivel mínimo de mensajes a mostrar. Por defecto INFO.
                     INFO     → Operaciones normales (solicitud creada, respuesta registrada)
                     WARNING  → Conflictos lógicos (solicitud cerrada, ya respondida,
                                permiso denegado, sin farmacias elegibles)
                     ERROR    → Fallos del almacén o del canal de cambios
    :return: Logger listo para usar
    """
    # getLogger devuelve siempre la misma instancia para el mismo nombre.
    logger = logging.getLogger(nombre)
    logger.setLevel(nivel)

    # Sin esta verificación cada llamada agregaría un handler y los mensajes saldrían duplicados.
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(nivel)
        handler.setFormatter(logging.Formatter(FORMATO_LOG, datefmt=FORMATO_FECHA))
        logger.addHandler(handler)

    return logger
