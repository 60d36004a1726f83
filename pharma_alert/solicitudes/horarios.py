"""
Evaluador de horarios de atención.

Un horario semanal es un diccionario (o su texto JSON, que es como lo
guarda el directorio de farmacias) con una entrada por día:

    {"mon": {"closed": false, "open": "08:00", "close": "21:00"}, ...}

La regla de oro es fallar cerrado: ante un horario ausente, ilegible,
un día marcado como cerrado, una hora que no se puede interpretar, o un
cierre que no es posterior a la apertura, la farmacia se considera
cerrada. Nunca se asume abierta por las dudas.

Los tramos que cruzan la medianoche (ej: 20:00 → 02:00) no están
soportados: ese día cuenta como cerrado y no se arrastra nada al día
siguiente.
"""

import json
import re
from datetime import datetime, tzinfo

# Mismo orden que datetime.weekday(): 0 = lunes.
DIAS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

_PATRON_HORA = re.compile(r"^(\d{1,2}):(\d{2})$")

ETIQUETAS_DIAS = {
    "en": {"mon": "Mon", "tue": "Tue", "wed": "Wed", "thu": "Thu", "fri": "Fri", "sat": "Sat", "sun": "Sun"},
    "el": {"mon": "Δευ", "tue": "Τρι", "wed": "Τετ", "thu": "Πεμ", "fri": "Παρ", "sat": "Σαβ", "sun": "Κυρ"},
}
ETIQUETA_CERRADO = {"en": "Closed", "el": "Κλειστό"}


def hora_a_minutos(valor) -> int | None:
    """
    Convierte "HH:MM" a minutos desde la medianoche.
    "24:00" se acepta como cierre a fin del día. Cualquier otra cosa devuelve None.
    """
    if not isinstance(valor, str):
        return None
    coincidencia = _PATRON_HORA.match(valor.strip())
    if not coincidencia:
        return None

    horas, minutos = int(coincidencia.group(1)), int(coincidencia.group(2))
    if minutos > 59:
        return None
    if horas == 24 and minutos == 0:
        return 24 * 60
    if horas > 23:
        return None
    return horas * 60 + minutos


def _cargar(crudo) -> dict | None:
    if crudo is None:
        return None
    if isinstance(crudo, str):
        if not crudo.strip():
            return None
        try:
            crudo = json.loads(crudo)
        except ValueError:
            return None
    if not isinstance(crudo, dict):
        return None
    return crudo


def parsear_horario(crudo) -> dict[str, tuple[int, int] | None] | None:
    """
    Normaliza un horario semanal a {dia: (apertura, cierre)} en minutos,
    con None para los días cerrados o mal cargados.
    Devuelve None si el horario completo está ausente o es ilegible.
    """
    horario = _cargar(crudo)
    if horario is None:
        return None

    tramos = {}
    for dia in DIAS:
        entrada = horario.get(dia)
        if not isinstance(entrada, dict) or entrada.get("closed") is True:
            tramos[dia] = None
            continue

        apertura = hora_a_minutos(entrada.get("open"))
        cierre = hora_a_minutos(entrada.get("close"))
        if apertura is None or cierre is None or cierre <= apertura:
            tramos[dia] = None
            continue

        tramos[dia] = (apertura, cierre)
    return tramos


def esta_abierta_ahora(horario, ahora: datetime, zona: tzinfo | None = None) -> bool:
    """
    True si la farmacia atiende en el instante `ahora`.

    Si se pasa `zona` y `ahora` tiene zona horaria, primero se convierte a
    la hora local de la farmacia: los horarios se cargan en hora de pared.
    Solo se mira el día de `ahora`; la apertura es inclusiva y el cierre no.
    """
    tramos = parsear_horario(horario)
    if tramos is None:
        return False

    if zona is not None and ahora.tzinfo is not None:
        ahora = ahora.astimezone(zona)

    tramo = tramos.get(DIAS[ahora.weekday()])
    if tramo is None:
        return False

    apertura, cierre = tramo
    minutos_ahora = ahora.hour * 60 + ahora.minute
    return apertura <= minutos_ahora < cierre


def formatear_horario(crudo, idioma: str = "en") -> str | None:
    """
    Resume el horario semanal agrupando días consecutivos con el mismo valor:

        "Mon–Fri 08:00–21:00, Sat 09:00–14:00, Sun Closed"

    Un texto que no es JSON es un horario viejo cargado a mano y se devuelve tal cual.
    """
    if not crudo:
        return None
    horario = _cargar(crudo)
    if horario is None:
        return crudo if isinstance(crudo, str) else None

    etiquetas = ETIQUETAS_DIAS.get(idioma, ETIQUETAS_DIAS["en"])
    cerrado = ETIQUETA_CERRADO.get(idioma, ETIQUETA_CERRADO["en"])

    valores = []
    for dia in DIAS:
        entrada = horario.get(dia)
        if not isinstance(entrada, dict):
            entrada = {}
        apertura = entrada.get("open") if isinstance(entrada.get("open"), str) else ""
        cierre = entrada.get("close") if isinstance(entrada.get("close"), str) else ""
        if entrada.get("closed") is True or not (apertura and cierre):
            valores.append(cerrado)
        else:
            valores.append(f"{apertura}–{cierre}")

    # Grupos de [inicio, fin, valor] sobre índices de DIAS
    grupos = []
    for indice, valor in enumerate(valores):
        if grupos and grupos[-1][2] == valor:
            grupos[-1][1] = indice
        else:
            grupos.append([indice, indice, valor])

    partes = []
    for inicio, fin, valor in grupos:
        rango = etiquetas[DIAS[inicio]]
        if fin != inicio:
            rango = f"{rango}–{etiquetas[DIAS[fin]]}"
        partes.append(f"{rango} {valor}")
    return ", ".join(partes)
