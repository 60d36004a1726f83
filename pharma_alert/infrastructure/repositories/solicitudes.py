"""
Repositorio de solicitudes de pacientes y sus destinatarios.

Todas las funciones son async y reciben una conexión aiomysql abierta.
No aplican timeouts ni traducen errores: de eso se encarga AlmacenMariaDB.

Las fechas se guardan como DATETIME(6) en UTC sin zona y se devuelven
como datetime con tzinfo=UTC.
"""

import asyncio
from datetime import datetime, timezone

from pharma_alert.solicitudes.modelos import (
    Destinatario,
    EstadoDestinatario,
    EstadoSolicitud,
    FormaFarmaceutica,
    Solicitud,
    Urgencia,
)

COLUMNAS_SOLICITUD = (
    "p.id, p.patient_id, p.medicine_query, p.dosage, p.form, p.urgency, "
    "p.status, p.created_at, p.expires_at, p.updated_at"
)
COLUMNAS_DESTINATARIO = "r.id, r.request_id, r.pharmacy_id, r.status, r.responded_at, r.updated_at"


def a_bd(momento: datetime | None) -> datetime | None:
    """datetime con zona → UTC naive, que es lo que guarda MariaDB."""
    if momento is None or momento.tzinfo is None:
        return momento
    return momento.astimezone(timezone.utc).replace(tzinfo=None)


def desde_bd(momento: datetime | None) -> datetime | None:
    if momento is None:
        return None
    return momento.replace(tzinfo=timezone.utc)


def fila_a_solicitud(fila) -> Solicitud:
    return Solicitud(
        id=fila[0],
        paciente_id=fila[1],
        medicamento=fila[2],
        dosis=fila[3],
        forma=FormaFarmaceutica(fila[4]) if fila[4] else None,
        urgencia=Urgencia(fila[5]) if fila[5] else None,
        estado=EstadoSolicitud(fila[6]),
        creada_en=desde_bd(fila[7]),
        expira_en=desde_bd(fila[8]),
        actualizada_en=desde_bd(fila[9]),
    )


def fila_a_destinatario(fila) -> Destinatario:
    return Destinatario(
        id=fila[0],
        solicitud_id=fila[1],
        farmacia_id=fila[2],
        estado=EstadoDestinatario(fila[3]),
        respondida_en=desde_bd(fila[4]),
        actualizada_en=desde_bd(fila[5]),
    )


async def insertar_solicitud_con_destinatarios(conn, solicitud: Solicitud, destinatarios: list[Destinatario]) -> None:
    """
    Inserta la solicitud y todas sus filas de destinatario en UNA transacción.
    Si algo falla no queda nada: ni la solicitud sola ni una parte de los destinatarios.
    """
    await conn.begin()
    try:
        async with conn.cursor() as cursor:
            await cursor.execute(
                """
                INSERT INTO patient_requests
                    (id, patient_id, medicine_query, dosage, form, urgency,
                     status, created_at, expires_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    solicitud.id, solicitud.paciente_id, solicitud.medicamento, solicitud.dosis,
                    solicitud.forma.value if solicitud.forma else None,
                    solicitud.urgencia.value if solicitud.urgencia else None,
                    solicitud.estado.value,
                    a_bd(solicitud.creada_en), a_bd(solicitud.expira_en), a_bd(solicitud.actualizada_en),
                )
            )
            await cursor.executemany(
                """
                INSERT INTO patient_request_recipients
                    (id, request_id, pharmacy_id, status, responded_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                [
                    (d.id, d.solicitud_id, d.farmacia_id, d.estado.value, None, a_bd(d.actualizada_en))
                    for d in destinatarios
                ]
            )
        await conn.commit()

    except asyncio.CancelledError:
        # Cancelada a mitad de protocolo la conexión queda inutilizable.
        # Cerrarla hace que MariaDB descarte la transacción abierta.
        conn.close()
        raise

    except Exception:
        await conn.rollback()
        raise


async def obtener_solicitud(conn, solicitud_id: str) -> Solicitud | None:
    async with conn.cursor() as cursor:
        await cursor.execute(
            f"SELECT {COLUMNAS_SOLICITUD} FROM patient_requests p WHERE p.id = %s",
            (solicitud_id,)
        )
        fila = await cursor.fetchone()
    return fila_a_solicitud(fila) if fila else None


async def obtener_destinatario(conn, destinatario_id: str) -> Destinatario | None:
    async with conn.cursor() as cursor:
        await cursor.execute(
            f"SELECT {COLUMNAS_DESTINATARIO} FROM patient_request_recipients r WHERE r.id = %s",
            (destinatario_id,)
        )
        fila = await cursor.fetchone()
    return fila_a_destinatario(fila) if fila else None


async def marcar_cancelada(conn, solicitud_id: str, paciente_id: str, ahora: datetime) -> bool:
    """
    Pasa la solicitud a cancelled solo si sigue pendiente y sin vencer.
    El predicado del WHERE es el que evita pisar un expired o un cancelled previo.
    Devuelve True si se modificó la fila.
    """
    async with conn.cursor() as cursor:
        await cursor.execute(
            """
            UPDATE patient_requests
            SET status = 'cancelled', updated_at = %s
            WHERE id = %s AND patient_id = %s
              AND status = 'pending'
              AND expires_at > %s
            """,
            (a_bd(ahora), solicitud_id, paciente_id, a_bd(ahora))
        )
        return cursor.rowcount > 0


async def cancelar_destinatarios(conn, solicitud_id: str, ahora: datetime) -> int:
    """Cascada de la cancelación hacia las filas de las farmacias."""
    async with conn.cursor() as cursor:
        await cursor.execute(
            """
            UPDATE patient_request_recipients
            SET status = 'cancelled', updated_at = %s
            WHERE request_id = %s AND status <> 'cancelled'
            """,
            (a_bd(ahora), solicitud_id)
        )
        return cursor.rowcount


async def registrar_respuesta(conn, destinatario_id: str, farmacia_id: str, decision: str, ahora: datetime) -> bool:
    """
    Guarda la decisión de la farmacia en un único UPDATE multi-tabla.
    Solo escribe si el destinatario sigue pendiente y la solicitud madre
    sigue pendiente y sin vencer, así una cancelación o un vencimiento
    concurrente nunca queda pisado por una respuesta tardía.
    """
    async with conn.cursor() as cursor:
        await cursor.execute(
            """
            UPDATE patient_request_recipients r
            JOIN patient_requests p ON p.id = r.request_id
            SET r.status = %s, r.responded_at = %s, r.updated_at = %s
            WHERE r.id = %s AND r.pharmacy_id = %s
              AND r.status = 'pending'
              AND p.status = 'pending'
              AND p.expires_at > %s
            """,
            (decision, a_bd(ahora), a_bd(ahora), destinatario_id, farmacia_id, a_bd(ahora))
        )
        return cursor.rowcount > 0


async def expirar_pendientes(conn, ahora: datetime) -> int:
    """
    Barrido perezoso: toda solicitud pendiente con el plazo cumplido pasa a expired.
    Correrlo dos veces, o desde dos lectores a la vez, es inofensivo.
    """
    async with conn.cursor() as cursor:
        await cursor.execute(
            """
            UPDATE patient_requests
            SET status = 'expired', updated_at = %s
            WHERE status = 'pending' AND expires_at <= %s
            """,
            (a_bd(ahora), a_bd(ahora))
        )
        return cursor.rowcount


async def listar_de_paciente(conn, paciente_id: str) -> list[tuple[Solicitud, list[Destinatario]]]:
    """Solicitudes del paciente, de la más nueva a la más vieja, con sus destinatarios."""
    async with conn.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {COLUMNAS_SOLICITUD}
            FROM patient_requests p
            WHERE p.patient_id = %s
            ORDER BY p.created_at DESC
            """,
            (paciente_id,)
        )
        filas_solicitudes = await cursor.fetchall()

        await cursor.execute(
            f"""
            SELECT {COLUMNAS_DESTINATARIO}
            FROM patient_request_recipients r
            JOIN patient_requests p ON p.id = r.request_id
            WHERE p.patient_id = %s
            ORDER BY r.updated_at DESC
            """,
            (paciente_id,)
        )
        filas_destinatarios = await cursor.fetchall()

    por_solicitud: dict[str, list[Destinatario]] = {}
    for fila in filas_destinatarios:
        destinatario = fila_a_destinatario(fila)
        por_solicitud.setdefault(destinatario.solicitud_id, []).append(destinatario)

    return [
        (solicitud, por_solicitud.get(solicitud.id, []))
        for solicitud in map(fila_a_solicitud, filas_solicitudes)
    ]


async def listar_de_farmacia(conn, farmacia_id: str) -> list[tuple[Destinatario, Solicitud]]:
    """Bandeja de la farmacia: sus destinatarios con la solicitud madre, lo último primero."""
    async with conn.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {COLUMNAS_DESTINATARIO}, {COLUMNAS_SOLICITUD}
            FROM patient_request_recipients r
            JOIN patient_requests p ON p.id = r.request_id
            WHERE r.pharmacy_id = %s
            ORDER BY r.updated_at DESC
            """,
            (farmacia_id,)
        )
        filas = await cursor.fetchall()

    return [(fila_a_destinatario(fila[:6]), fila_a_solicitud(fila[6:])) for fila in filas]


async def listar_destinatarios_de_solicitud(conn, solicitud_id: str) -> list[Destinatario]:
    async with conn.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {COLUMNAS_DESTINATARIO}
            FROM patient_request_recipients r
            WHERE r.request_id = %s
            """,
            (solicitud_id,)
        )
        filas = await cursor.fetchall()
    return [fila_a_destinatario(fila) for fila in filas]
