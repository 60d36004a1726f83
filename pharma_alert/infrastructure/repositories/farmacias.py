from pharma_alert.solicitudes.modelos import FarmaciaCandidata


async def listar_candidatas(conn, paciente_id: str) -> list[FarmaciaCandidata]:
    """
    Devuelve las farmacias que podrían recibir una solicitud del paciente,
    cruzadas con sus favoritos.

    El filtro de verificada y con dueño se aplica ya en SQL para no traer
    todo el directorio, pero el motor de ruteo lo vuelve a comprobar:
    la decisión de elegibilidad vive en un solo lugar.
    El orden por nombre es el orden "de entrada" que el ruteo respeta.
    """
    async with conn.cursor() as cursor:
        await cursor.execute(
            """
            SELECT
                ph.id,
                ph.owner_id IS NOT NULL AS tiene_dueno,
                ph.is_verified,
                ph.is_on_call,
                ph.hours,
                f.pharmacy_id IS NOT NULL AS es_favorita
            FROM pharmacies ph
            LEFT JOIN favorites f
                   ON f.pharmacy_id = ph.id AND f.user_id = %s
            WHERE ph.is_verified = TRUE
              AND ph.owner_id IS NOT NULL
            ORDER BY ph.name ASC, ph.id ASC
            """,
            (paciente_id,)
        )
        filas = await cursor.fetchall()

    return [
        FarmaciaCandidata(
            id=fila[0],
            tiene_dueno=bool(fila[1]),
            verificada=bool(fila[2]),
            de_guardia=bool(fila[3]),
            horario=fila[4],
            es_favorita=bool(fila[5]),
        )
        for fila in filas
    ]
