"""
Repositorios de acceso a datos.
Cada módulo encapsula las consultas de una entidad del dominio.
Reciben una conexión ya abierta y no saben ni les importa cómo se creó.
"""

from pharma_alert.infrastructure.repositories import farmacias, solicitudes

__all__ = ["farmacias", "solicitudes"]
