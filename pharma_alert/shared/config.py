"""
Configuración centralizada de PharmaAlert.

Carga las variables de entorno desde el archivo .env y expone
constantes con valores por defecto para todos los componentes:
servidor TCP, MariaDB, Redis, Celery, el gestor de solicitudes
y el evaluador de horarios.

Cualquier componente que necesite un valor configurable lo importa
desde acá, garantizando que exista una única fuente de verdad.
"""


import os
from dotenv import load_dotenv

# Con este path explícito el .env se encuentra sin importar desde dónde se ejecute el programa.
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), '..', '..', '.env'))

# =============================================================================
# Servidor TCP
# =============================================================================

# "" significa "todas las interfaces" (se convierte a None para asyncio).
SERVER_LISTEN_HOST = os.getenv("SERVER_LISTEN_HOST", "")
SERVER_PORT = int(os.getenv("SERVER_PORT", 9999))  # int() porque getenv devuelve strings

# =============================================================================
# MariaDB
# =============================================================================
DB_HOST     = os.getenv("DB_HOST", "localhost")
DB_PORT     = int(os.getenv("DB_PORT", 3306))
DB_NAME     = os.getenv("DB_NAME", "pharma_alert")
DB_USER     = os.getenv("DB_USER", "pharma_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "pharma_pass")

# Tope en segundos para cualquier llamada al almacén o al canal de cambios.
# Pasado ese tiempo la operación falla con TiempoAgotadoAlmacen (transitorio).
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", 5.0))

# =============================================================================
# Redis
# =============================================================================
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_DB   = int(os.getenv("REDIS_DB", 0))
REDIS_URL  = f"redis://{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}"

# Canal pub/sub donde se publican los cambios de filas de solicitudes y destinatarios.
REDIS_CHANGES_CHANNEL = os.getenv("REDIS_CHANGES_CHANNEL", "pharma:cambios")

# =============================================================================
# Celery
# =============================================================================
CELERY_BROKER_URL     = REDIS_URL
CELERY_RESULT_BACKEND = REDIS_URL

# =============================================================================
# Solicitudes y horarios
# =============================================================================

# Los horarios semanales se cargan en hora local de la farmacia.
# El reloj del sistema trabaja en UTC y se convierte a esta zona antes de evaluar.
PHARMACY_TIMEZONE = os.getenv("PHARMACY_TIMEZONE", "Europe/Athens")

DEFAULT_REQUEST_DURATION = os.getenv("DEFAULT_REQUEST_DURATION", "1h")
