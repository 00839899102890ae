import os

# ----------------------------
# Config & Constants
# ----------------------------
_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

DB_PATH = (
    os.environ.get("DB_PATH", "").strip()
    or os.path.join(_ROOT, "bingo-db.json")
)
STORE_BACKEND = os.getenv("STORE_BACKEND", "file").lower()  # 'file' | 'sql'
DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(_ROOT, "bingo-db.sqlite3")
)

IDEMP_BACKEND = os.getenv("IDEMP_BACKEND", "document").lower()  # | 'redis'
REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")
IDEMP_TTL_SECONDS = int(os.getenv("IDEMP_TTL_SECONDS", str(24 * 3600)))

ORDER_PENDING_TTL_MINUTES = int(os.getenv("ORDER_PENDING_TTL_MINUTES", "30"))
PAYMENT_MODE = os.getenv("PAYMENT_MODE", "SIMULATED").upper()

# retry ceiling for card generation = multiplier * requested cards
ISSUANCE_SAFETY_MULTIPLIER = int(os.getenv("ISSUANCE_SAFETY_MULTIPLIER", "20"))
DEFAULT_COMBO_SIZE = int(os.getenv("DEFAULT_COMBO_SIZE", "6"))
SALES_LOCK_LEAD_MINUTES = int(os.getenv("SALES_LOCK_LEAD_MINUTES", "15"))

ADMIN_TOKEN = os.environ.get("ADMIN_TOKEN", "").strip()

MOCK_SECRET = os.environ.get("MOCK_SECRET", "supersecret")
MOCK_WEBHOOK_URL = os.environ.get(
    "MOCK_WEBHOOK_URL",
    "http://localhost:8000/payments/webhook"
)

FILES_PATH = (
    os.environ.get("FILES_PATH", "").strip()
    or os.path.join(_ROOT, "files")
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
