import os

from dotenv import load_dotenv
from sqlalchemy.engine.url import make_url

# Carga .env en dev (no pisa variables ya definidas en el entorno)
load_dotenv(override=False)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # ==========================
    #  SECRET / SECURITY
    # ==========================
    SECRET_KEY = os.getenv("SECRET_KEY") or os.getenv("FLASK_SECRET_KEY", "change-me")

    # Token para endpoints internos (abono manual de créditos)
    ADMIN_TOKEN = os.getenv("ADMIN_TOKEN")

    # ==========================
    #  DATABASE
    # ==========================
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///photoai.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # ==========================
    #  APP (URL base para callbacks)
    # ==========================
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://127.0.0.1:8000")

    # ==========================
    #  VENDOR (entrenamiento / generación)
    # ==========================
    VENDOR_BASE_URL = os.getenv("VENDOR_BASE_URL", "https://api.vendor.example")
    VENDOR_API_KEY = os.getenv("VENDOR_API_KEY")
    VENDOR_TIMEOUT_SECONDS = float(os.getenv("VENDOR_TIMEOUT_SECONDS", "20"))

    # Secreto compartido para firmar webhooks (HMAC-SHA256)
    VENDOR_WEBHOOK_SECRET = os.getenv("VENDOR_WEBHOOK_SECRET")

    # ==========================
    #  CRÉDITOS
    # ==========================
    TRAINING_CREDIT_COST = _env_int("TRAINING_CREDIT_COST", 1)
    GENERATION_CREDIT_COST = _env_int("GENERATION_CREDIT_COST", 1)
    SIGNUP_CREDITS = _env_int("SIGNUP_CREDITS", 0)

    # ==========================
    #  SWEEPER (jobs sin webhook)
    # ==========================
    STALE_JOB_MINUTES = _env_int("STALE_JOB_MINUTES", 30)
    PENDING_JOB_MINUTES = _env_int("PENDING_JOB_MINUTES", 10)


# --- asegurar carpeta del archivo SQLite (evita "unable to open database file")
def ensure_sqlite_dir(uri: str) -> None:
    url = make_url(uri)
    if url.get_backend_name() != "sqlite":
        return
    db_path = url.database
    if db_path and db_path != ":memory:":
        directory = os.path.dirname(db_path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)


def check_config(cfg) -> None:
    """Falla al arrancar si los costos por job no permiten reservar crédito."""
    for key in ("TRAINING_CREDIT_COST", "GENERATION_CREDIT_COST"):
        value = cfg.get(key)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValueError(f"{key} debe ser un entero >= 1 (recibido: {value!r})")
