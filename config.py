# config.py
import os

# --- Database ---
# DATABASE_URL wins when set; otherwise the connection string is assembled from the parts.
DB_NAME = os.getenv("DB_NAME", "easyrepair")
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = int(os.getenv("DB_PORT", "5432"))

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"dbname={DB_NAME} user={DB_USER} password={DB_PASSWORD} host={DB_HOST} port={DB_PORT}",
)

# "postgres" for the real database, "memory" for local development and tests
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "postgres").lower()

# --- Session ---
SECRET_KEY = os.getenv("SECRET_KEY", "a_very_secret_key_please_change_me")
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", "86400"))  # 1 day
HTTPS_ONLY = os.getenv("HTTPS_ONLY", "false").lower() in ("1", "true", "yes")

# --- Uploads ---
UPLOAD_ROOT = os.getenv("UPLOAD_ROOT", "uploads")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

# --- Marketplace rules ---
SUBSCRIPTION_DAYS = int(os.getenv("SUBSCRIPTION_DAYS", "30"))
ADMIN_USERNAMES = {
    name.strip()
    for name in os.getenv("ADMIN_USERNAMES", "admin").split(",")
    if name.strip()
}

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Server (python main.py) ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
