import os

from dotenv import load_dotenv, find_dotenv

# .env from the working directory, never overriding the real environment
load_dotenv(find_dotenv(usecwd=True), override=False)

APP_ENV = os.getenv("APP_ENV", "local")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./dev.db")

# DRY_RUN=1 -> outbound sends are logged, never delivered
DRY_RUN = os.getenv("DRY_RUN", "1") in ("1", "true", "True")

WHATSAPP_APP_SECRET = os.getenv("WHATSAPP_APP_SECRET", "")
WHATSAPP_VERIFY_TOKEN = os.getenv("WHATSAPP_VERIFY_TOKEN", "default_verify_token")
WHATSAPP_API_BASE = os.getenv("WHATSAPP_API_BASE", "https://graph.facebook.com/v18.0").rstrip("/")

RATE_LIMIT_WINDOW_SECONDS = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
RATE_LIMIT_MAX_EVENTS = int(os.getenv("RATE_LIMIT_MAX_EVENTS", "5"))
REPEAT_HISTORY_SIZE = int(os.getenv("REPEAT_HISTORY_SIZE", "10"))

HTTP_TIMEOUT = (
    float(os.getenv("HTTP_CONNECT_TIMEOUT", "5")),
    float(os.getenv("HTTP_READ_TIMEOUT", "15")),
)  # connect, read
