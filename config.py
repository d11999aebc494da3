import os
from typing import List

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "smart_campus")

JWT_SECRET = os.getenv("JWT_SECRET")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", 7))

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_CALLBACK_URL = os.getenv("GOOGLE_CALLBACK_URL", "http://localhost:5000/auth/google/callback")

ALLOWED_STUDENT_DOMAIN = os.getenv("ALLOWED_STUDENT_DOMAIN", "@klh.edu.in").lower()

UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 5 * 1024 * 1024))

PORT = int(os.getenv("PORT", 5000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def client_origins() -> List[str]:
    raw = os.getenv("CLIENT_URL", "")
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


def validate():
    """Fail fast on settings the server cannot run without."""
    missing = [name for name, value in (("JWT_SECRET", JWT_SECRET), ("DATABASE_URL", DATABASE_URL)) if not value]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")
