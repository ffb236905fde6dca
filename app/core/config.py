import os
from typing import List
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _mysql_uri() -> str:
    driver = os.getenv("DB_DRIVER", "pymysql")
    user = os.getenv("MYSQL_USER", "pharmacy_user")
    password = os.getenv("MYSQL_PASSWORD", "")
    host = os.getenv("MYSQL_HOST", "localhost")
    port = os.getenv("MYSQL_PORT", "3306")
    db = os.getenv("MYSQL_DB", "clinic_pharmacy")
    return (f"mysql+{driver}://{quote_plus(user)}:{quote_plus(password)}"
            f"@{host}:{port}/{db}?charset=utf8mb4")


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "Clinic Pharmacy API")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:8081,http://127.0.0.1:8081",
        ))

    # ---------- Database ----------
    # DATABASE_URL wins; otherwise MySQL from MYSQL_* vars
    SQLALCHEMY_DATABASE_URI: str = os.getenv("DATABASE_URL") or _mysql_uri()

    # ---------- Security ----------
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-this")
    JWT_ALG: str = os.getenv("JWT_ALG", "HS256")

    # ---------- Payment QR provider ----------
    QR_PROVIDER_BASE_URL: str = os.getenv("QR_PROVIDER_BASE_URL",
                                          "http://127.0.0.1:4000")
    QR_PROVIDER_PATH: str = os.getenv("QR_PROVIDER_PATH",
                                      "/users/getClinicsQRCode/{address_id}")
    QR_PROVIDER_TIMEOUT_SECONDS: float = float(
        os.getenv("QR_PROVIDER_TIMEOUT_SECONDS", "10") or 10.0)

    # ---------- Pharmacy ----------
    INVOICE_PREFIX: str = os.getenv("INVOICE_PREFIX", "PHINV-")
    BULK_IMPORT_MAX_ROWS: int = int(os.getenv("BULK_IMPORT_MAX_ROWS", "5000"))
    APP_TIMEZONE: str = os.getenv("APP_TIMEZONE", "Asia/Kolkata")

    # ---------- Logging ----------
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
