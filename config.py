# config.py
import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-me")

    # MSSQL settings (used when SERVERNAME is present)
    SERVERNAME = os.environ.get("SERVERNAME")
    DATABASE   = os.environ.get("DATABASE", "SupplyChain")
    USERNAME   = os.environ.get("USERNAME")
    PSSWD      = os.environ.get("PSSWD")

    # anything SQLAlchemy understands, sqlite by default for local work
    DATABASE_URL = os.environ.get(
        "DATABASE_URL", "sqlite:///" + os.path.join(BASE_DIR, "shipments.db")
    )

    ARCHIVE_DIR   = os.environ.get("ARCHIVE_DIR", os.path.join(BASE_DIR, "archives"))
    TOKEN_MAX_AGE = int(os.environ.get("TOKEN_MAX_AGE", 60 * 60 * 24))

    # first admin account, created by init_db() when both are set
    ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME")
    ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD")

    # email
    SENDGRID_API_KEY        = os.environ.get("SENDGRID_API_KEY")
    NOTIFICATION_EMAIL_FROM = os.environ.get("NOTIFICATION_EMAIL_FROM", "noreply@synercore.com")
    EMAIL_TIMEOUT           = int(os.environ.get("EMAIL_TIMEOUT", 10))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # bins per warehouse
    WAREHOUSE_CAPACITY = {
        "PRETORIA": 650,
        "KLAPMUTS": 384,
        "Offsite":  384,
    }
    DEFAULT_WAREHOUSE_BINS = 384
    AVG_ITEMS_PER_BIN      = 1
    BINS_PER_PALLET        = 1
