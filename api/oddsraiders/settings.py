# api/oddsraiders/settings.py
import os
from pathlib import Path
from dotenv import load_dotenv

# Always load the repo-root .env (…/oddsraiders/.env), regardless of CWD
ROOT_ENV = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(dotenv_path=ROOT_ENV)


def _csv(name: str, default: str = "") -> list[str]:
    raw = os.getenv(name, default) or ""
    return [x.strip() for x in raw.split(",") if x.strip()]


class Settings:
    # ----------------------------------------------------------------------
    # Runtime
    # ----------------------------------------------------------------------
    ENV = os.getenv("ENV", "local")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS = _csv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")

    # ----------------------------------------------------------------------
    # Database
    # ----------------------------------------------------------------------
    DATABASE_URL = os.getenv("DATABASE_URL")
    PGHOST = os.getenv("PGHOST", "localhost")
    PGPORT = int(os.getenv("PGPORT", "5432"))
    PGUSER = os.getenv("PGUSER", "or_user")
    PGPASSWORD = os.getenv("PGPASSWORD", "or_pass")
    PGDATABASE = os.getenv("PGDATABASE", "or_db")

    # ----------------------------------------------------------------------
    # API-Football (RapidAPI / API-Sports v3)
    # ----------------------------------------------------------------------
    FOOTBALL_API_URL = os.getenv("FOOTBALL_API_URL", "https://v3.football.api-sports.io")
    FOOTBALL_API_KEY = os.getenv("FOOTBALL_API_KEY", "")
    RAPIDAPI_HOST = os.getenv("RAPIDAPI_HOST", "v3.football.api-sports.io")

    # ----------------------------------------------------------------------
    # Ingestion worker
    # ----------------------------------------------------------------------
    INGEST_LEAGUES = [int(x) for x in _csv("INGEST_LEAGUES", "39,140,78,135,61")]
    INGEST_SEASON = int(os.getenv("INGEST_SEASON", "2025"))
    INGEST_HTTP_TIMEOUT = float(os.getenv("INGEST_HTTP_TIMEOUT", "20"))
    INGEST_HTTP_RETRIES = int(os.getenv("INGEST_HTTP_RETRIES", "4"))
    INGEST_FETCH_WORKERS = int(os.getenv("INGEST_FETCH_WORKERS", "4"))
    INGEST_INTERVAL_SEC = float(os.getenv("INGEST_INTERVAL_SEC", "3600"))
    # cap on fixture-scoped calls (predictions/lineups/statistics) per cycle
    INGEST_FIXTURE_LIMIT = int(os.getenv("INGEST_FIXTURE_LIMIT", "50"))
    # a "running" ingest_runs row older than this belongs to a dead process
    INGEST_STALE_RUN_SEC = float(os.getenv("INGEST_STALE_RUN_SEC", "21600"))

    # ----------------------------------------------------------------------
    # PayFast
    # ----------------------------------------------------------------------
    PAYFAST_PROCESS_URL = os.getenv("PAYFAST_PROCESS_URL", "https://sandbox.payfast.co.za/eng/process")
    PAYFAST_MERCHANT_ID = os.getenv("PAYFAST_MERCHANT_ID", "")
    PAYFAST_MERCHANT_KEY = os.getenv("PAYFAST_MERCHANT_KEY", "")
    PAYFAST_NOTIFY_URL = os.getenv("PAYFAST_NOTIFY_URL", "")
    PAYFAST_RETURN_URL = os.getenv("PAYFAST_RETURN_URL", "")
    PAYFAST_CANCEL_URL = os.getenv("PAYFAST_CANCEL_URL", "")
    PAYFAST_ALLOWED_HOSTS = _csv("PAYFAST_ALLOWED_HOSTS")
    PAYFAST_PASSPHRASE = os.getenv("PAYFAST_PASSPHRASE", "")
    # reverse proxies (IPs/CIDRs) whose X-Forwarded-For is believed
    TRUSTED_PROXIES = _csv("TRUSTED_PROXIES")

    # ----------------------------------------------------------------------
    # Subscription plan
    # ----------------------------------------------------------------------
    SUBSCRIPTION_TERM_DAYS = int(os.getenv("SUBSCRIPTION_TERM_DAYS", "30"))
    SUBSCRIPTION_PRICE = os.getenv("SUBSCRIPTION_PRICE", "99.00")
    SUBSCRIPTION_ITEM_NAME = os.getenv("SUBSCRIPTION_ITEM_NAME", "OddsRaiders Premium")

    # ----------------------------------------------------------------------
    # Firebase auth
    # ----------------------------------------------------------------------
    FIREBASE_SERVICE_ACCOUNT_JSON = os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON")


settings = Settings()
