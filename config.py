import os
from datetime import datetime, timezone
import requests
from requests.adapters import HTTPAdapter

ENV = os.getenv("ENV", "TEST").upper()

DEFAULTS = {
    "TEST": {
        "BPP_ID": "sellerapp.test",
        "BPP_URI": "http://localhost:5002",
        "BAP_ID": "buyerapp.test",
        "BAP_URI": "http://localhost:5001",
        "REPOSITORY_BACKEND": "memory",
    },
    "LIVE": {
        "BPP_ID": "sellerapp.com",
        "BPP_URI": "https://seller.example.com/ondc",
        "BAP_ID": "buyerapp.com",
        "BAP_URI": "https://buyer.example.com/ondc",
        "REPOSITORY_BACKEND": "sqlite",
    }
}

cfg = DEFAULTS["LIVE"] if ENV == "LIVE" else DEFAULTS["TEST"]


def _csv(name: str, default: str) -> list[str]:
    return [e.strip() for e in os.getenv(name, default).split(",") if e.strip()]


# Network identity (this process can serve either role, or both)
BPP_ID  = os.getenv("BPP_ID", cfg["BPP_ID"])
BPP_URI = os.getenv("BPP_URI", cfg["BPP_URI"])
BAP_ID  = os.getenv("BAP_ID", cfg["BAP_ID"])
BAP_URI = os.getenv("BAP_URI", cfg["BAP_URI"])

# Context defaults used when an outbound callback has no original context
DOMAIN       = os.getenv("DOMAIN", "retail:1.1.0")
COUNTRY_CODE = os.getenv("COUNTRY_CODE", "IND")
CITY_CODE    = os.getenv("CITY_CODE", "std:033")
CORE_VERSION = os.getenv("CORE_VERSION", "1.2.0")

# Store details stamped on synthesised fulfillments
STORE = {
    "gps": os.getenv("STORE_GPS", "22.5726,88.3639"),
    "locality": os.getenv("STORE_LOCALITY", "Park Street"),
    "city": os.getenv("CITY_NAME", "Kolkata"),
    "state": os.getenv("STATE_NAME", "West Bengal"),
    "country": COUNTRY_CODE,
    "area_code": os.getenv("STORE_PINCODE", "700016"),
    "phone": os.getenv("STORE_PHONE", "9000000000"),
    "email": os.getenv("STORE_EMAIL", "store@sellerapp.test"),
}
ENABLE_TRACKING = os.getenv("ENABLE_TRACKING", "false").lower() == "true"
PREPARATION_MINUTES = int(os.getenv("PREPARATION_MINUTES", "15"))
DEFAULT_DELIVERY_MINUTES = int(os.getenv("DEFAULT_DELIVERY_MINUTES", "60"))

# Business rules
SERVICEABLE_PINCODES = _csv("SERVICEABLE_PINCODES", "700016,700017,700019,700020")
FORCE_REJECT_ITEM_ID = os.getenv("FORCE_REJECT_ITEM_ID", "REJECT_ME")
ALLOWED_CANCELLATION_REASONS = frozenset(_csv(
    "ALLOWED_CANCELLATION_REASONS",
    "001,002,003,004,005,006,009,010,011,012,013,014,015,016,017,018,019,020,021",
))
NON_CANCELLABLE_STATES = frozenset(_csv("NON_CANCELLABLE_STATES", "Cancelled,Delivered,Completed"))
STALE_REQUEST_SECONDS = int(os.getenv("STALE_REQUEST_SECONDS", "120"))

# on_confirm reconciliation axes (items, quote, fulfillment)
RECONCILE_AXES = _csv("RECONCILE_AXES", "items,quote,fulfillment")

# Callback delivery
CALLBACK_MAX_ATTEMPTS = int(os.getenv("CALLBACK_MAX_ATTEMPTS", "3"))
CALLBACK_INITIAL_DELAY_MS = int(os.getenv("CALLBACK_INITIAL_DELAY_MS", "1000"))
CALLBACK_TIMEOUT_SECONDS = float(os.getenv("CALLBACK_TIMEOUT_SECONDS", "8"))
WORKER_THREADS = int(os.getenv("WORKER_THREADS", "8"))

# Email recipients (empty list disables alerts)
ADMIN_EMAILS = _csv("ADMIN_EMAILS", "")

EMAIL_CONFIG = {
    "smtp_server": os.getenv("SMTP_SERVER", "smtp.office365.com"),
    "smtp_port": int(os.getenv("SMTP_PORT", 587)),
    "smtp_username": os.getenv("SMTP_USERNAME", ""),
    "smtp_password": os.getenv("SMTP_PASSWORD", ""),  # set via ENV
    "from_addr": os.getenv("FROM_EMAIL", "relay-alerts@sellerapp.test"),
}

# ---------------- Paths (stable, absolute) ----------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Logging
LOG_DIR = os.getenv("LOG_DIR", os.path.join(BASE_DIR, "logs"))
LOG_FILE = os.getenv("LOG_FILE", "ondc_relay.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG").upper()
LOG_TO_CONSOLE = os.getenv("LOG_TO_CONSOLE", "0") == "1"

# Order state: "memory" (process lifetime) or "sqlite" (STATE_DB_PATH)
REPOSITORY_BACKEND = os.getenv("REPOSITORY_BACKEND", cfg["REPOSITORY_BACKEND"]).lower()
STATE_DB_PATH = os.getenv("STATE_DB_PATH", os.path.join(BASE_DIR, "state.db"))


# -------------- HTTP Session --------------
# No adapter-level retries: the delivery engine owns the retry policy.
SESSION = requests.Session()
adapter = HTTPAdapter(pool_connections=10, pool_maxsize=WORKER_THREADS, max_retries=0)
SESSION.mount("http://", adapter)
SESSION.mount("https://", adapter)
SESSION.headers.update({"Content-Type": "application/json", "Accept": "application/json"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")
