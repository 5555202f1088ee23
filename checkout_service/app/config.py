import os

# Get settings from environment variables.
# Defaults are good enough for a local run against SQLite.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./checkout.db")

RABBITMQ_HOST = os.getenv("RABBITMQ_HOST", "rabbitmq")
EVENTS_EXCHANGE = os.getenv("EVENTS_EXCHANGE", "events")

# Shared secret the admin console sends in the X-Admin-Token header.
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "change-me")

# Happy hour is evaluated against the cafeteria's wall clock, not the server's.
STORE_TIMEZONE = os.getenv("STORE_TIMEZONE", "Asia/Kolkata")

PAYMENT_SUCCESS_RATE = float(os.getenv("PAYMENT_SUCCESS_RATE", "0.9"))
PAYMENT_LATENCY_SECONDS = float(os.getenv("PAYMENT_LATENCY_SECONDS", "2.0"))
PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "10.0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

PORT = int(os.getenv("PORT", "8000"))
