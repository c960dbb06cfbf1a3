import os
from datetime import timedelta

from dotenv import load_dotenv

# Values already present in the environment win over the .env file
load_dotenv()

DATABASE_URL = os.environ.get("DATABASE_URL")

HOLD_TTL_MINUTES = int(os.environ.get("HOLD_TTL_MINUTES", "5"))
HOLD_TTL = timedelta(minutes=HOLD_TTL_MINUTES)

HOLD_CLEANUP_INTERVAL_SECONDS = int(os.environ.get("HOLD_CLEANUP_INTERVAL_SECONDS", "60"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

SERVICE_NAME = os.environ.get("SERVICE_NAME", "slot-holds")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8000"))
