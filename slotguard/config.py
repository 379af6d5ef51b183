"""Centralized configuration for the slotguard package.

Provides paths, reservation timings, and environment configuration
used across all modules.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Package root (slotguard/ directory)
PACKAGE_ROOT = Path(__file__).parent

# Working directory (where the user runs the CLI or server from)
WORKING_DIR = Path.cwd()

# Load environment variables from current working directory
# This ensures .env is found where the service runs, not in site-packages
load_dotenv(WORKING_DIR / ".env")

# Directory paths (relative to working directory)
OUTPUTS_DIR = WORKING_DIR / "outputs"
DATABASE_PATH = Path(
    os.getenv("SLOTGUARD_DATABASE_PATH", str(OUTPUTS_DIR / "slotguard.db"))
)

# SQLite busy timeout, bounds how long a writer waits for the write lock
DB_TIMEOUT = float(os.getenv("SLOTGUARD_DB_TIMEOUT", "30.0"))  # seconds

# Reservation timings
LOCK_TTL_MINUTES = int(os.getenv("SLOTGUARD_LOCK_TTL_MINUTES", "5"))
CODE_TTL_MINUTES = int(os.getenv("SLOTGUARD_CODE_TTL_MINUTES", "10"))
CODE_DIGITS = int(os.getenv("SLOTGUARD_CODE_DIGITS", "6"))

# Cancel / reschedule window (hours before the appointment, and booking grace)
ELIGIBILITY_HOURS = int(os.getenv("SLOTGUARD_ELIGIBILITY_HOURS", "24"))

# Expiry sweeper
SWEEP_INTERVAL_SECONDS = int(os.getenv("SLOTGUARD_SWEEP_INTERVAL_SECONDS", "60"))

# Timezone used for practitioners that do not declare one
DEFAULT_TIMEZONE = os.getenv("SLOTGUARD_DEFAULT_TIMEZONE", "UTC")

# Return the verification code in reserve responses (development only;
# production delivers it out of band)
EXPOSE_CODES = os.getenv("SLOTGUARD_EXPOSE_CODES", "false").lower() in (
    "1",
    "true",
    "yes",
)

# HTTP server
HOST = os.getenv("SLOTGUARD_HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
