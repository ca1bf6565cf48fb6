import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


LOG_LEVEL = os.getenv("ROSTER_LOG_LEVEL", "INFO").upper()

# Whether approving leave may block slots that already hold bookings.
# Off by default: booked patients need a reschedule first.
LEAVE_BLOCKS_BOOKED_SLOTS = _flag("ROSTER_LEAVE_BLOCKS_BOOKED_SLOTS")

DEFAULT_SLOT_DURATION = int(os.getenv("ROSTER_DEFAULT_SLOT_DURATION", "30"))
DEFAULT_MAX_PATIENTS_PER_HOUR = int(
    os.getenv("ROSTER_DEFAULT_MAX_PATIENTS_PER_HOUR", "4")
)
DEFAULT_DEPARTMENT = os.getenv("ROSTER_DEFAULT_DEPARTMENT", "General")
