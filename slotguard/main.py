"""Slotguard API entry point.

Run with:
    uvicorn slotguard.main:app --reload

Or:
    python -m slotguard.main
"""

import logging

from slotguard.api.app import create_app, lifespan
from slotguard.config import DATABASE_PATH, HOST, PORT
from slotguard.protocol import ReservationService
from slotguard.storage import SlotGuardDB

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

# Create app with lifespan
app = create_app(ReservationService(SlotGuardDB(DATABASE_PATH)))
app.router.lifespan_context = lifespan


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("slotguard.main:app", host=HOST, port=PORT)
