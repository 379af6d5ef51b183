"""HTTP API for the reservation core."""

from slotguard.api.app import create_app, lifespan

__all__ = ["create_app", "lifespan"]
