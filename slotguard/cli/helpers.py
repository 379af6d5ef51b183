"""CLI helper utilities.

Roster loading and shared formatting for CLI commands.
"""

from datetime import date
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from slotguard.models import Practitioner


class RosterLoadError(Exception):
    """Error loading or parsing a practitioner roster YAML file."""

    pass


def _coerce_time(value: Any) -> Any:
    """Undo YAML 1.1 sexagesimal parsing of unquoted times (9:30 -> 570)."""
    if isinstance(value, int):
        return f"{value // 60:02d}:{value % 60:02d}"
    return value


def load_roster_config(path: str | Path) -> dict[str, Any] | None:
    """Load and parse a roster YAML file.

    Args:
        path: Path to the roster YAML file (string or Path)

    Returns:
        Parsed YAML dict, or None if file is empty

    Raises:
        RosterLoadError: If file not found or invalid YAML
    """
    path = Path(path)

    if not path.exists():
        raise RosterLoadError(f"Roster file not found: {path}")

    try:
        with open(path) as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RosterLoadError(f"Invalid YAML in {path}: {e}") from e


def load_roster(path: str | Path) -> list[Practitioner]:
    """Load practitioners with fees and weekly availability from YAML.

    Expected layout::

        practitioners:
          - id: dr-lee
            name: Dr. Lee
            timezone: Europe/Helsinki
            consultation_modes: [online, in-person]
            fees: {online: 40, in-person: 60}
            availability:
              monday:
                - {start: "09:00", end: "09:30", mode: online}

    Raises:
        RosterLoadError: If the file is missing, empty, or malformed
    """
    config = load_roster_config(path)
    if not config or "practitioners" not in config:
        raise RosterLoadError(f"No 'practitioners' list in {path}")

    practitioners = []
    for index, entry in enumerate(config["practitioners"] or []):
        if not isinstance(entry, dict):
            raise RosterLoadError(f"Practitioner #{index} in {path} is not a mapping")
        availability = {
            weekday: [
                {**r, "start": _coerce_time(r.get("start")), "end": _coerce_time(r.get("end"))}
                if isinstance(r, dict)
                else r
                for r in (ranges or [])
            ]
            for weekday, ranges in (entry.get("availability") or {}).items()
        }
        try:
            practitioners.append(
                Practitioner.model_validate({**entry, "availability": availability})
            )
        except ValidationError as e:
            raise RosterLoadError(
                f"Invalid practitioner #{index} in {path}: {e.errors()[0]['msg']}"
            ) from e
    return practitioners


def parse_date(value: str) -> date:
    """argparse type for YYYY-MM-DD dates."""
    return date.fromisoformat(value)


__all__ = ["RosterLoadError", "load_roster", "load_roster_config", "parse_date"]
