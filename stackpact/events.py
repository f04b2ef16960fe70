"""
Run event recording in NDJSON format.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .binding import REDACTED, is_secret_key
from .ids import check_run_id


def _scrub(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (REDACTED if is_secret_key(k) else v) for k, v in data.items()}


class EventLog:
    """
    Events of a single run.

    Always kept in memory; also appended to ``<events_dir>/<run_id>.ndjson``
    when an events directory is configured.
    """

    def __init__(self, run_id: str, events_dir: Optional[Path] = None):
        self.run_id = check_run_id(run_id)
        self.events: List[Dict[str, Any]] = []
        self.path: Optional[Path] = None
        if events_dir is not None:
            Path(events_dir).mkdir(parents=True, exist_ok=True)
            self.path = events_path(events_dir, run_id)

    def emit(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Record an event.

        Args:
            event_type: Event type (e.g., "RESOLVING", "VIOLATION")
            data: Event data; secret-looking keys are redacted

        Returns:
            The recorded event
        """
        event = {
            "ts": datetime.now().isoformat(),
            "run_id": self.run_id,
            "type": event_type,
            "data": _scrub(data or {}),
        }
        self.events.append(event)

        if self.path is not None:
            with open(self.path, "a") as f:
                f.write(json.dumps(event) + "\n")
                f.flush()

        return event

    def types(self) -> List[str]:
        return [e["type"] for e in self.events]


def read_events(path: Path) -> List[Dict[str, Any]]:
    """
    Read all events from an NDJSON file.

    Args:
        path: Events file

    Returns:
        List of events; malformed lines are skipped
    """
    path = Path(path)
    if not path.exists():
        return []

    events = []
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
    return events


def events_path(events_dir: Path, run_id: str) -> Path:
    """Events file of a run; the id is validated before it becomes a path."""
    return Path(events_dir) / f"{check_run_id(run_id)}.ndjson"


def read_run_events(events_dir: Path, run_id: str) -> List[Dict[str, Any]]:
    """Read the recorded events of one run."""
    return read_events(events_path(events_dir, run_id))


# Predefined event types for consistency
class EventTypes:
    RESOLVING = "RESOLVING"
    RESOLVED = "RESOLVED"
    RENDERING = "RENDERING"
    RENDERED = "RENDERED"
    VALIDATING = "VALIDATING"
    VIOLATION = "VIOLATION"
    ADVISORY = "ADVISORY"
    FAILED = "FAILED"
    BLOCKED = "BLOCKED"
    APPLYING = "APPLYING"
    APPLY_DONE = "APPLY_DONE"
    APPLY_ERROR = "APPLY_ERROR"
    DONE = "DONE"
