"""
YAML world snapshots.

The registry and session-log readers are separate tools. For the command-line
entry points they hand over a snapshot file of this shape::

    entities:
      - name: Targowisko
        type: location
        aliases: [Rynek]
        overrides:
          owner: ["Gildia Kupców (2025-01:)"]
    sessions:
      - date: 2025-02-14
        file: sesje/2025-02-14.md
        header: "Sesja 12"
        narrator: Mistrz Gry
        locations: ["Stolica/Targowisko", "Las -> Młyn"]
        intel:
          - directive: direct
            target: Kowalski
            recipients: [Ania]
            message: "Kowalski zna hasło."
"""
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pendulum
import yaml

from chronicle.logger import get_logger
from chronicle.models import Entity, EntityType, IntelEntry, SessionRecord
from chronicle.validity import DateUtils

logger = get_logger(__name__)


class SnapshotError(ValueError):
    """The snapshot file is structurally invalid."""


@dataclass(frozen=True)
class Snapshot:
    """Entities and session records read from one snapshot file."""
    entities: Tuple[Entity, ...]
    sessions: Tuple[SessionRecord, ...]


def _as_list(value: Any, what: str) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise SnapshotError(f"{what} must be a list, got {type(value).__name__}")
    return value


def _to_date(value: Any, where: str) -> Optional[pendulum.Date]:
    """YAML gives date objects for bare ISO dates and strings for 'YYYY-MM'."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return pendulum.date(value.year, value.month, value.day)
    if isinstance(value, date):
        return pendulum.date(value.year, value.month, value.day)
    parsed = DateUtils.parse_date_token(str(value))
    if parsed is None:
        logger.warning(f"{where}: unreadable date {value!r}, treating session as undated")
    return parsed


def entity_from_dict(data: Dict[str, Any], position: int = 0) -> Entity:
    """Build an Entity from one snapshot mapping."""
    if not isinstance(data, dict):
        raise SnapshotError(f"Entity #{position} must be a mapping, got {type(data).__name__}")

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise SnapshotError(f"Entity #{position} has no name")

    try:
        entity_type = EntityType.parse(str(data.get("type", "")))
    except ValueError as e:
        raise SnapshotError(f"Entity {name!r}: {e}") from e

    overrides_data = data.get("overrides") or {}
    if not isinstance(overrides_data, dict):
        raise SnapshotError(f"Entity {name!r}: overrides must be a mapping")
    overrides = {
        str(key): tuple(str(v) for v in _as_list(values, f"Entity {name!r} override {key!r}"))
        for key, values in overrides_data.items()
    }

    return Entity(
        canonical_name=name.strip(),
        entity_type=entity_type,
        aliases=tuple(str(a) for a in _as_list(data.get("aliases"), f"Entity {name!r} aliases")),
        overrides=overrides,
    )


def session_from_dict(data: Dict[str, Any], position: int = 0) -> SessionRecord:
    """Build a SessionRecord from one snapshot mapping."""
    if not isinstance(data, dict):
        raise SnapshotError(f"Session #{position} must be a mapping, got {type(data).__name__}")

    where = f"Session #{position}"
    intel = []
    for i, item in enumerate(_as_list(data.get("intel"), f"{where} intel")):
        if not isinstance(item, dict):
            raise SnapshotError(f"{where} intel #{i} must be a mapping")
        intel.append(IntelEntry(
            directive=str(item.get("directive", "")).strip(),
            target_name=str(item.get("target", "") or "").strip(),
            recipients=tuple(str(r) for r in _as_list(item.get("recipients"), f"{where} intel #{i} recipients")),
            message=str(item.get("message", "") or ""),
        ))

    return SessionRecord(
        session_date=_to_date(data.get("date"), where),
        file_path=data.get("file"),
        header=data.get("header"),
        narrator=data.get("narrator"),
        locations=tuple(str(loc) for loc in _as_list(data.get("locations"), f"{where} locations")),
        intel=tuple(intel),
    )


def load_snapshot(path: Path) -> Snapshot:
    """Read a snapshot file. Raises SnapshotError on structural problems."""
    logger.info(f"Loading snapshot {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise SnapshotError(f"Expected YAML top-level mapping (dict), got {type(data).__name__}")

    entities = tuple(
        entity_from_dict(item, i) for i, item in enumerate(_as_list(data.get("entities"), "entities"))
    )
    sessions = tuple(
        session_from_dict(item, i) for i, item in enumerate(_as_list(data.get("sessions"), "sessions"))
    )
    logger.info(f"Loaded {len(entities)} entities and {len(sessions)} sessions")
    return Snapshot(entities=entities, sessions=sessions)
