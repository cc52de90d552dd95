"""
Shared record types.

Entities and session records are handed to the engine by the registry and
session-log readers. They are read fresh for every query and never written back.
"""
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

from chronicle.logger import get_logger

logger = get_logger(__name__)


# ===| ENUMS |===

class EntityType(StrEnum):
    """Registered entity types."""
    CHARACTER = "character"
    PLAYER = "player"
    ITEM = "item"  # items and currency holdings
    LOCATION = "location"
    GROUP = "group"
    DOOR = "door"

    @classmethod
    def parse(cls, value: str) -> "EntityType":
        """Parse a type name case-insensitively; 'currency' is an item."""
        norm = value.strip().lower()
        if norm == "currency":
            return cls.ITEM
        try:
            return cls(norm)
        except ValueError:
            raise ValueError(f"Unknown entity type: {value!r}") from None


PERSON_TYPES = frozenset({EntityType.CHARACTER, EntityType.PLAYER})


# ===| ENTITIES |===

@dataclass(frozen=True)
class Entity:
    """A registered entity with its aliases and raw override facts."""
    canonical_name: str
    entity_type: EntityType
    aliases: Tuple[str, ...] = ()
    overrides: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self):
        # Aliases keep first-seen order, duplicates of the name are dropped
        seen = {self.canonical_name.strip().lower()}
        aliases = []
        for alias in self.aliases:
            key = alias.strip().lower()
            if key and key not in seen:
                seen.add(key)
                aliases.append(alias.strip())
        object.__setattr__(self, "aliases", tuple(aliases))
        object.__setattr__(
            self,
            "overrides",
            MappingProxyType({k: tuple(v) for k, v in self.overrides.items()}),
        )

    @property
    def names(self) -> Tuple[str, ...]:
        """Canonical name followed by aliases."""
        return (self.canonical_name,) + self.aliases

    def override_layers(self, property_key: str, layer_id: str = "registry") -> Dict[str, Tuple[str, ...]]:
        """Overrides of one property as a single-layer map for the merger."""
        return {layer_id: self.overrides.get(property_key, ())}

    def __str__(self) -> str:
        return f"{self.canonical_name} [{self.entity_type}]"


# ===| SESSION LOG |===

@dataclass(frozen=True)
class Provenance:
    """Where a raw text span was read from."""
    file_path: Optional[str]
    session_date: Optional[date]
    header: Optional[str] = None


@dataclass(frozen=True)
class LocationOccurrence:
    """One raw location mention with its provenance."""
    text: str
    provenance: Provenance


@dataclass(frozen=True)
class IntelEntry:
    """A piece of intel handed to characters during a session."""
    directive: str
    target_name: str
    recipients: Tuple[str, ...] = ()
    message: str = ""


@dataclass(frozen=True)
class SessionRecord:
    """A parsed session log entry."""
    session_date: Optional[date]
    file_path: Optional[str] = None
    header: Optional[str] = None
    narrator: Optional[str] = None
    locations: Tuple[str, ...] = ()
    intel: Tuple[IntelEntry, ...] = ()

    @property
    def provenance(self) -> Provenance:
        return Provenance(file_path=self.file_path, session_date=self.session_date, header=self.header)


def occurrences_from_sessions(sessions: Iterable[SessionRecord]) -> list[LocationOccurrence]:
    """Flatten session location lists into occurrences, keeping provenance."""
    occurrences = []
    for session in sessions:
        provenance = session.provenance
        for text in session.locations:
            if text and text.strip():
                occurrences.append(LocationOccurrence(text=text, provenance=provenance))
    return occurrences


def entities_by_type(entities: Sequence[Entity]) -> Dict[EntityType, int]:
    """Count entities per type."""
    counts: Dict[EntityType, int] = {}
    for entity in entities:
        counts[entity.entity_type] = counts.get(entity.entity_type, 0) + 1
    return counts
