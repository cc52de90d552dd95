"""Shared fixtures: a small campaign registry and session log."""

import pendulum
import pytest

from chronicle.config import EngineConfig
from chronicle.models import Entity, EntityType, IntelEntry, SessionRecord
from chronicle.name_index import NameIndex
from chronicle.name_resolver import NameResolver


@pytest.fixture
def entities():
    """Registry with unique names across all types."""
    return [
        Entity("Targowisko", EntityType.LOCATION, aliases=("Rynek",)),
        Entity("Stolica", EntityType.LOCATION),
        Entity("Karczma pod Dębem", EntityType.LOCATION, aliases=("Karczma",)),
        Entity("Jan Kowalski", EntityType.CHARACTER, aliases=("Kowalski",)),
        Entity("Ania", EntityType.PLAYER),
        Entity("Gildia Kupców", EntityType.GROUP, aliases=("Gildia",)),
        Entity(
            "Złota Korona",
            EntityType.ITEM,
            overrides={"balance": ("120 (2025-01:)", "95 (2025-03:)")},
        ),
        Entity("Brama Północna", EntityType.DOOR),
    ]


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def index(entities, config):
    return NameIndex.build(entities, config)


@pytest.fixture
def resolver(index, config):
    return NameResolver(index, config)


@pytest.fixture
def sessions():
    return [
        SessionRecord(
            session_date=pendulum.date(2025, 1, 10),
            file_path="sesje/2025-01-10.md",
            header="Sesja 1",
            narrator="Ania",
            locations=("Stolica/Targowisko", "Targowisko -> Karczma"),
            intel=(IntelEntry("direct", "Kowalski", ("Ania",), "Kowalski zna hasło."),),
        ),
        SessionRecord(
            session_date=pendulum.date(2025, 3, 2),
            file_path="sesje/2025-03-02.md",
            header="Sesja 2",
            locations=("targowisko*", "", "Brama Północna"),
            intel=(IntelEntry("group", "Gildia", ("Ania", "Zbigniew"), "Gildia szuka złodzieja."),),
        ),
    ]
