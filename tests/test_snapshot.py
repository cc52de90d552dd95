"""Tests for snapshot loading, engine config and record types."""

import pendulum
import pytest

from chronicle.config import EngineConfig
from chronicle.models import Entity, EntityType, SessionRecord, entities_by_type, occurrences_from_sessions
from chronicle.snapshot import SnapshotError, entity_from_dict, load_snapshot, session_from_dict

SNAPSHOT_YAML = """\
entities:
  - name: Targowisko
    type: location
    aliases: [Rynek]
    overrides:
      owner: ["Gildia Kupców (2025-01:)"]
  - name: Złota Korona
    type: Currency
    overrides:
      balance: "120 (2025-01:)"
  - name: Ania
    type: player
sessions:
  - date: 2025-02-14
    file: sesje/2025-02-14.md
    header: "Sesja 12"
    narrator: Ania
    locations: ["Stolica/Targowisko", "Las -> Młyn"]
    intel:
      - directive: direct
        target: Kowalski
        recipients: [Ania]
        message: "Kowalski zna hasło."
  - date: "2025-03"
    locations: Targowisko
  - date: "kiedyś"
"""


class TestLoadSnapshot:
    """Tests for load_snapshot."""

    @pytest.fixture
    def snapshot(self, tmp_path):
        path = tmp_path / "world.yaml"
        path.write_text(SNAPSHOT_YAML, encoding="utf-8")
        return load_snapshot(path)

    def test_entities(self, snapshot):
        assert [e.canonical_name for e in snapshot.entities] == ["Targowisko", "Złota Korona", "Ania"]
        targowisko = snapshot.entities[0]
        assert targowisko.entity_type == EntityType.LOCATION
        assert targowisko.aliases == ("Rynek",)
        assert targowisko.overrides["owner"] == ("Gildia Kupców (2025-01:)",)

    def test_currency_is_item(self, snapshot):
        coin = snapshot.entities[1]
        assert coin.entity_type == EntityType.ITEM
        assert coin.overrides["balance"] == ("120 (2025-01:)",)

    def test_sessions(self, snapshot):
        first = snapshot.sessions[0]
        assert first.session_date == pendulum.date(2025, 2, 14)
        assert first.file_path == "sesje/2025-02-14.md"
        assert first.narrator == "Ania"
        assert first.locations == ("Stolica/Targowisko", "Las -> Młyn")
        assert first.intel[0].target_name == "Kowalski"
        assert first.intel[0].recipients == ("Ania",)

    def test_month_date_and_scalar_list(self, snapshot):
        second = snapshot.sessions[1]
        assert second.session_date == pendulum.date(2025, 3, 1)
        assert second.locations == ("Targowisko",)

    def test_unreadable_date_is_undated(self, snapshot):
        assert snapshot.sessions[2].session_date is None

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        snapshot = load_snapshot(path)
        assert snapshot.entities == ()
        assert snapshot.sessions == ()

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(SnapshotError):
            load_snapshot(path)


class TestFromDict:
    """Tests for the per-record builders."""

    def test_unknown_type(self):
        with pytest.raises(SnapshotError):
            entity_from_dict({"name": "Smok", "type": "monster"})

    def test_missing_name(self):
        with pytest.raises(SnapshotError):
            entity_from_dict({"type": "location"})

    def test_bad_overrides(self):
        with pytest.raises(SnapshotError):
            entity_from_dict({"name": "Smok", "type": "character", "overrides": ["x"]})

    def test_bad_locations(self):
        with pytest.raises(SnapshotError):
            session_from_dict({"locations": {"a": 1}})

    def test_bad_intel(self):
        with pytest.raises(SnapshotError):
            session_from_dict({"intel": ["plotka"]})

    def test_snapshot_error_is_value_error(self):
        with pytest.raises(ValueError):
            entity_from_dict("Targowisko")


class TestEngineConfig:
    """Tests for EngineConfig."""

    def test_defaults(self):
        config = EngineConfig()
        assert config.fuzzy_max_distance == 2
        assert config.layer_priority == ("registry", "session_log")
        lengths = [len(s) for s in config.stem_suffixes]
        assert lengths == sorted(lengths, reverse=True)

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(
            "fuzzy_max_distance: 1\n"
            "layer_priority: [session_log, registry]\n"
            "colour: blue\n",
            encoding="utf-8",
        )
        config = EngineConfig.from_yaml(path)
        assert config.fuzzy_max_distance == 1
        assert config.layer_priority == ("session_log", "registry")

    def test_from_yaml_rejects_non_mapping(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("- 1\n", encoding="utf-8")
        with pytest.raises(TypeError):
            EngineConfig.from_yaml(path)

    def test_with_overrides_skips_none(self):
        config = EngineConfig().with_overrides(fuzzy_max_distance=None, near_duplicate_max_distance=3)
        assert config.fuzzy_max_distance == 2
        assert config.near_duplicate_max_distance == 3

    @pytest.mark.parametrize("values", [
        {"fuzzy_max_distance": -1},
        {"near_duplicate_max_distance": 0},
        {"hierarchy_separator": ""},
    ])
    def test_invalid_values(self, values):
        with pytest.raises(ValueError):
            EngineConfig(**values)


class TestModels:
    """Tests for record types."""

    def test_alias_dedup(self):
        entity = Entity("Targowisko", EntityType.LOCATION, aliases=("targowisko", "Rynek", "RYNEK", " "))
        assert entity.aliases == ("Rynek",)
        assert entity.names == ("Targowisko", "Rynek")

    def test_str(self):
        assert str(Entity("Ania", EntityType.PLAYER)) == "Ania [player]"

    def test_parse_type(self):
        assert EntityType.parse(" Location ") == EntityType.LOCATION
        assert EntityType.parse("currency") == EntityType.ITEM
        with pytest.raises(ValueError):
            EntityType.parse("dragon")

    def test_occurrences_keep_provenance(self, sessions):
        occurrences = occurrences_from_sessions(sessions)
        assert [o.text for o in occurrences] == [
            "Stolica/Targowisko", "Targowisko -> Karczma", "targowisko*", "Brama Północna",
        ]
        assert occurrences[2].provenance.session_date == pendulum.date(2025, 3, 2)
        assert occurrences[0].provenance.header == "Sesja 1"

    def test_entities_by_type(self, entities):
        counts = entities_by_type(entities)
        assert counts[EntityType.LOCATION] == 3
        assert counts[EntityType.DOOR] == 1

    def test_session_defaults(self):
        record = SessionRecord(session_date=None)
        assert record.locations == ()
        assert record.intel == ()
