"""Tests for baseline + override layer merging."""

import pendulum
import pytest

from chronicle.config import REGISTRY_LAYER, SESSION_LOG_LAYER
from chronicle.layered_merge import LayeredPropertyMerger, ReputationEntry
from chronicle.models import Entity, EntityType
from chronicle.validity import Fact


def d(year, month, day=1):
    return pendulum.date(year, month, day)


@pytest.fixture
def merger():
    return LayeredPropertyMerger()


class TestBuildHistory:
    """Tests for history construction."""

    def test_baseline_first_then_layers_in_priority(self, merger):
        history = merger.build_history(
            "10",
            {SESSION_LOG_LAYER: ["30 (2025-02:)"], REGISTRY_LAYER: ["20 (2025-01:)"]},
        )
        assert history == [Fact("10"), Fact("20", d(2025, 1)), Fact("30", d(2025, 2))]

    def test_empty_baseline_skipped(self, merger):
        assert merger.build_history("  ", ["20 (2025-01:)"]) == [Fact("20", d(2025, 1))]

    def test_bare_sequence_is_first_layer(self, merger):
        assert merger.build_history(None, ["a"]) == [Fact("a")]
        assert merger._normalize_layers(["a"]) == {REGISTRY_LAYER: ["a"]}
        reversed_merger = LayeredPropertyMerger([SESSION_LOG_LAYER, REGISTRY_LAYER])
        assert reversed_merger._normalize_layers(["a"]) == {SESSION_LOG_LAYER: ["a"]}

    def test_unknown_layer_rejected(self, merger):
        with pytest.raises(ValueError):
            merger.build_history(None, {"rumours": ["x"]})

    def test_string_layers_rejected(self, merger):
        with pytest.raises(TypeError):
            merger.build_history(None, "20 (2025-01:)")

    def test_priority_must_be_unique(self):
        with pytest.raises(ValueError):
            LayeredPropertyMerger([REGISTRY_LAYER, REGISTRY_LAYER])

    def test_priority_must_not_be_empty(self):
        with pytest.raises(ValueError):
            LayeredPropertyMerger([])


class TestMergeScalar:
    """Tests for merge_scalar."""

    def test_dated_overrides(self, merger):
        layers = ["20 (2025-01:)", "35 (2025-03:)"]
        assert merger.merge_scalar(None, layers, d(2025, 2)) == "20"
        assert merger.merge_scalar(None, layers, d(2025, 6)) == "35"

    def test_baseline_until_override_starts(self, merger):
        assert merger.merge_scalar("10", ["20 (2025-05:)"], d(2025, 2)) == "10"
        assert merger.merge_scalar("10", ["20 (2025-05:)"], d(2025, 5)) == "20"

    def test_undated_override_beats_baseline(self, merger):
        """Later layer wins when nothing is dated."""
        assert merger.merge_scalar("10", ["15"], d(2025, 2)) == "15"

    def test_layer_priority_breaks_ties(self):
        layers = {REGISTRY_LAYER: ["A (2025-01:)"], SESSION_LOG_LAYER: ["B (2025-01:)"]}
        assert LayeredPropertyMerger().merge_scalar(None, layers, d(2025, 2)) == "B"
        reversed_merger = LayeredPropertyMerger([SESSION_LOG_LAYER, REGISTRY_LAYER])
        assert reversed_merger.merge_scalar(None, layers, d(2025, 2)) == "A"

    def test_nothing_to_merge(self, merger):
        assert merger.merge_scalar("", [], d(2025, 2)) is None
        assert merger.merge_scalar(None, None, d(2025, 2)) is None

    def test_malformed_override_is_undated(self, merger):
        assert merger.merge_scalar("10", ["12 (wkrótce)"], d(2025, 2)) == "12 (wkrótce)"

    def test_caller_layers_not_mutated(self, merger):
        layers = {REGISTRY_LAYER: ["20 (2025-01:)"]}
        merger.merge_scalar("10", layers, d(2025, 2))
        assert layers == {REGISTRY_LAYER: ["20 (2025-01:)"]}


class TestMergeMulti:
    """Tests for merge_multi."""

    def test_active_set(self, merger):
        layers = ["Tarcza (2025-01:2025-04)", "Łuk (2025-03:)"]
        assert merger.merge_multi(["Miecz"], layers, d(2025, 3)) == ["Miecz", "Tarcza", "Łuk"]
        assert merger.merge_multi(["Miecz"], layers, d(2025, 5)) == ["Miecz", "Łuk"]

    def test_no_deduplication(self, merger):
        assert merger.merge_multi(["Miecz"], ["Miecz (2025-01:)"], d(2025, 2)) == ["Miecz", "Miecz"]


class TestMergeQuantity:
    """Tests for merge_quantity."""

    def test_parsed_balance(self, merger):
        quantity = merger.merge_quantity("100 zł", ["80 zł (2025-02:)"], d(2025, 3))
        assert quantity.raw_text == "80 zł"
        assert quantity.parsed_value == 80

    def test_unparseable_balance(self, merger):
        quantity = merger.merge_quantity("sakiewka", [], d(2025, 3))
        assert quantity.parsed_value is None


class TestMergeReputation:
    """Tests for reputation tier merging."""

    @pytest.fixture
    def baseline(self):
        return [
            ReputationEntry("pozytywna", "Gildia Kupców", "uratowali konwój"),
            ReputationEntry("pozytywna", "Straż Miejska"),
            ReputationEntry("negatywna", "Czarna Ręka", "spalony magazyn"),
        ]

    def test_detail_preserved_on_reassertion(self, merger, baseline):
        """An override re-asserting a baseline value keeps the baseline detail."""
        merged = merger.merge_reputation_tier(
            "pozytywna", baseline, ["gildia kupców (2025-02:)", "Rada (2025-03:)"], d(2025, 4)
        )
        assert merged == [
            ReputationEntry("pozytywna", "Gildia Kupców", "uratowali konwój"),
            ReputationEntry("pozytywna", "Straż Miejska", None),
            ReputationEntry("pozytywna", "Rada", None),
        ]

    def test_override_only_value_has_no_detail(self, merger, baseline):
        merged = merger.merge_reputation_tier("neutralna", baseline, ["Bractwo (2025-01:)"], d(2025, 2))
        assert merged == [ReputationEntry("neutralna", "Bractwo", None)]

    def test_future_override_not_active(self, merger, baseline):
        merged = merger.merge_reputation_tier("pozytywna", baseline, ["Rada (2025-09:)"], d(2025, 4))
        assert [e.value for e in merged] == ["Gildia Kupców", "Straż Miejska"]

    def test_all_tiers(self, merger, baseline):
        merged = merger.merge_reputation(
            baseline,
            {"negatywna": ["Przemytnicy (2025-01:)"], "neutralna": ["Bractwo"]},
            d(2025, 2),
        )
        assert list(merged) == ["pozytywna", "negatywna", "neutralna"]
        assert [e.value for e in merged["negatywna"]] == ["Czarna Ręka", "Przemytnicy"]
        assert merged["negatywna"][0].detail == "spalony magazyn"


class TestProjectEntity:
    """Tests for project_entity."""

    @pytest.fixture
    def entity(self):
        return Entity(
            "Jan Kowalski",
            EntityType.CHARACTER,
            overrides={
                "status": ("ranny (2025-02:)", "zdrowy (2025-04:)"),
                "items": ("Łuk (2025-03:)",),
            },
        )

    def test_projection(self, merger, entity):
        projected = merger.project_entity(
            entity,
            {"status": "zdrowy", "items": ["Miecz"], "home": "Stolica"},
            d(2025, 3),
            multi_keys={"items"},
        )
        assert projected == {"status": "ranny", "items": ["Miecz", "Łuk"], "home": "Stolica"}

    def test_override_only_key(self, merger, entity):
        projected = merger.project_entity(entity, {}, d(2025, 5), multi_keys={"items"})
        assert projected == {"status": "zdrowy", "items": ["Łuk"]}

    def test_entity_not_mutated(self, merger, entity):
        before = dict(entity.overrides)
        merger.project_entity(entity, {"status": "zdrowy"}, d(2025, 3))
        assert dict(entity.overrides) == before

    def test_overrides_are_read_only(self, entity):
        with pytest.raises(TypeError):
            entity.overrides["status"] = ("martwy",)

    def test_list_baseline_for_scalar_rejected(self, merger, entity):
        with pytest.raises(TypeError):
            merger.project_entity(entity, {"status": ["a", "b"]}, d(2025, 3))
