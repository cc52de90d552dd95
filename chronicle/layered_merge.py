"""
Layered property merge.

An entity's effective state as of a date is the undated baseline (authored
per-entity file) overlaid with dated override layers (registry bullets, then
session-log entries). Layer precedence is explicit: the merger is constructed
with a layer priority and a layer supplied later in that priority wins ties.

The merge is a projection. It never mutates the entity or the override maps
it is given.
"""
from dataclasses import dataclass
from datetime import date
from typing import Any, Collection, Dict, List, Mapping, Optional, Sequence, Union

from chronicle.config import REGISTRY_LAYER, SESSION_LOG_LAYER
from chronicle.logger import get_logger
from chronicle.models import Entity
from chronicle.temporal_resolution import all_active, last_active
from chronicle.validity import Fact, Quantity, ValidityParser

logger = get_logger(__name__)

# A layer map ({layer_id: raw fact strings}) or a bare sequence, which is
# taken as the first layer of the priority list (lowest precedence on ties).
OverrideLayers = Union[Mapping[str, Sequence[str]], Sequence[str]]


@dataclass(frozen=True)
class ReputationEntry:
    """One reputation bullet: tier, primary value (who) and free-text detail."""
    tier: str
    value: str
    detail: Optional[str] = None


class LayeredPropertyMerger:
    """Compose baseline and override layers into as-of values."""

    def __init__(self, layer_priority: Sequence[str] = (REGISTRY_LAYER, SESSION_LOG_LAYER)):
        if not layer_priority:
            raise ValueError("layer_priority must name at least one layer")
        if len(set(layer_priority)) != len(layer_priority):
            raise ValueError(f"layer_priority lists a layer twice: {list(layer_priority)}")
        self.layer_priority = tuple(layer_priority)

    # ---| history construction |---

    def _normalize_layers(self, layers: Optional[OverrideLayers]) -> Mapping[str, Sequence[str]]:
        if layers is None:
            return {}
        if isinstance(layers, str):
            raise TypeError("override layers must be a mapping or a sequence of strings, not a string")
        if isinstance(layers, Mapping):
            unknown = [layer_id for layer_id in layers if layer_id not in self.layer_priority]
            if unknown:
                raise ValueError(
                    f"Unknown override layer(s) {unknown}; configured priority is {list(self.layer_priority)}"
                )
            return layers
        return {self.layer_priority[0]: layers}

    def build_history(
            self,
            baseline: Union[None, str, Sequence[str]],
            layers: Optional[OverrideLayers] = None
    ) -> List[Fact]:
        """
        Baseline facts first (undated), then every override in layer priority order.

        Empty baseline values are skipped. Override strings are parsed lazily
        here, so their annotations take effect.
        """
        history: List[Fact] = []

        if isinstance(baseline, str):
            baseline_values: Sequence[str] = [baseline]
        else:
            baseline_values = baseline or []
        for value in baseline_values:
            if value is not None and value.strip():
                history.append(Fact(value=value.strip()))

        layer_map = self._normalize_layers(layers)
        for layer_id in self.layer_priority:
            for raw in layer_map.get(layer_id, ()):
                if raw is None or not raw.strip():
                    continue
                history.append(ValidityParser.parse(raw))

        return history

    # ---| merges |---

    def merge_scalar(
            self,
            baseline: Optional[str],
            layers: Optional[OverrideLayers],
            as_of: Optional[date] = None
    ) -> Optional[str]:
        """Single value by last-dated-wins."""
        winner = last_active(self.build_history(baseline, layers), as_of)
        return winner.value if winner is not None else None

    def merge_multi(
            self,
            baseline: Optional[Sequence[str]],
            layers: Optional[OverrideLayers],
            as_of: Optional[date] = None
    ) -> List[str]:
        """Every value whose interval contains as_of, baseline first. Not deduplicated."""
        return [fact.value for fact in all_active(self.build_history(baseline, layers), as_of)]

    def merge_quantity(
            self,
            baseline: Optional[str],
            layers: Optional[OverrideLayers],
            as_of: Optional[date] = None
    ) -> Quantity:
        """Merge a balance as a scalar and keep both raw and parsed forms."""
        return Quantity.from_text(self.merge_scalar(baseline, layers, as_of))

    def merge_reputation_tier(
            self,
            tier: str,
            baseline_entries: Sequence[ReputationEntry],
            layers: Optional[OverrideLayers],
            as_of: Optional[date] = None
    ) -> List[ReputationEntry]:
        """
        Merge the values of one reputation tier.

        Only the primary value goes through the history. The detail of a
        baseline entry is restored when an active value matches it
        case-insensitively; values that only exist in override layers carry
        no detail. Case-insensitive duplicates collapse to the first one.
        """
        tier_entries = [e for e in baseline_entries if e.tier == tier]

        details: Dict[str, Optional[str]] = {}
        for entry in tier_entries:
            details.setdefault(entry.value.strip().casefold(), entry.detail)

        merged: List[ReputationEntry] = []
        seen = set()
        for value in self.merge_multi([e.value for e in tier_entries], layers, as_of):
            key = value.casefold()
            if key in seen:
                continue
            seen.add(key)
            merged.append(ReputationEntry(tier=tier, value=value, detail=details.get(key)))
        return merged

    def merge_reputation(
            self,
            baseline_entries: Sequence[ReputationEntry],
            layers_by_tier: Mapping[str, OverrideLayers],
            as_of: Optional[date] = None
    ) -> Dict[str, List[ReputationEntry]]:
        """Merge every tier found in the baseline or the overrides, first-seen tier order."""
        tiers: List[str] = []
        for tier in [e.tier for e in baseline_entries] + list(layers_by_tier):
            if tier not in tiers:
                tiers.append(tier)
        return {
            tier: self.merge_reputation_tier(tier, baseline_entries, layers_by_tier.get(tier), as_of)
            for tier in tiers
        }

    def project_entity(
            self,
            entity: Entity,
            baseline: Mapping[str, Union[str, Sequence[str]]],
            as_of: Optional[date] = None,
            multi_keys: Collection[str] = ()
    ) -> Dict[str, Any]:
        """
        Effective properties of one entity as of a date.

        Keys listed in multi_keys are merged as sets of values, the rest as
        scalars. Returns a new dict.
        """
        keys = list(baseline)
        keys += [k for k in entity.overrides if k not in baseline]

        projected: Dict[str, Any] = {}
        for key in keys:
            layers = entity.override_layers(key, self.layer_priority[0])
            base = baseline.get(key)
            if key in multi_keys:
                if isinstance(base, str):
                    base = [base]
                projected[key] = self.merge_multi(base, layers, as_of)
            else:
                if base is not None and not isinstance(base, str):
                    raise TypeError(f"Scalar property {key!r} of {entity} has a list baseline")
                projected[key] = self.merge_scalar(base, layers, as_of)

        logger.debug(f"Projected {len(projected)} properties of {entity} as of {as_of}")
        return projected
