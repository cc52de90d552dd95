"""
Staged name resolution against a NameIndex.

Stages, each short-circuiting on the first hit:
1. Exact   - normalized verbatim lookup
2. Stem    - suffix-stripped lookup
3. Fuzzy   - BK-tree range query within the edit-distance budget

A stage whose candidates all fail the owner-type filter is not a hit. A stage
with more than one distinct candidate is a hit with an AMBIGUOUS outcome; the
resolver never picks one of several candidates.
"""
from dataclasses import dataclass, replace
from enum import StrEnum
from pathlib import Path
from typing import Collection, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from chronicle.config import EngineConfig
from chronicle.logger import get_logger, set_verbose
from chronicle.models import Entity, EntityType
from chronicle.name_index import IndexEntry, NameIndex

logger = get_logger(__name__)

OwnerTypeFilter = Union[None, EntityType, Collection[EntityType]]


# ===| ENUMS |===

class ResolutionStatus(StrEnum):
    """Outcome of a resolution."""
    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    NO_MATCH = "no_match"


class MatchStage(StrEnum):
    """Stage that produced the outcome."""
    EXACT = "exact"
    STEM = "stem"
    FUZZY = "fuzzy"
    NONE = "none"


# ===| DATA CLASSES |===

@dataclass(frozen=True)
class Resolution:
    """Result of resolving one query."""
    query: str
    status: ResolutionStatus
    stage: MatchStage
    entry: Optional[IndexEntry] = None
    candidates: Tuple[Entity, ...] = ()
    distance: Optional[int] = None

    @property
    def matched(self) -> bool:
        return self.status == ResolutionStatus.MATCHED

    @property
    def ambiguous(self) -> bool:
        return self.status == ResolutionStatus.AMBIGUOUS

    @property
    def entity(self) -> Optional[Entity]:
        return self.entry.owner if self.entry is not None else None

    def describe(self) -> str:
        if self.matched:
            suffix = f", distance {self.distance}" if self.distance is not None else ""
            return f"{self.query!r} -> {self.entity} ({self.stage}{suffix})"
        if self.ambiguous:
            names = ", ".join(str(c) for c in self.candidates)
            return f"{self.query!r} -> ambiguous at {self.stage}: {names}"
        return f"{self.query!r} -> no match"

    @classmethod
    def no_match(cls, query: str) -> "Resolution":
        return cls(query=query, status=ResolutionStatus.NO_MATCH, stage=MatchStage.NONE)


CacheKey = Tuple[str, Optional[FrozenSet[EntityType]]]


class ResolutionCache:
    """
    Per-session memo of resolutions.

    Create one per query session and pass it to the resolver. It must not
    outlive the NameIndex it was filled from.
    """

    def __init__(self):
        self._entries: Dict[CacheKey, Resolution] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: CacheKey) -> Optional[Resolution]:
        resolution = self._entries.get(key)
        if resolution is None:
            self.misses += 1
        else:
            self.hits += 1
        return resolution

    def put(self, key: CacheKey, resolution: Resolution) -> None:
        self._entries[key] = resolution

    def __len__(self) -> int:
        return len(self._entries)


# ===| RESOLVER |===

def _normalize_filter(owner_type: OwnerTypeFilter) -> Optional[FrozenSet[EntityType]]:
    if owner_type is None:
        return None
    if isinstance(owner_type, EntityType):
        return frozenset({owner_type})
    return frozenset(owner_type)


def _distinct_owners(entries: Iterable[IndexEntry]) -> List[Entity]:
    owners: List[Entity] = []
    for entry in entries:
        for owner in entry.owners:
            if not any(o is owner for o in owners):
                owners.append(owner)
    return owners


class NameResolver:
    """Resolve free-text names against one NameIndex. Never mutates the index."""

    def __init__(self, index: NameIndex, config: Optional[EngineConfig] = None):
        self.index = index
        self.config = config or EngineConfig()

    def resolve(
            self,
            query: str,
            owner_type: OwnerTypeFilter = None,
            cache: Optional[ResolutionCache] = None
    ) -> Resolution:
        """Resolve a query, optionally restricted to one or more owner types."""
        type_filter = _normalize_filter(owner_type)
        norm = self.index.normalize(query or "")
        if not norm:
            return Resolution.no_match(query)

        key = (norm, type_filter)
        if cache is not None:
            cached = cache.get(key)
            if cached is not None:
                # Cached under the normalized key, report the spelling asked for
                return cached if cached.query == query else replace(cached, query=query)

        resolution = self._resolve_uncached(query, norm, type_filter)
        logger.debug(f"Resolved {resolution.describe()}")

        if cache is not None:
            cache.put(key, resolution)
        return resolution

    def resolve_many(
            self,
            queries: Iterable[str],
            owner_type: OwnerTypeFilter = None,
            cache: Optional[ResolutionCache] = None
    ) -> Dict[str, Resolution]:
        """Resolve a batch of queries sharing one cache."""
        cache = cache if cache is not None else ResolutionCache()
        return {query: self.resolve(query, owner_type, cache) for query in queries}

    def _resolve_uncached(
            self,
            query: str,
            norm: str,
            type_filter: Optional[FrozenSet[EntityType]]
    ) -> Resolution:
        def accept(entry: IndexEntry) -> bool:
            return type_filter is None or entry.owner_type in type_filter

        # Stage 1: exact
        exact = [e for e in self.index.lookup_exact(norm) if accept(e)]
        if exact:
            return self._outcome(query, MatchStage.EXACT, exact)

        # Stage 2: stem
        stemmed = [e for e in self.index.lookup_stem(norm) if accept(e)]
        if stemmed:
            return self._outcome(query, MatchStage.STEM, stemmed)

        # Stage 3: edit distance
        if len(norm) < self.config.min_fuzzy_query_length:
            return Resolution.no_match(query)
        fuzzy = [(d, e) for d, e in self.index.lookup_fuzzy(norm, self.config.fuzzy_max_distance) if accept(e)]
        if fuzzy:
            return self._outcome(query, MatchStage.FUZZY, [e for _, e in fuzzy], distance=fuzzy[0][0])

        return Resolution.no_match(query)

    @staticmethod
    def _outcome(
            query: str,
            stage: MatchStage,
            entries: List[IndexEntry],
            distance: Optional[int] = None
    ) -> Resolution:
        owners = _distinct_owners(entries)
        if len(owners) == 1:
            return Resolution(
                query=query,
                status=ResolutionStatus.MATCHED,
                stage=stage,
                entry=entries[0],
                candidates=tuple(owners),
                distance=distance,
            )
        return Resolution(
            query=query,
            status=ResolutionStatus.AMBIGUOUS,
            stage=stage,
            candidates=tuple(owners),
        )


def resolve_name(
        query: str,
        entities: List[Entity],
        owner_type: OwnerTypeFilter = None,
        config: Optional[EngineConfig] = None
) -> Resolution:
    """One-shot resolution: builds the index for this call only."""
    config = config or EngineConfig()
    return NameResolver(NameIndex.build(entities, config), config).resolve(query, owner_type)


if __name__ == "__main__":
    from argparse import ArgumentParser

    from chronicle.snapshot import load_snapshot

    parser = ArgumentParser(description="Resolve names against the entity registry")
    parser.add_argument("queries", nargs="+", help="Names to resolve")
    parser.add_argument(
        "--snapshot",
        type=Path,
        default=Path("../data/world.yaml"),
        help="Path to the YAML world snapshot (default: ../data/world.yaml)"
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to an engine config YAML")
    parser.add_argument(
        "--type",
        dest="owner_type",
        type=EntityType.parse,
        default=None,
        help="Restrict matches to one entity type (e.g. location)"
    )
    parser.add_argument("--max-distance", type=int, default=None, help="Edit-distance budget (default: 2)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()
    set_verbose(args.verbose)

    engine_config = EngineConfig.from_yaml(args.config) if args.config else EngineConfig()
    engine_config = engine_config.with_overrides(fuzzy_max_distance=args.max_distance)

    snapshot = load_snapshot(args.snapshot)
    resolver = NameResolver(NameIndex.build(snapshot.entities, engine_config), engine_config)
    results = resolver.resolve_many(args.queries, args.owner_type)

    for result in results.values():
        print(result.describe())
