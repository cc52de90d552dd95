"""
Name index over the entity registry.

Three lookup structures are built once from the full entity set:
1. Exact map   - normalized name or alias -> entries (one per owner type)
2. Stem map    - coarse suffix-stripped form -> candidate entries
3. BK-tree     - metric tree over normalized names keyed by edit distance

The index is immutable once built. When the entity set changes it is rebuilt,
never updated in place.
"""
import unicodedata
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from chronicle.config import EngineConfig
from chronicle.logger import get_logger
from chronicle.models import Entity, EntityType, entities_by_type

logger = get_logger(__name__)


class InvalidEntitySetError(ValueError):
    """The entity set cannot be indexed (missing, empty or malformed)."""


# ============================================================================
# STRING SIMILARITY
# ============================================================================

class StringSimilarity:
    """String normalization and edit distance."""

    @staticmethod
    def normalize_for_comparison(s: str) -> str:
        """NFKC, lowercase, collapse whitespace."""
        s = unicodedata.normalize("NFKC", s)
        s = s.lower()
        s = " ".join(s.split())
        return s.strip()

    @staticmethod
    def levenshtein_distance(s1: str, s2: str) -> int:
        """Plain Levenshtein distance on the strings as given."""
        if s1 == s2:
            return 0
        m, n = len(s1), len(s2)
        if m > n:
            s1, s2, m, n = s2, s1, n, m
        if m == 0:
            return n

        # Two rows are enough
        prev = list(range(n + 1))
        curr = [0] * (n + 1)

        for i in range(1, m + 1):
            curr[0] = i
            for j in range(1, n + 1):
                if s1[i-1] == s2[j-1]:
                    curr[j] = prev[j-1]
                else:
                    curr[j] = 1 + min(prev[j], curr[j-1], prev[j-1])
            prev, curr = curr, prev

        return prev[n]


# ============================================================================
# STEMMING
# ============================================================================

class SuffixStemmer:
    """Strip at most one inflectional suffix per word."""

    def __init__(self, suffixes: Sequence[str], min_stem_length: int = 3):
        self.suffixes = sorted(suffixes, key=len, reverse=True)
        self.min_stem_length = min_stem_length

    def stem_word(self, word: str) -> str:
        for suffix in self.suffixes:
            if word.endswith(suffix) and len(word) - len(suffix) >= self.min_stem_length:
                return word[:-len(suffix)]
        return word

    def stem(self, text: str) -> str:
        norm = StringSimilarity.normalize_for_comparison(text)
        return " ".join(self.stem_word(word) for word in norm.split())


# ============================================================================
# BK-TREE
# ============================================================================

class BKTree:
    """
    Burkhard-Keller tree over strings under Levenshtein distance.

    Each node is (key, {distance: child}). A range query only descends into
    children whose edge distance lies within [d - r, d + r] of the query
    distance d, by the triangle inequality.
    """

    def __init__(self, distance=StringSimilarity.levenshtein_distance):
        self._distance = distance
        self._root: Optional[Tuple[str, Dict[int, Any]]] = None
        self._size = 0

    def add(self, key: str) -> bool:
        """Insert a key. Returns False if it was already present."""
        if self._root is None:
            self._root = (key, {})
            self._size = 1
            return True

        node = self._root
        while True:
            node_key, children = node
            d = self._distance(key, node_key)
            if d == 0:
                return False
            child = children.get(d)
            if child is None:
                children[d] = (key, {})
                self._size += 1
                return True
            node = child

    def query(self, word: str, max_distance: int) -> List[Tuple[int, str]]:
        """All keys within max_distance of word, sorted by (distance, key)."""
        if self._root is None:
            return []

        results: List[Tuple[int, str]] = []
        stack = [self._root]
        while stack:
            node_key, children = stack.pop()
            d = self._distance(word, node_key)
            if d <= max_distance:
                results.append((d, node_key))
            low, high = d - max_distance, d + max_distance
            for edge, child in children.items():
                if low <= edge <= high:
                    stack.append(child)

        results.sort()
        return results

    def __len__(self) -> int:
        return self._size

    def __contains__(self, key: str) -> bool:
        return any(d == 0 for d, _ in self.query(key, 0))

    def __iter__(self) -> Iterator[str]:
        if self._root is None:
            return
        stack = [self._root]
        while stack:
            node_key, children = stack.pop()
            yield node_key
            stack.extend(children.values())


# ============================================================================
# INDEX
# ============================================================================

@dataclass(frozen=True)
class IndexEntry:
    """One registered (name, owner type) and its owner."""
    name: str
    owner: Entity
    owner_type: EntityType
    ambiguous: bool = False
    rivals: Tuple[Entity, ...] = ()  # same-type owners that lost a collision

    @property
    def owners(self) -> Tuple[Entity, ...]:
        return (self.owner,) + self.rivals


@dataclass(frozen=True)
class NameCollision:
    """Two entities of the same type registered the same normalized name."""
    key: str
    owner_type: EntityType
    kept: Entity
    rejected: Entity


@dataclass
class _ExactSlot:
    name: str
    owner: Entity
    owner_type: EntityType
    rivals: List[Entity] = field(default_factory=list)

    def freeze(self) -> IndexEntry:
        return IndexEntry(
            name=self.name,
            owner=self.owner,
            owner_type=self.owner_type,
            ambiguous=bool(self.rivals),
            rivals=tuple(self.rivals),
        )


class NameIndex:
    """Immutable lookup structures over one entity set. Use NameIndex.build()."""

    def __init__(
            self,
            entities: Tuple[Entity, ...],
            exact: Dict[str, Tuple[IndexEntry, ...]],
            stems: Dict[str, Tuple[IndexEntry, ...]],
            bk_tree: BKTree,
            stemmer: SuffixStemmer,
            collisions: Tuple[NameCollision, ...],
    ):
        self.entities = entities
        self.exact = MappingProxyType(exact)
        self.stems = MappingProxyType(stems)
        self.bk_tree = bk_tree
        self.stemmer = stemmer
        self.collisions = collisions

    # ---| build |---

    @classmethod
    def build(cls, entities: Optional[Sequence[Entity]], config: Optional[EngineConfig] = None) -> "NameIndex":
        """
        Build the index from the full entity set.

        Raises InvalidEntitySetError when there is nothing to index or an
        entity is malformed.
        """
        config = config or EngineConfig()
        entities = cls._validate(entities)
        stemmer = SuffixStemmer(config.stem_suffixes, config.min_stem_length)

        logger.info(f"Building name index over {len(entities)} entities")

        # Phase 1: exact map, first registration wins
        slots: Dict[str, List[_ExactSlot]] = {}
        collisions: List[NameCollision] = []
        for entity in entities:
            for name in entity.names:
                key = StringSimilarity.normalize_for_comparison(name)
                if not key:
                    continue
                key_slots = slots.setdefault(key, [])
                slot = next((s for s in key_slots if s.owner_type == entity.entity_type), None)
                if slot is None:
                    key_slots.append(_ExactSlot(name=name, owner=entity, owner_type=entity.entity_type))
                elif slot.owner is entity or any(r is entity for r in slot.rivals):
                    continue
                else:
                    slot.rivals.append(entity)
                    collision = NameCollision(key, entity.entity_type, slot.owner, entity)
                    collisions.append(collision)
                    logger.warning(
                        f"Name collision on {key!r} ({entity.entity_type}): "
                        f"{slot.owner.canonical_name!r} kept, {entity.canonical_name!r} marked ambiguous"
                    )

        exact = {key: tuple(s.freeze() for s in key_slots) for key, key_slots in slots.items()}

        # Phase 2: stem map, one entry per owner and type
        stem_lists: Dict[str, List[IndexEntry]] = {}
        for key, entries in exact.items():
            stem_key = stemmer.stem(key)
            bucket = stem_lists.setdefault(stem_key, [])
            for entry in entries:
                if not any(e.owner is entry.owner for e in bucket):
                    bucket.append(entry)
        stems = {k: tuple(v) for k, v in stem_lists.items()}

        # Phase 3: BK-tree over every normalized name
        bk_tree = BKTree()
        for key in exact:
            bk_tree.add(key)

        index = cls(
            entities=entities,
            exact=exact,
            stems=stems,
            bk_tree=bk_tree,
            stemmer=stemmer,
            collisions=tuple(collisions),
        )
        logger.info(f"Name index built: {index.stats()}")
        return index

    @staticmethod
    def _validate(entities: Optional[Sequence[Entity]]) -> Tuple[Entity, ...]:
        if entities is None:
            raise InvalidEntitySetError("No entity set supplied")
        entities = tuple(entities)
        if not entities:
            raise InvalidEntitySetError("Entity set is empty")
        for position, entity in enumerate(entities):
            if not isinstance(entity, Entity):
                raise InvalidEntitySetError(
                    f"Entity #{position} is {type(entity).__name__}, expected Entity"
                )
            if not entity.canonical_name or not entity.canonical_name.strip():
                raise InvalidEntitySetError(f"Entity #{position} has a blank canonical name")
            if not isinstance(entity.entity_type, EntityType):
                raise InvalidEntitySetError(
                    f"Entity {entity.canonical_name!r} has unknown type {entity.entity_type!r}"
                )
        return entities

    # ---| lookups |---

    def normalize(self, text: str) -> str:
        return StringSimilarity.normalize_for_comparison(text)

    def lookup_exact(self, query: str) -> Tuple[IndexEntry, ...]:
        return self.exact.get(self.normalize(query), ())

    def lookup_stem(self, query: str) -> Tuple[IndexEntry, ...]:
        return self.stems.get(self.stemmer.stem(query), ())

    def lookup_fuzzy(self, query: str, max_distance: int) -> List[Tuple[int, IndexEntry]]:
        """Entries whose name lies within max_distance of the query, closest first."""
        hits: List[Tuple[int, IndexEntry]] = []
        for distance, key in self.bk_tree.query(self.normalize(query), max_distance):
            for entry in self.exact[key]:
                hits.append((distance, entry))
        return hits

    def stats(self) -> Dict[str, Any]:
        return {
            "entities": len(self.entities),
            "entities_by_type": {str(t): n for t, n in entities_by_type(self.entities).items()},
            "exact_keys": len(self.exact),
            "stem_keys": len(self.stems),
            "bk_tree_size": len(self.bk_tree),
            "ambiguous_keys": sum(1 for entries in self.exact.values() if any(e.ambiguous for e in entries)),
            "collisions": len(self.collisions),
        }
