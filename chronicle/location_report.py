"""
Location Normalization & Conflict Report

Consumes raw free-text location mentions from session logs and produces one
row per distinct canonical location, with variant spellings, inferred
hierarchy, registry resolution and a list of data-quality conflicts.

Phases:
1. Route split        - "A -> B - C" becomes three mentions
2. Hierarchy split    - "Region/Town" records Region -> Town
3. Canonicalize/group - trim, strip trailing decoration, case-fold
4. Qualified links    - standalone "Town" vs qualified ".../Town"
5. Fuzzy dedup        - pairwise edit distance over standalone keys
6. Entity cross-ref   - resolve against the registry (Location first)
7. Conflict detection
"""
import json
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import StrEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from chronicle.config import EngineConfig
from chronicle.logger import get_logger, set_verbose
from chronicle.models import EntityType, LocationOccurrence, Provenance, occurrences_from_sessions
from chronicle.name_index import NameIndex, StringSimilarity
from chronicle.name_resolver import MatchStage, NameResolver, Resolution, ResolutionCache, ResolutionStatus

logger = get_logger(__name__)


# ===| ENUMS |===

class ConflictKind(StrEnum):
    """Structural inconsistencies reported per location."""
    CASE_VARIANT = "CaseVariant"
    TRAILING_ARTIFACT = "TrailingArtifact"
    AMBIGUOUS_STANDALONE = "AmbiguousStandalone"
    INCONSISTENT_HIERARCHY = "InconsistentHierarchy"
    NEAR_DUPLICATE = "NearDuplicate"
    WRONG_ENTITY_TYPE = "WrongEntityType"


class LinkKind(StrEnum):
    """Why two locations are believed to be related."""
    QUALIFIED_PATH = "QualifiedPath"
    NEAR_DUPLICATE = "NearDuplicate"


class Confidence(StrEnum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


# ===| DATA CLASSES |===

@dataclass
class LocationReportOptions:
    """Per-report options. None falls back to the engine config."""
    include_references: Optional[bool] = None
    near_duplicate_max_distance: Optional[int] = None
    reference_limit: Optional[int] = None


@dataclass(frozen=True)
class SourceReference:
    """A source line that mentions the location. line_number is None if not found."""
    file_path: Optional[str]
    line_number: Optional[int]
    session_date: Optional[date]
    header: Optional[str]


@dataclass(frozen=True)
class LocationLink:
    target: str
    kind: LinkKind
    confidence: Confidence
    distance: Optional[int] = None


@dataclass(frozen=True)
class LocationConflict:
    kind: ConflictKind
    detail: str
    related: Tuple[str, ...] = ()
    confidence: Optional[Confidence] = None


@dataclass(frozen=True)
class LocationResolution:
    """Registry match for a location row."""
    status: ResolutionStatus
    stage: MatchStage
    entity_name: Optional[str] = None
    entity_type: Optional[EntityType] = None
    candidates: Tuple[str, ...] = ()
    type_mismatch: bool = False

    @classmethod
    def from_resolution(cls, resolution: Resolution, type_mismatch: bool = False) -> "LocationResolution":
        entity = resolution.entity
        return cls(
            status=resolution.status,
            stage=resolution.stage,
            entity_name=entity.canonical_name if entity is not None else None,
            entity_type=entity.entity_type if entity is not None else None,
            candidates=tuple(c.canonical_name for c in resolution.candidates),
            type_mismatch=type_mismatch,
        )


@dataclass
class LocationReportRow:
    """One canonical location."""
    key: str
    display: str
    occurrence_count: int
    qualified: bool
    segments: Tuple[str, ...]
    variants: List[str] = field(default_factory=list)
    parents: List[str] = field(default_factory=list)
    children: List[str] = field(default_factory=list)
    links: List[LocationLink] = field(default_factory=list)
    resolution: Optional[LocationResolution] = None
    conflicts: List[LocationConflict] = field(default_factory=list)
    references: List[SourceReference] = field(default_factory=list)

    def conflict_kinds(self) -> List[ConflictKind]:
        return [c.kind for c in self.conflicts]


@dataclass
class LocationReport:
    rows: List[LocationReportRow]
    stats: Dict[str, Any]

    def row(self, display: str) -> Optional[LocationReportRow]:
        """Row by display form or key."""
        norm = StringSimilarity.normalize_for_comparison(display)
        return next((r for r in self.rows if r.display == display or r.key == norm), None)

    def to_dict(self) -> Dict[str, Any]:
        return {"rows": [asdict(r) for r in self.rows], "stats": self.stats}


# ===| INTERNAL RECORDS |===

@dataclass(frozen=True)
class _AtomicMention:
    """A mention after route and hierarchy splitting."""
    spelling: str                   # raw text, trimmed
    display: str                    # cleaned form used for display
    key: str                        # grouping key
    segments: Tuple[str, ...]       # cleaned segments (one for standalone)
    segment_keys: Tuple[str, ...]
    source_text: str                # mention as written before splitting
    provenance: Provenance

    @property
    def qualified(self) -> bool:
        return len(self.segments) > 1


@dataclass
class _LocationGroup:
    key: str
    qualified: bool
    segment_keys: Tuple[str, ...]
    spelling_counts: Dict[str, int] = field(default_factory=dict)
    spelling_display: Dict[str, Tuple[str, Tuple[str, ...]]] = field(default_factory=dict)
    mentions: List[_AtomicMention] = field(default_factory=list)

    def add(self, mention: _AtomicMention) -> None:
        self.spelling_counts[mention.spelling] = self.spelling_counts.get(mention.spelling, 0) + 1
        self.spelling_display.setdefault(mention.spelling, (mention.display, mention.segments))
        self.mentions.append(mention)

    @property
    def count(self) -> int:
        return len(self.mentions)

    @property
    def canonical_spelling(self) -> str:
        # max() keeps the first of equal counts, dicts keep first-seen order
        return max(self.spelling_counts, key=lambda s: self.spelling_counts[s])

    @property
    def display(self) -> str:
        return self.spelling_display[self.canonical_spelling][0]

    @property
    def segments(self) -> Tuple[str, ...]:
        return self.spelling_display[self.canonical_spelling][1]

    @property
    def variants(self) -> List[str]:
        winner = self.canonical_spelling
        return [s for s in self.spelling_counts if s != winner]

    @property
    def leaf_key(self) -> str:
        return self.segment_keys[-1]


# ===| SOURCE FILES |===

class SourceFileCache:
    """Reads each source file at most once per report. Missing files yield no lines."""

    def __init__(self):
        self._lines: Dict[str, Optional[List[str]]] = {}
        self.reads = 0

    def lines(self, file_path: str) -> Optional[List[str]]:
        if file_path not in self._lines:
            self.reads += 1
            try:
                self._lines[file_path] = Path(file_path).read_text(encoding="utf-8").splitlines()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Cannot read source file {file_path}: {e}")
                self._lines[file_path] = None
        return self._lines[file_path]

    def find_line(self, file_path: Optional[str], *needles: str) -> Optional[int]:
        """1-based number of the first line containing any needle, tried in order."""
        if not file_path:
            return None
        lines = self.lines(file_path)
        if lines is None:
            return None
        for needle in needles:
            if not needle:
                continue
            for number, line in enumerate(lines, start=1):
                if needle in line:
                    return number
        return None


# ===| MAIN PIPELINE |===

class LocationReportPipeline:
    """
    Builds one location report. Query-scoped: create one per report.

    The resolver is optional; without it the entity cross-reference phase is
    skipped and near-duplicate pruning cannot consult the registry.
    """

    def __init__(
            self,
            config: Optional[EngineConfig] = None,
            resolver: Optional[NameResolver] = None,
            options: Optional[LocationReportOptions] = None,
            cache: Optional[ResolutionCache] = None,
            source_files: Optional[SourceFileCache] = None,
    ):
        self.config = config or EngineConfig()
        self.resolver = resolver
        self.options = options or LocationReportOptions()
        self.cache = cache if cache is not None else ResolutionCache()
        self.source_files = source_files if source_files is not None else SourceFileCache()

        self.include_references = (
            self.options.include_references
            if self.options.include_references is not None
            else self.config.include_references
        )
        self.max_distance = (
            self.options.near_duplicate_max_distance
            if self.options.near_duplicate_max_distance is not None
            else self.config.near_duplicate_max_distance
        )

        self._route_re = self.config.route_separator_regex
        self._strip_chars = self.config.trailing_decoration_chars + " \t"

        # Run state
        self._groups: Dict[str, _LocationGroup] = {}
        self._segment_display: Dict[str, str] = {}
        self._parents_of: Dict[str, List[str]] = {}
        self._children_of: Dict[str, List[str]] = {}
        self._links: Dict[str, List[LocationLink]] = {}
        self._conflicts: Dict[str, List[LocationConflict]] = {}
        self._resolutions: Dict[str, LocationResolution] = {}

    def run(self, occurrences: Sequence[LocationOccurrence]) -> LocationReport:
        """Execute the report over the supplied occurrences."""
        logger.info(f"Building location report over {len(occurrences)} mentions")
        stats: Dict[str, Any] = {"mentions": len(occurrences)}

        # Phase 1: route split
        routed = self._split_routes(occurrences)
        stats["after_route_split"] = len(routed)
        logger.debug(f"Phase 1: {len(routed)} mentions after route split")

        # Phase 2: hierarchy split
        mentions = [m for m in (self._split_hierarchy(occ, source) for occ, source in routed) if m is not None]
        stats["atomic_mentions"] = len(mentions)
        logger.debug(f"Phase 2: {len(self._parents_of)} child segments with recorded parents")

        # Phase 3: canonicalize and group
        self._group(mentions)
        stats["groups"] = len(self._groups)
        stats["qualified_groups"] = sum(1 for g in self._groups.values() if g.qualified)
        logger.debug(f"Phase 3: {len(self._groups)} canonical groups")

        # Phase 4: qualified vs standalone
        self._link_qualified_paths()

        # Phase 5: fuzzy dedup
        stats["near_duplicate_pairs"] = self._fuzzy_dedup()

        # Phase 6: entity cross-reference
        if self.resolver is not None:
            self._cross_reference_entities()
        else:
            logger.info("No name resolver supplied, skipping entity cross-reference")

        # Phase 7: conflicts
        self._detect_variant_conflicts()
        self._detect_hierarchy_conflicts()

        rows = [self._build_row(group) for group in self._groups.values()]
        rows.sort(key=lambda r: -r.occurrence_count)

        conflicts_by_kind: Dict[str, int] = {}
        for row in rows:
            for conflict in row.conflicts:
                conflicts_by_kind[conflict.kind] = conflicts_by_kind.get(conflict.kind, 0) + 1
        stats["conflicts_by_kind"] = conflicts_by_kind
        stats["resolution_cache"] = {"hits": self.cache.hits, "misses": self.cache.misses}
        if self.include_references:
            stats["source_files_read"] = self.source_files.reads

        logger.info(
            f"Location report: {len(rows)} locations, "
            f"{sum(conflicts_by_kind.values())} conflicts"
        )
        return LocationReport(rows=rows, stats=stats)

    # ---| normalization helpers |---

    def clean(self, text: str) -> str:
        """Trim and strip trailing decoration characters."""
        return " ".join(text.strip().rstrip(self._strip_chars).split())

    def key_of(self, text: str) -> str:
        return StringSimilarity.normalize_for_comparison(self.clean(text))

    def has_trailing_artifact(self, spelling: str) -> bool:
        return any(
            seg.strip() != seg.strip().rstrip(self._strip_chars)
            for seg in spelling.split(self.config.hierarchy_separator)
        )

    # ---| phase 1 |---

    def _split_routes(self, occurrences: Sequence[LocationOccurrence]) -> List[Tuple[LocationOccurrence, str]]:
        """Split multi-stop routes, keeping provenance and the original text."""
        routed = []
        for occurrence in occurrences:
            for part in self._route_re.split(occurrence.text):
                if part and part.strip():
                    routed.append((LocationOccurrence(text=part.strip(), provenance=occurrence.provenance),
                                   occurrence.text))
        return routed

    # ---| phase 2 |---

    def _split_hierarchy(self, occurrence: LocationOccurrence, source_text: str) -> Optional[_AtomicMention]:
        """Turn one mention into an atomic mention, recording parent -> child edges."""
        sep = self.config.hierarchy_separator
        spelling = occurrence.text.strip()
        raw_segments = spelling.split(sep) if sep in spelling else [spelling]
        segments = tuple(s for s in (self.clean(seg) for seg in raw_segments) if s)
        if not segments:
            return None

        segment_keys = tuple(StringSimilarity.normalize_for_comparison(s) for s in segments)
        for seg, seg_key in zip(segments, segment_keys):
            self._segment_display.setdefault(seg_key, seg)

        for parent_key, child_key in zip(segment_keys, segment_keys[1:]):
            parents = self._parents_of.setdefault(child_key, [])
            if parent_key not in parents:
                parents.append(parent_key)
            children = self._children_of.setdefault(parent_key, [])
            if child_key not in children:
                children.append(child_key)

        return _AtomicMention(
            spelling=spelling,
            display=sep.join(segments),
            key=sep.join(segment_keys),
            segments=segments,
            segment_keys=segment_keys,
            source_text=source_text,
            provenance=occurrence.provenance,
        )

    # ---| phase 3 |---

    def _group(self, mentions: List[_AtomicMention]) -> None:
        for mention in mentions:
            group = self._groups.get(mention.key)
            if group is None:
                group = _LocationGroup(
                    key=mention.key,
                    qualified=mention.qualified,
                    segment_keys=mention.segment_keys,
                )
                self._groups[mention.key] = group
            group.add(mention)

    def _display_for_key(self, key: str) -> str:
        group = self._groups.get(key)
        if group is not None:
            return group.display
        return self._segment_display.get(key, key)

    def _add_link(self, key: str, link: LocationLink) -> None:
        self._links.setdefault(key, []).append(link)

    def _add_conflict(self, key: str, conflict: LocationConflict) -> None:
        self._conflicts.setdefault(key, []).append(conflict)

    # ---| phase 4 |---

    def _link_qualified_paths(self) -> None:
        """Link a standalone name to every qualified path ending in it."""
        paths_by_leaf: Dict[str, List[_LocationGroup]] = {}
        for group in self._groups.values():
            if group.qualified:
                paths_by_leaf.setdefault(group.leaf_key, []).append(group)

        for group in list(self._groups.values()):
            if group.qualified or group.key not in paths_by_leaf:
                continue
            paths = paths_by_leaf[group.key]
            for path in paths:
                self._add_link(group.key, LocationLink(path.display, LinkKind.QUALIFIED_PATH, Confidence.HIGH))
                self._add_link(path.key, LocationLink(group.display, LinkKind.QUALIFIED_PATH, Confidence.HIGH))
            path_displays = tuple(p.display for p in paths)
            self._add_conflict(group.key, LocationConflict(
                kind=ConflictKind.AMBIGUOUS_STANDALONE,
                detail=f"{group.display!r} also appears qualified as {', '.join(path_displays)}",
                related=path_displays,
            ))

    # ---| phase 5 |---

    def _is_registered_location(self, key: str) -> bool:
        if self.resolver is None:
            return False
        resolution = self.resolver.resolve(key, EntityType.LOCATION, self.cache)
        return resolution.matched and resolution.stage == MatchStage.EXACT

    def _fuzzy_dedup(self) -> int:
        """
        Pairwise edit distance over standalone keys, pruned by length difference.

        Keys are sorted by length so the inner loop stops once the length gap
        alone exceeds the budget. Returns the number of linked pairs.
        """
        keys = sorted((g.key for g in self._groups.values() if not g.qualified), key=lambda k: (len(k), k))
        pairs = 0
        for i, a in enumerate(keys):
            for b in keys[i + 1:]:
                if len(b) - len(a) > self.max_distance:
                    break
                d = StringSimilarity.levenshtein_distance(a, b)
                if d == 0 or d > self.max_distance:
                    continue
                if self._is_registered_location(a) and self._is_registered_location(b):
                    logger.debug(f"Skipping near-duplicate {a!r}/{b!r}: both registered")
                    continue
                confidence = Confidence.MEDIUM if d == 1 else Confidence.LOW
                self._link_near_duplicates(a, b, d, confidence)
                self._link_near_duplicates(b, a, d, confidence)
                pairs += 1
        return pairs

    def _link_near_duplicates(self, key: str, other: str, distance: int, confidence: Confidence) -> None:
        other_display = self._display_for_key(other)
        self._add_link(key, LocationLink(other_display, LinkKind.NEAR_DUPLICATE, confidence, distance))
        self._add_conflict(key, LocationConflict(
            kind=ConflictKind.NEAR_DUPLICATE,
            detail=f"likely same location as {other_display!r} (edit distance {distance})",
            related=(other_display,),
            confidence=confidence,
        ))

    # ---| phase 6 |---

    def _cross_reference_entities(self) -> None:
        """Resolve each group as a Location, falling back to any type."""
        for group in self._groups.values():
            queries = [group.display]
            if group.qualified:
                queries.append(group.segments[-1])

            resolution = None
            for query in queries:
                resolution = self.resolver.resolve(query, EntityType.LOCATION, self.cache)
                if resolution.status != ResolutionStatus.NO_MATCH:
                    break

            if resolution.status != ResolutionStatus.NO_MATCH:
                self._resolutions[group.key] = LocationResolution.from_resolution(resolution)
                continue

            fallback = None
            for query in queries:
                fallback = self.resolver.resolve(query, None, self.cache)
                if fallback.status != ResolutionStatus.NO_MATCH:
                    break

            mismatch = fallback.matched and fallback.entity.entity_type != EntityType.LOCATION
            self._resolutions[group.key] = LocationResolution.from_resolution(fallback, type_mismatch=mismatch)
            if mismatch:
                entity = fallback.entity
                self._add_conflict(group.key, LocationConflict(
                    kind=ConflictKind.WRONG_ENTITY_TYPE,
                    detail=f"{group.display!r} matches {entity.canonical_name!r}, registered as {entity.entity_type}",
                    related=(entity.canonical_name,),
                ))

    # ---| phase 7 |---

    def _detect_variant_conflicts(self) -> None:
        """Spellings that differ from the canonical one only by case or decoration."""
        for group in self._groups.values():
            if len(group.spelling_counts) < 2:
                continue
            # The canonical spelling may be the decorated one
            for spelling in group.spelling_counts:
                if self.has_trailing_artifact(spelling):
                    self._add_conflict(group.key, LocationConflict(
                        kind=ConflictKind.TRAILING_ARTIFACT,
                        detail=f"{spelling!r} carries trailing decoration",
                        related=(spelling,),
                    ))
            for variant in group.variants:
                variant_display = group.spelling_display[variant][0]
                if variant_display != group.display and variant_display.lower() == group.display.lower():
                    self._add_conflict(group.key, LocationConflict(
                        kind=ConflictKind.CASE_VARIANT,
                        detail=f"{variant!r} differs from {group.display!r} only in case",
                        related=(variant,),
                    ))

    def _detect_hierarchy_conflicts(self) -> None:
        """A child segment recorded under more than one distinct parent."""
        for child_key, parent_keys in self._parents_of.items():
            if len(parent_keys) < 2:
                continue
            parents = tuple(self._display_for_key(k) for k in parent_keys)
            child = self._display_for_key(child_key)
            conflict = LocationConflict(
                kind=ConflictKind.INCONSISTENT_HIERARCHY,
                detail=f"{child!r} is recorded under {', '.join(repr(p) for p in parents)}",
                related=parents,
            )
            for group in self._groups.values():
                if group.leaf_key == child_key:
                    self._add_conflict(group.key, conflict)

    # ---| rows |---

    def _build_row(self, group: _LocationGroup) -> LocationReportRow:
        if group.qualified:
            parents = [group.segments[-2]]
        else:
            parents = [self._display_for_key(k) for k in self._parents_of.get(group.key, [])]
        children = [self._display_for_key(k) for k in self._children_of.get(group.leaf_key, [])]

        return LocationReportRow(
            key=group.key,
            display=group.display,
            occurrence_count=group.count,
            qualified=group.qualified,
            segments=group.segments,
            variants=group.variants,
            parents=parents,
            children=children,
            links=list(self._links.get(group.key, [])),
            resolution=self._resolutions.get(group.key),
            conflicts=list(self._conflicts.get(group.key, [])),
            references=self._collect_references(group) if self.include_references else [],
        )

    def _collect_references(self, group: _LocationGroup) -> List[SourceReference]:
        references = []
        seen = set()
        for mention in group.mentions:
            if self.options.reference_limit is not None and len(references) >= self.options.reference_limit:
                break
            prov = mention.provenance
            line = self.source_files.find_line(prov.file_path, mention.source_text, mention.spelling)
            ref = SourceReference(
                file_path=prov.file_path,
                line_number=line,
                session_date=prov.session_date,
                header=prov.header,
            )
            if ref in seen:
                continue
            seen.add(ref)
            references.append(ref)
        return references


# ===| ENTRY POINTS |===

def build_location_report(
        occurrences: Sequence[LocationOccurrence],
        resolver: Optional[NameResolver] = None,
        options: Optional[LocationReportOptions] = None,
        config: Optional[EngineConfig] = None,
) -> LocationReport:
    """Build a location report over caller-supplied occurrences."""
    pipeline = LocationReportPipeline(config=config, resolver=resolver, options=options)
    return pipeline.run(occurrences)


def render_report_text(report: LocationReport) -> str:
    """Plain-text rendering for the command line."""
    lines = []
    for row in report.rows:
        lines.append(f"{row.occurrence_count:>5}  {row.display}")
        if row.variants:
            lines.append(f"       variants: {', '.join(row.variants)}")
        if row.parents:
            lines.append(f"       parents: {', '.join(row.parents)}")
        if row.children:
            lines.append(f"       children: {', '.join(row.children)}")
        if row.resolution is not None:
            res = row.resolution
            if res.status == ResolutionStatus.MATCHED:
                lines.append(f"       registry: {res.entity_name} [{res.entity_type}] via {res.stage}")
            elif res.status == ResolutionStatus.AMBIGUOUS:
                lines.append(f"       registry: ambiguous ({', '.join(res.candidates)})")
            else:
                lines.append("       registry: no match")
        for conflict in row.conflicts:
            confidence = f" [{conflict.confidence}]" if conflict.confidence else ""
            lines.append(f"       ! {conflict.kind}{confidence}: {conflict.detail}")
        for ref in row.references:
            where = f"{ref.file_path}:{ref.line_number}" if ref.line_number else f"{ref.file_path} (line not found)"
            lines.append(f"       @ {where}")
    return "\n".join(lines)


if __name__ == "__main__":
    from argparse import ArgumentParser

    from chronicle.snapshot import load_snapshot

    parser = ArgumentParser(description="Report canonical locations and naming conflicts")
    parser.add_argument(
        "--snapshot",
        type=Path,
        default=Path("../data/world.yaml"),
        help="Path to the YAML world snapshot (default: ../data/world.yaml)"
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to an engine config YAML")
    parser.add_argument(
        "--references",
        action="store_true",
        help="Re-read session files to report source line numbers"
    )
    parser.add_argument(
        "--max-distance",
        type=int,
        default=None,
        help="Maximum edit distance for near-duplicate locations (default: 2)"
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()
    set_verbose(args.verbose)

    engine_config = EngineConfig.from_yaml(args.config) if args.config else EngineConfig()

    try:
        snapshot = load_snapshot(args.snapshot)
        name_resolver = NameResolver(NameIndex.build(snapshot.entities, engine_config), engine_config)
        location_report = build_location_report(
            occurrences_from_sessions(snapshot.sessions),
            resolver=name_resolver,
            options=LocationReportOptions(
                include_references=args.references or None,
                near_duplicate_max_distance=args.max_distance,
            ),
            config=engine_config,
        )
    except Exception as e:
        logger.error(f"Location report failed: {e}")
        raise

    if args.json:
        print(json.dumps(location_report.to_dict(), ensure_ascii=False, indent=2, default=str))
    else:
        print(render_report_text(location_report))
