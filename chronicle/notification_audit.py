"""
Notification audit.

Session logs record intel handed out to players ("who learned what"). Each
entry names a directive, a target and recipients as free text. The audit
resolves those names against the registry and reports the ones that do not
resolve cleanly, so the narrator can fix the log before the intel is relied on.
"""
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from chronicle.config import EngineConfig
from chronicle.logger import get_logger, set_verbose
from chronicle.models import PERSON_TYPES, EntityType, IntelEntry, SessionRecord
from chronicle.name_index import NameIndex
from chronicle.name_resolver import NameResolver, Resolution, ResolutionCache, ResolutionStatus
from chronicle.validity import parse_as_of

logger = get_logger(__name__)


# ===| ENUMS |===

class IssueKind(StrEnum):
    UNRESOLVED = "unresolved"
    AMBIGUOUS = "ambiguous"
    WRONG_TYPE = "wrong_type"
    MISSING_TARGET = "missing_target"
    UNKNOWN_DIRECTIVE = "unknown_directive"


class NameRole(StrEnum):
    TARGET = "target"
    RECIPIENT = "recipient"
    NARRATOR = "narrator"


# Expected target types per directive; None means no target is needed
DIRECTIVE_TARGET_TYPES: Dict[str, Optional[FrozenSet[EntityType]]] = {
    "direct": PERSON_TYPES,
    "group": frozenset({EntityType.GROUP}),
    "location": frozenset({EntityType.LOCATION}),
    "all": None,
}


# ===| DATA CLASSES |===

@dataclass(frozen=True)
class NotificationIssue:
    session_date: Optional[date]
    file_path: Optional[str]
    kind: IssueKind
    role: Optional[NameRole]
    name: str
    detail: str
    candidates: Tuple[str, ...] = ()


@dataclass
class NotificationAuditResult:
    issues: List[NotificationIssue] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def clean(self) -> bool:
        return not self.issues


# ===| AUDIT |===

class NotificationAudit:
    """Resolve intel targets, recipients and narrators of session records."""

    def __init__(self, resolver: NameResolver, cache: Optional[ResolutionCache] = None):
        self.resolver = resolver
        self.cache = cache if cache is not None else ResolutionCache()

    def run(self, sessions: Sequence[SessionRecord], as_of: Optional[date] = None) -> NotificationAuditResult:
        """Audit every session dated on or before as_of (undated sessions always)."""
        result = NotificationAuditResult()
        audited = 0
        entries = 0

        for session in sessions:
            if as_of is not None and session.session_date is not None and session.session_date > as_of:
                continue
            audited += 1

            if session.narrator:
                result.issues.extend(self._check_name(session, session.narrator, NameRole.NARRATOR, PERSON_TYPES))

            for entry in session.intel:
                entries += 1
                result.issues.extend(self._check_entry(session, entry))

        issues_by_kind: Dict[str, int] = {}
        for issue in result.issues:
            issues_by_kind[issue.kind] = issues_by_kind.get(issue.kind, 0) + 1
        result.stats = {
            "sessions_audited": audited,
            "intel_entries": entries,
            "issues_by_kind": issues_by_kind,
        }
        logger.info(f"Notification audit: {audited} sessions, {entries} intel entries, {len(result.issues)} issues")
        return result

    def _check_entry(self, session: SessionRecord, entry: IntelEntry) -> List[NotificationIssue]:
        issues: List[NotificationIssue] = []
        directive = entry.directive.strip().lower()

        if directive not in DIRECTIVE_TARGET_TYPES:
            issues.append(self._issue(
                session, IssueKind.UNKNOWN_DIRECTIVE, None, entry.directive,
                f"unknown directive {entry.directive!r}; expected one of {', '.join(DIRECTIVE_TARGET_TYPES)}",
            ))
        else:
            expected = DIRECTIVE_TARGET_TYPES[directive]
            if expected is not None:
                if not entry.target_name:
                    issues.append(self._issue(
                        session, IssueKind.MISSING_TARGET, NameRole.TARGET, "",
                        f"directive {directive!r} requires a target",
                    ))
                else:
                    issues.extend(self._check_name(session, entry.target_name, NameRole.TARGET, expected))

        for recipient in entry.recipients:
            issues.extend(self._check_name(session, recipient, NameRole.RECIPIENT, PERSON_TYPES))

        return issues

    def _check_name(
            self,
            session: SessionRecord,
            name: str,
            role: NameRole,
            expected: FrozenSet[EntityType]
    ) -> List[NotificationIssue]:
        resolution = self.resolver.resolve(name, expected, self.cache)
        if resolution.matched:
            return []
        if resolution.status == ResolutionStatus.AMBIGUOUS:
            return [self._issue(
                session, IssueKind.AMBIGUOUS, role, name,
                f"{role} {name!r} is ambiguous at {resolution.stage} stage",
                resolution,
            )]

        fallback = self.resolver.resolve(name, None, self.cache)
        if fallback.matched:
            entity = fallback.entity
            wanted = "/".join(sorted(str(t) for t in expected))
            return [self._issue(
                session, IssueKind.WRONG_TYPE, role, name,
                f"{role} {name!r} matches {entity.canonical_name!r} [{entity.entity_type}], expected {wanted}",
                fallback,
            )]
        return [self._issue(session, IssueKind.UNRESOLVED, role, name, f"{role} {name!r} does not resolve")]

    @staticmethod
    def _issue(
            session: SessionRecord,
            kind: IssueKind,
            role: Optional[NameRole],
            name: str,
            detail: str,
            resolution: Optional[Resolution] = None
    ) -> NotificationIssue:
        candidates = tuple(c.canonical_name for c in resolution.candidates) if resolution is not None else ()
        return NotificationIssue(
            session_date=session.session_date,
            file_path=session.file_path,
            kind=kind,
            role=role,
            name=name,
            detail=detail,
            candidates=candidates,
        )


def audit_notifications(
        sessions: Sequence[SessionRecord],
        resolver: NameResolver,
        as_of: Optional[date] = None
) -> NotificationAuditResult:
    return NotificationAudit(resolver).run(sessions, as_of)


if __name__ == "__main__":
    from argparse import ArgumentParser

    from chronicle.snapshot import load_snapshot

    parser = ArgumentParser(description="Audit intel notifications recorded in session logs")
    parser.add_argument(
        "--snapshot",
        type=Path,
        default=Path("../data/world.yaml"),
        help="Path to the YAML world snapshot (default: ../data/world.yaml)"
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to an engine config YAML")
    parser.add_argument("--as-of", type=str, default=None, help="Only audit sessions up to this date (YYYY-MM[-DD])")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()
    set_verbose(args.verbose)

    engine_config = EngineConfig.from_yaml(args.config) if args.config else EngineConfig()

    try:
        snapshot = load_snapshot(args.snapshot)
        name_resolver = NameResolver(NameIndex.build(snapshot.entities, engine_config), engine_config)
        audit = audit_notifications(snapshot.sessions, name_resolver, parse_as_of(args.as_of))
    except Exception as e:
        logger.error(f"Notification audit failed: {e}")
        raise

    for issue in audit.issues:
        print(f"{issue.session_date or '----------'}  {issue.file_path or '-'}  {issue.kind}: {issue.detail}")
    if audit.clean:
        logger.info("No notification issues found")
