"""Tests for the intel notification audit."""

import pendulum
import pytest

from chronicle.models import Entity, EntityType, IntelEntry, SessionRecord
from chronicle.name_index import NameIndex
from chronicle.name_resolver import NameResolver
from chronicle.notification_audit import IssueKind, NameRole, NotificationAudit, audit_notifications


def session(*intel, narrator=None, when=pendulum.date(2025, 2, 1)):
    return SessionRecord(session_date=when, file_path="sesje/test.md", narrator=narrator, intel=tuple(intel))


@pytest.fixture
def audit(resolver):
    return NotificationAudit(resolver)


class TestAudit:
    """Tests for NotificationAudit.run."""

    def test_clean_session(self, audit, sessions):
        result = audit.run(sessions[:1])
        assert result.clean
        assert result.stats["sessions_audited"] == 1
        assert result.stats["intel_entries"] == 1

    def test_unresolved_recipient(self, audit, sessions):
        result = audit.run(sessions)
        (issue,) = result.issues
        assert issue.kind == IssueKind.UNRESOLVED
        assert issue.role == NameRole.RECIPIENT
        assert issue.name == "Zbigniew"
        assert issue.session_date == pendulum.date(2025, 3, 2)
        assert issue.file_path == "sesje/2025-03-02.md"
        assert result.stats["issues_by_kind"] == {"unresolved": 1}

    def test_as_of_skips_later_sessions(self, audit, sessions):
        result = audit.run(sessions, as_of=pendulum.date(2025, 2, 1))
        assert result.clean
        assert result.stats["sessions_audited"] == 1

    def test_undated_sessions_always_audited(self, audit):
        undated = session(IntelEntry("direct", "Kowalski", ("Zbigniew",)), when=None)
        result = audit.run([undated], as_of=pendulum.date(2000, 1, 1))
        assert [i.kind for i in result.issues] == [IssueKind.UNRESOLVED]

    def test_wrong_target_type(self, audit):
        result = audit.run([session(IntelEntry("direct", "Targowisko", ("Ania",)))])
        (issue,) = result.issues
        assert issue.kind == IssueKind.WRONG_TYPE
        assert issue.role == NameRole.TARGET
        assert issue.candidates == ("Targowisko",)

    def test_target_types_per_directive(self, audit):
        result = audit.run([session(
            IntelEntry("group", "Gildia", ("Ania",)),
            IntelEntry("location", "Rynek", ("Ania",)),
            IntelEntry("direct", "Kowalskiego", ("Ania",)),
        )])
        assert result.clean

    def test_directive_case_insensitive(self, audit):
        assert audit.run([session(IntelEntry("Direct", "Kowalski", ("Ania",)))]).clean

    def test_all_needs_no_target(self, audit):
        assert audit.run([session(IntelEntry("all", "", ("Ania",)))]).clean

    def test_missing_target(self, audit):
        result = audit.run([session(IntelEntry("direct", "", ("Ania",)))])
        assert [i.kind for i in result.issues] == [IssueKind.MISSING_TARGET]

    def test_unknown_directive(self, audit):
        result = audit.run([session(IntelEntry("whisper", "Kowalski", ("Ania",)))])
        (issue,) = result.issues
        assert issue.kind == IssueKind.UNKNOWN_DIRECTIVE
        assert issue.role is None
        assert "whisper" in issue.detail

    def test_narrator_checked_as_person(self, audit):
        result = audit.run([session(narrator="Gildia")])
        (issue,) = result.issues
        assert issue.kind == IssueKind.WRONG_TYPE
        assert issue.role == NameRole.NARRATOR

    def test_ambiguous_recipient(self):
        resolver = NameResolver(NameIndex.build([
            Entity("Marek", EntityType.CHARACTER),
            Entity("Marek", EntityType.PLAYER),
            Entity("Gildia Kupców", EntityType.GROUP),
        ]))
        result = NotificationAudit(resolver).run([session(IntelEntry("group", "Gildia Kupców", ("Marek",)))])
        (issue,) = result.issues
        assert issue.kind == IssueKind.AMBIGUOUS
        assert issue.candidates == ("Marek", "Marek")

    def test_audit_shares_cache(self, resolver, sessions):
        audit = NotificationAudit(resolver)
        audit.run(sessions)
        assert audit.cache.hits > 0


class TestAuditNotifications:
    """Tests for the module-level helper."""

    def test_helper(self, sessions, resolver):
        result = audit_notifications(sessions, resolver, as_of=pendulum.date(2025, 12, 31))
        assert not result.clean
        assert result.stats["sessions_audited"] == 2
