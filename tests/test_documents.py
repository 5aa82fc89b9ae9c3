"""Tests for ticketflow.lib.documents module."""

import pytest

from ticketflow.lib.documents import (
    ChecklistItem,
    DocumentStore,
    apply_fields,
    parse_checklist,
    parse_fields,
    parse_issue,
    parse_labels,
    parse_narrative,
)
from ticketflow.lib.errors import AmbiguousTicketError, ArchiveError


class TestParsing:
    """Pure parsing helpers."""

    def test_parse_fields_stops_at_first_section(self):
        text = "# T\n\nLane: B\nStatus: Branched\n\n## Purpose\n\nOwner: nobody\n"
        fields = parse_fields(text)
        assert fields == {"lane": "B", "status": "Branched"}

    def test_parse_issue_variants(self):
        assert parse_issue("#12") == 12
        assert parse_issue("12") == 12
        assert parse_issue("pending") == "pending"
        assert parse_issue("Pending ") == "pending"
        assert parse_issue("soon") is None
        assert parse_issue(None) is None

    def test_parse_checklist_keeps_order_and_state(self):
        text = "## Acceptance Checklist\n\n- [ ] first\n- [x] second\n* [X] third\nnot an item\n\n## Next\n- [ ] ignored\n"
        assert parse_checklist(text) == [
            ChecklistItem("first", False),
            ChecklistItem("second", True),
            ChecklistItem("third", True),
        ]

    def test_parse_checklist_missing_section(self):
        assert parse_checklist("## Purpose\n\nNo checklist here") == []

    def test_parse_labels_strips_bold(self):
        assert parse_labels("Lane: A\n- **Labels:** ui, docs\n") == ("ui", "docs")

    def test_parse_narrative(self):
        text = "# ARCH-1: Title\n\nLane: C\n\n## Purpose\n\nWhy.\n\n## Proposal\n\nHow.\n"
        narrative = parse_narrative(text)
        assert narrative.title == "ARCH-1: Title"
        assert narrative.lane == "C"
        assert narrative.purpose == "Why."
        assert narrative.problem is None
        assert narrative.proposal == "How."


class TestApplyFields:
    """Insertion and rewrite of Issue/Status fields."""

    def test_inserts_after_lane_in_fixed_order(self):
        text = "# T\n\nLane: B\n## Purpose\n\nX\n"
        result = apply_fields(text, issue=7, status="Branched")
        assert result == "# T\n\nLane: B\nIssue: #7\nStatus: Branched\n\n## Purpose\n\nX\n"

    def test_inserts_near_top_without_lane(self):
        text = "# T\n\n## Purpose\n\nX\n"
        result = apply_fields(text, issue=None, status="Ticketed")
        assert result.splitlines()[2:5] == ["Issue: pending", "Status: Ticketed", ""]

    def test_rewrites_existing_status_in_place(self):
        text = "# T\n\nLane: B\nIssue: #7\nStatus: Branched\n\n## Purpose\n"
        result = apply_fields(text, issue=7, status="PR Open")
        assert result == text.replace("Status: Branched", "Status: PR Open")

    def test_identical_targets_return_same_text(self):
        text = "# T\n\nLane: B\nIssue: #7\nStatus: Branched\n\n## Purpose\n"
        assert apply_fields(text, issue=7, status="Branched") is text

    def test_pending_never_replaces_number(self):
        text = "# T\n\nIssue: #7\nStatus: Branched\n"
        assert apply_fields(text, issue="pending", status="Branched") == text

    def test_preserves_crlf(self):
        text = "# T\r\n\r\nLane: B\r\nIssue: #7\r\nStatus: Branched\r\n\r\n## Purpose\r\n"
        result = apply_fields(text, issue=7, status="Merged")
        assert result == text.replace("Branched", "Merged")
        assert "\n" not in result.replace("\r\n", "")


class TestDocumentStore:
    """DocumentStore against a real directory."""

    @pytest.fixture
    def store(self, tmp_path):
        return DocumentStore(tmp_path)

    def test_resolve_direct_match_wins(self, store, tmp_path):
        (tmp_path / "ARCH-1.md").write_text("# A\n")
        (tmp_path / "ARCH-1-other.md").write_text("# B\n")
        assert store.resolve("ARCH-1").path.name == "ARCH-1.md"

    def test_resolve_single_prefix_match(self, store, tmp_path):
        (tmp_path / "ARCH-1-slug.md").write_text("# A\n")
        (tmp_path / "ARCH-10-slug.md").write_text("# B\n")
        assert store.resolve("ARCH-1").path.name == "ARCH-1-slug.md"

    def test_resolve_ambiguous_raises(self, store, tmp_path):
        (tmp_path / "ARCH-1-a.md").write_text("# A\n")
        (tmp_path / "ARCH-1-b.md").write_text("# B\n")
        with pytest.raises(AmbiguousTicketError) as exc:
            store.resolve("ARCH-1")
        assert exc.value.candidates == ["ARCH-1-a.md", "ARCH-1-b.md"]
        assert exc.value.exit_code == 11

    def test_resolve_not_found(self, store):
        assert store.resolve("ARCH-9") is None

    def test_ensure_fields_is_idempotent(self, store, tmp_path):
        path = tmp_path / "ARCH-1.md"
        path.write_text("# A\n\nLane: B\n\n## Purpose\n\nX\n")
        handle = store.resolve("ARCH-1")

        assert store.ensure_fields(handle, issue=3, status="Branched") is True
        first = path.read_bytes()
        assert store.ensure_fields(handle, issue=3, status="Branched") is False
        assert path.read_bytes() == first

    def test_round_trip_reads_written_values(self, store, tmp_path):
        path = tmp_path / "ARCH-1.md"
        path.write_text("# A\n\n## Acceptance Checklist\n\n- [ ] one\n- [x] two\n")
        handle = store.resolve("ARCH-1")

        store.ensure_fields(handle, issue=5, status="PR Open")
        assert store.read_status(handle) == "PR Open"
        assert store.read_issue(handle) == 5
        assert store.read_checklist(handle) == [ChecklistItem("one"), ChecklistItem("two", True)]

    def test_archive_moves_into_year_dir(self, store, tmp_path):
        (tmp_path / "ARCH-1-x.md").write_text("# A\n")
        handle = store.resolve("ARCH-1")
        dest = store.archive(handle, year=2026)
        assert dest == tmp_path / "_archive" / "2026" / "ARCH-1-x.md"
        assert dest.exists()
        assert not handle.path.exists()
        assert store.resolve_archived("ARCH-1").path == dest

    def test_archive_collision_raises(self, store, tmp_path):
        (tmp_path / "ARCH-1.md").write_text("# new\n")
        existing = tmp_path / "_archive" / "2026" / "ARCH-1.md"
        existing.parent.mkdir(parents=True)
        existing.write_text("# old\n")

        with pytest.raises(ArchiveError):
            store.archive(store.resolve("ARCH-1"), year=2026)
        assert existing.read_text() == "# old\n"
        assert (tmp_path / "ARCH-1.md").exists()
