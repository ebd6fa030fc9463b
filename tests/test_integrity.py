from __future__ import annotations

import pytest

from prd_ledger import integrity
from prd_ledger.integrity import check_prd_file_integrity, is_stale_path, resolve_prd_file
from prd_ledger.models import PrdRecord
from prd_ledger.paths import ProjectPaths


def _check(project, entry):
    paths = ProjectPaths(project.root)
    prd = PrdRecord.from_dict(entry)
    return prd, paths, check_prd_file_integrity(prd, paths)


def _types(result) -> list[str]:
    return [issue.type for issue in result.issues]


class TestFileIntegrity:
    def test_untouched_file_has_no_issues(self, project) -> None:
        _, _, result = _check(project, project.prd("prd_001", "a.md"))

        assert result.issues == []
        assert result.valid
        assert result.resolved_path.name == "a.md"

    def test_missing_file_is_a_single_error(self, project) -> None:
        entry = project.prd("prd_001", "a.md")
        (project.root / entry["filePath"]).unlink()

        _, _, result = _check(project, entry)

        assert _types(result) == ["missing_file"]
        assert result.issues[0].severity == "error"
        assert result.resolved_path is None
        assert not result.valid

    def test_edited_file_reports_hash_and_size_warnings(self, project) -> None:
        entry = project.prd("prd_001", "a.md")
        project.write(entry["filePath"], "# Feature\n\nRequirements, now longer.\n")

        _, _, result = _check(project, entry)

        assert _types(result) == ["hash_mismatch", "size_mismatch"]
        assert all(issue.severity == "warning" for issue in result.issues)
        assert result.valid
        assert result.issues[0].expected == entry["fileHash"]
        assert result.issues[0].actual == result.actual_hash

    def test_same_size_edit_only_changes_hash(self, project) -> None:
        entry = project.prd("prd_001", "a.md", content="aaaa\n")
        project.write(entry["filePath"], "bbbb\n")

        _, _, result = _check(project, entry)

        assert _types(result) == ["hash_mismatch"]

    def test_unrecorded_hash_counts_as_mismatch(self, project) -> None:
        entry = project.prd("prd_001", "a.md", fileHash=None, fileSize=None)

        _, _, result = _check(project, entry)

        assert _types(result) == ["hash_mismatch", "size_mismatch"]

    def test_file_outside_status_directory_is_an_error(self, project) -> None:
        entry = project.prd("prd_001", "a.md", status="done", directory="pending")

        _, _, result = _check(project, entry)

        assert _types(result) == ["wrong_directory"]
        issue = result.issues[0]
        assert issue.severity == "error"
        assert issue.expected == ".taskmaster/prd/done"
        assert issue.actual == ".taskmaster/prd/pending"

    def test_file_found_in_status_directory_when_recorded_path_is_stale(self, project) -> None:
        entry = project.prd("prd_001", "a.md", status="done")
        entry["filePath"] = ".taskmaster/prd/pending/a.md"

        prd, paths, result = _check(project, entry)

        assert result.issues == []
        assert is_stale_path(prd, result, paths)

    def test_legacy_recorded_path_resolves_into_new_layout(self, project) -> None:
        entry = project.prd("prd_001", "a.md", status="in-progress")
        entry["filePath"] = "prd/in-progress/a.md"

        prd, paths, result = _check(project, entry)

        assert result.issues == []
        assert paths.relative(result.resolved_path) == ".taskmaster/prd/in-progress/a.md"
        assert is_stale_path(prd, result, paths)

    def test_status_directory_named_by_recorded_parent(self, project) -> None:
        entry = project.prd("prd_001", "a.md", status="pending", directory="done")
        entry["filePath"] = "prd/done/a.md"

        prd, paths, result = _check(project, entry)

        assert resolve_prd_file(prd, paths) == paths.expected_path("done", "a.md")
        assert _types(result) == ["wrong_directory"]

    def test_unexpected_failure_becomes_check_error(self, project, monkeypatch: pytest.MonkeyPatch) -> None:
        entry = project.prd("prd_001", "a.md")

        def boom(path):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(integrity, "_hash_file", boom)
        _, _, result = _check(project, entry)

        assert _types(result) == ["check_error"]
        assert "disk on fire" in result.issues[0].message

    def test_check_does_not_write(self, project) -> None:
        entry = project.prd("prd_001", "a.md", status="done", directory="pending")
        project.save([entry])
        before = project.prds_path.read_bytes()

        _check(project, entry)

        assert project.prds_path.read_bytes() == before
        assert (project.root / ".taskmaster/prd/pending/a.md").exists()
