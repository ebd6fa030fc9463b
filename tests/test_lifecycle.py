from __future__ import annotations

import re
import zipfile
from pathlib import Path

import pytest

from prd_ledger.errors import LedgerIOError
from prd_ledger.lifecycle import extract_prd_archive, generate_prd_id, read_prd_archive
from prd_ledger.models import PrdRecord
from prd_ledger.store import JsonMetadataStore

from conftest import sha256


def test_generate_prd_id_follows_highest_numeric_id() -> None:
    prds = [PrdRecord(id="prd_002"), PrdRecord(id="custom"), PrdRecord(id="prd_010")]

    assert generate_prd_id(prds) == "prd_011"
    assert generate_prd_id([]) == "prd_001"


class TestRegister:
    def test_register_places_file_and_records_creation(self, project) -> None:
        project.write("drafts/new-feature.md", "# New feature\n")

        result = project.engine().register_prd_from_file(
            "drafts/new-feature.md", title="New Feature", tags=["ui", "ui", "api"], author="dana"
        )

        assert result["success"], result
        data = result["data"]
        assert data["id"] == "prd_001"
        assert data["filePath"] == ".taskmaster/prd/pending/new-feature.md"
        assert data["fileHash"] == sha256("# New feature\n")
        assert data["tags"] == ["ui", "api"]
        assert not (project.root / "drafts/new-feature.md").exists()
        [version] = project.load_prd("prd_001")["versionHistory"]
        assert version["changeType"] == "created"
        assert version["author"] == "dana"
        assert version["changeDetails"] == {"source": "drafts/new-feature.md"}

    def test_register_without_placing_keeps_location(self, project) -> None:
        project.write("drafts/new-feature.md", "# New feature\n")

        result = project.engine().register_prd_from_file("drafts/new-feature.md", place=False)

        assert result["data"]["filePath"] == "drafts/new-feature.md"
        assert result["data"]["title"] == "new-feature"
        assert (project.root / "drafts/new-feature.md").exists()

    def test_ids_continue_after_existing_prds(self, project) -> None:
        project.save([project.prd("prd_007", "old.md")])
        project.write("drafts/next.md", "# Next\n")

        result = project.engine().register_prd_from_file("drafts/next.md", status="in-progress")

        assert result["data"]["id"] == "prd_008"
        assert result["data"]["filePath"] == ".taskmaster/prd/in-progress/next.md"
        assert [prd["id"] for prd in project.load_prds()] == ["prd_007", "prd_008"]

    def test_duplicate_file_name_is_rejected(self, project) -> None:
        project.save([project.prd("prd_001", "a.md")])
        project.write("drafts/a.md", "# Another a\n")

        result = project.engine().register_prd_from_file("drafts/a.md")

        assert result == {"success": False, "error": "A PRD named 'a.md' is already tracked"}

    def test_missing_file(self, project) -> None:
        result = project.engine().register_prd_from_file("drafts/nope.md")

        assert result == {"success": False, "error": "PRD file not found: drafts/nope.md"}

    def test_unknown_status(self, project) -> None:
        project.write("drafts/a.md", "# A\n")

        result = project.engine().register_prd_from_file("drafts/a.md", status="shipped")

        assert not result["success"]
        assert (project.root / "drafts/a.md").exists()


class TestArchive:
    def _seed(self, project, prd_status: str = "done", task_status: str = "done") -> None:
        prd = project.prd("prd_001", "a.md", status=prd_status, linked=[1])
        project.save([prd], [project.task(1, task_status, prd=prd)])

    def test_archive_moves_file_and_bumps_minor_version(self, project) -> None:
        self._seed(project)

        result = project.engine().archive_prd("prd_001")

        assert result["success"], result
        assert result["data"]["version"] == "1.0.0"
        saved = project.load_prd("prd_001")
        assert saved["status"] == "archived"
        assert saved["filePath"] == ".taskmaster/prd/archived/a.md"
        assert saved["versionHistory"][-1]["changeType"] == "archived"
        assert saved["versionHistory"][-1]["changeDetails"] == {"previousStatus": "done", "forced": False}
        assert (project.root / ".taskmaster/prd/archived/a.md").exists()

    def test_archive_requires_done_status(self, project) -> None:
        self._seed(project, prd_status="in-progress")

        result = project.engine().archive_prd("prd_001")

        assert not result["success"]
        assert "status is 'in-progress', not 'done'" in result["error"]

    def test_archive_requires_completed_tasks(self, project) -> None:
        self._seed(project, task_status="pending")

        result = project.engine().archive_prd("prd_001")

        assert result["error"] == "1 tasks are not completed. Use force to override."
        assert result["data"]["incompleteTasks"] == [{"id": 1, "title": "Task 1", "status": "pending"}]
        assert project.load_prd("prd_001")["status"] == "done"

    def test_force_overrides_checks(self, project) -> None:
        self._seed(project, prd_status="in-progress", task_status="pending")

        result = project.engine().archive_prd("prd_001", force=True)

        assert result["success"]
        assert project.load_prd("prd_001")["versionHistory"][-1]["changeDetails"]["forced"] is True

    def test_dry_run_changes_nothing(self, project) -> None:
        self._seed(project)
        before = project.prds_path.read_bytes()

        result = project.engine().archive_prd("prd_001", dry_run=True)

        assert result["data"]["dryRun"] is True
        assert result["data"]["targetPath"] == ".taskmaster/prd/archived/a.md"
        assert project.prds_path.read_bytes() == before
        assert (project.root / ".taskmaster/prd/done/a.md").exists()

    def test_already_archived(self, project) -> None:
        project.save([project.prd("prd_001", "a.md", status="archived")])

        result = project.engine().archive_prd("prd_001")

        assert result == {"success": False, "error": "PRD prd_001 is already archived"}


class TestArchiveBundle:
    def _seed(self, project) -> None:
        prd = project.prd("prd_001", "a.md", status="done", linked=[1, 2])
        project.save(
            [prd, project.prd("prd_002", "b.md", linked=[3])],
            [project.task(1, "done", prd=prd), project.task(2, "done", prd=prd), project.task(3)],
        )
        project.write(".taskmaster/tasks/task_001.txt", "# Task 1\n")

    def test_archive_writes_bundle_and_keeps_prd_tracked(self, project) -> None:
        self._seed(project)

        result = project.engine().archive_prd("prd_001")

        assert result["success"], result
        archive_path = project.root / result["data"]["archivePath"]
        assert archive_path.parent == project.root / ".taskmaster/prd/archived"
        assert re.fullmatch(r"prd_001_[0-9T-]+Z\.zip", archive_path.name)
        saved = project.load_prd("prd_001")
        assert saved["status"] == "archived"
        assert saved["metadata"]["archivePath"] == result["data"]["archivePath"]
        assert [task["id"] for task in project.load_tasks()] == [1, 2, 3]

    def test_read_archive_returns_metadata_and_tasks(self, project) -> None:
        self._seed(project)
        result = project.engine().archive_prd("prd_001")

        bundle = read_prd_archive(project.root / result["data"]["archivePath"])

        metadata = bundle["metadata"]
        assert metadata["prdId"] == "prd_001"
        assert metadata["originalPrdPath"] == ".taskmaster/prd/done/a.md"
        assert metadata["linkedTaskIds"] == [1, 2]
        assert metadata["taskCount"] == 2
        assert "archivedDate" in metadata
        assert sorted(bundle["files"]) == ["a.md", "metadata.json", "tasks.json", "tasks/task_001.txt"]
        assert [task["id"] for task in bundle["tasks"]] == [1, 2]

    def test_extract_archive_restores_prd_file(self, project, tmp_path: Path) -> None:
        self._seed(project)
        result = project.engine().archive_prd("prd_001")

        extracted = extract_prd_archive(project.root / result["data"]["archivePath"], tmp_path / "out")

        assert (tmp_path / "out" / "a.md") in extracted
        assert (tmp_path / "out" / "a.md").read_text(encoding="utf-8") == "# Feature\n\nRequirements.\n"
        assert (tmp_path / "out" / "tasks" / "task_001.txt").exists()

    def test_bundle_can_be_skipped(self, project) -> None:
        self._seed(project)

        result = project.engine().archive_prd("prd_001", bundle=False)

        assert result["success"]
        assert "archivePath" not in result["data"]
        assert list((project.root / ".taskmaster/prd/archived").glob("*.zip")) == []

    def test_dry_run_writes_no_bundle(self, project) -> None:
        self._seed(project)

        project.engine().archive_prd("prd_001", dry_run=True)

        assert not (project.root / ".taskmaster/prd/archived").exists()

    def test_bundle_removed_when_index_write_fails(self, project, monkeypatch: pytest.MonkeyPatch) -> None:
        self._seed(project)

        def fail(self, prds) -> None:
            raise LedgerIOError("disk full")

        monkeypatch.setattr(JsonMetadataStore, "save_prds", fail)

        result = project.engine().archive_prd("prd_001")

        assert result == {"success": False, "error": "disk full"}
        assert list((project.root / ".taskmaster/prd/archived").glob("*.zip")) == []

    def test_reading_a_non_archive_fails(self, project) -> None:
        path = project.write("notes.zip", "plain text")

        with pytest.raises(LedgerIOError, match="Not a PRD archive"):
            read_prd_archive(path)

    def test_reading_bundle_without_metadata_fails(self, tmp_path: Path) -> None:
        path = tmp_path / "prd_009_x.zip"
        with zipfile.ZipFile(path, "w") as bundle:
            bundle.writestr("a.md", "# A\n")

        with pytest.raises(LedgerIOError, match="metadata.json not found"):
            read_prd_archive(path)


class TestDelete:
    def _seed(self, project) -> None:
        doomed = project.prd("prd_001", "a.md", linked=[1, 2])
        kept = project.prd("prd_002", "b.md", linked=[4])
        project.save(
            [doomed, kept],
            [
                project.task(1, prd=doomed),
                project.task(2, prd=doomed),
                project.task(3, prd=doomed),
                project.task(4, prd=kept),
            ],
        )

    def test_delete_requires_force(self, project) -> None:
        self._seed(project)
        before = project.prds_path.read_bytes()

        result = project.engine().delete_prd("prd_001")

        assert not result["success"]
        assert project.prds_path.read_bytes() == before

    def test_delete_removes_prd_and_linked_tasks(self, project) -> None:
        self._seed(project)

        result = project.engine().delete_prd("prd_001", force=True)

        assert result["data"]["removedTasks"] == [1, 2]
        assert [prd["id"] for prd in project.load_prds()] == ["prd_002"]
        tasks = {task["id"]: task for task in project.load_tasks()}
        assert sorted(tasks) == [3, 4]
        assert "prdSource" not in tasks[3]
        assert tasks[4]["prdSource"]["prdId"] == "prd_002"
        assert (project.root / ".taskmaster/prd/pending/a.md").exists()

    def test_delete_leaves_no_backups(self, project) -> None:
        self._seed(project)

        project.engine().delete_prd("prd_001", force=True)

        assert not list(project.prd_dir.glob("*.backup.*"))
        assert not list(project.tasks_dir.glob("*.backup.*"))

    def test_delete_can_remove_file(self, project) -> None:
        self._seed(project)

        result = project.engine().delete_prd("prd_001", force=True, remove_file=True)

        assert result["data"]["fileRemoved"] is True
        assert not (project.root / ".taskmaster/prd/pending/a.md").exists()

    def test_unknown_prd(self, project) -> None:
        self._seed(project)

        result = project.engine().delete_prd("prd_404", force=True)

        assert result == {"success": False, "error": "PRD with ID prd_404 not found"}
