from __future__ import annotations

from prd_ledger.autofix import AutoFixEngine
from prd_ledger.config import LedgerConfig
from prd_ledger.paths import ProjectPaths
from prd_ledger.store import JsonMetadataStore

from conftest import sha256


def _fixer(project, config: LedgerConfig | None = None) -> AutoFixEngine:
    paths = ProjectPaths(project.root, config)
    return AutoFixEngine(JsonMetadataStore(paths), paths, config)


class TestFileRepairs:
    def test_hash_drift_is_restamped_with_version_entry(self, project) -> None:
        entry = project.prd("prd_001", "a.md")
        project.save([entry])
        edited = "# Feature\n\nRequirements, revised.\n"
        project.write(entry["filePath"], edited)

        results = _fixer(project).apply()

        assert results.file_integrity.fixed == 1
        assert results.errors == []
        saved = project.load_prd("prd_001")
        assert saved["fileHash"] == sha256(edited)
        assert saved["fileSize"] == len(edited.encode("utf-8"))
        assert saved["lastModified"] != entry["lastModified"]
        [version] = saved["versionHistory"]
        assert version["changeType"] == "integrity_fix"
        assert version["author"] == "auto-fix"
        assert version["version"] == "1.0.0"
        assert version["changeDetails"]["previousHash"] == entry["fileHash"]
        assert saved["currentVersion"] == "1.0.0"

    def test_wrong_directory_moves_file_into_status_directory(self, project) -> None:
        entry = project.prd("prd_001", "a.md", status="done", directory="pending")
        project.save([entry])

        results = _fixer(project).apply()

        assert results.file_integrity.fixed == 1
        assert not (project.root / ".taskmaster/prd/pending/a.md").exists()
        assert (project.root / ".taskmaster/prd/done/a.md").exists()
        assert project.load_prd("prd_001")["filePath"] == ".taskmaster/prd/done/a.md"

    def test_collision_with_different_content_is_rejected(self, project) -> None:
        entry = project.prd("prd_001", "a.md", status="done", directory="pending")
        project.write(".taskmaster/prd/done/a.md", "someone else's file\n")
        project.save([entry])

        results = _fixer(project).apply()

        assert results.file_integrity.fixed == 0
        assert not results.file_integrity.success
        assert results.file_integrity.errors == [
            "Failed to fix wrong_directory for PRD prd_001: Target file already exists: .taskmaster/prd/done/a.md"
        ]
        assert (project.root / ".taskmaster/prd/pending/a.md").exists()
        assert (project.root / ".taskmaster/prd/done/a.md").read_text() == "someone else's file\n"

    def test_collision_with_identical_content_repoints(self, project) -> None:
        entry = project.prd("prd_001", "a.md", status="done", directory="pending")
        project.write(".taskmaster/prd/done/a.md", (project.root / entry["filePath"]).read_text())
        project.save([entry])

        results = _fixer(project).apply()

        assert results.file_integrity.fixed == 1
        assert project.load_prd("prd_001")["filePath"] == ".taskmaster/prd/done/a.md"

    def test_overwrite_policy_replaces_target(self, project) -> None:
        entry = project.prd("prd_001", "a.md", status="done", directory="pending", content="mine\n")
        project.write(".taskmaster/prd/done/a.md", "stale copy\n")
        project.save([entry])

        results = _fixer(project, LedgerConfig(collision_policy="overwrite")).apply()

        assert results.file_integrity.fixed == 1
        assert (project.root / ".taskmaster/prd/done/a.md").read_text() == "mine\n"
        assert not (project.root / ".taskmaster/prd/pending/a.md").exists()

    def test_target_recorded_by_another_prd_is_never_taken(self, project) -> None:
        owner = project.prd("prd_002", "a.md", status="done", content="owner\n")
        mover = project.prd("prd_001", "a.md", status="done", directory="pending", content="owner\n")
        project.save([mover, owner])

        results = _fixer(project, LedgerConfig(collision_policy="overwrite")).apply()

        assert "recorded by PRD prd_002" in results.file_integrity.errors[0]
        assert project.load_prd("prd_001")["filePath"] == ".taskmaster/prd/pending/a.md"

    def test_stale_recorded_path_is_repointed(self, project) -> None:
        entry = project.prd("prd_001", "a.md", status="in-progress")
        entry["filePath"] = "prd/in-progress/a.md"
        project.save([entry])

        results = _fixer(project).apply()

        assert results.file_integrity.fixed == 1
        assert project.load_prd("prd_001")["filePath"] == ".taskmaster/prd/in-progress/a.md"

    def test_missing_file_is_left_alone(self, project) -> None:
        entry = project.prd("prd_001", "a.md")
        (project.root / entry["filePath"]).unlink()
        project.save([entry])
        before = project.prds_path.read_bytes()

        results = _fixer(project).apply()

        assert results.total_fixed == 0
        assert project.prds_path.read_bytes() == before


class TestLinkRepairs:
    def test_missing_back_link_is_appended_and_stats_recomputed(self, project) -> None:
        prd = project.prd("prd_001", "a.md")
        project.save([prd], [project.task(1, "done", prd=prd), project.task(2, "pending", prd=prd)])

        results = _fixer(project).apply()

        assert results.task_links.fixed == 2
        saved = project.load_prd("prd_001")
        assert saved["linkedTasks"] == [1, 2]
        assert saved["taskStats"]["totalTasks"] == 2
        assert saved["taskStats"]["completedTasks"] == 1
        assert saved["taskStats"]["completionPercentage"] == 50

    def test_orphaned_link_is_never_fixed(self, project) -> None:
        project.save([project.prd("prd_001", "a.md", linked=[99])])

        results = _fixer(project).apply()

        assert results.total_fixed == 0
        assert project.load_prd("prd_001")["linkedTasks"] == [99]

    def test_renamed_prd_restamps_task_source(self, project) -> None:
        prd = project.prd("prd_001", "renamed.md", linked=[1])
        task = project.task(1, prd=prd)
        task["prdSource"]["fileName"] = "original.md"
        project.save([prd], [task])

        results = _fixer(project).apply()

        assert results.task_links.fixed == 1
        source = project.load_tasks()[0]["prdSource"]
        assert source["fileName"] == "renamed.md"
        assert source["parsedDate"] == "2024-01-02T00:00:00+00:00"

    def test_ambiguous_source_mismatch_stays_reported(self, project) -> None:
        prd = project.prd("prd_001", "a.md", linked=[1])
        task = project.task(1, prd=prd)
        task["prdSource"].update({"prdId": "prd_777", "fileName": "elsewhere.md"})
        project.save([prd], [task])

        results = _fixer(project).apply()

        assert results.total_fixed == 0
        assert project.load_tasks()[0]["prdSource"]["fileName"] == "elsewhere.md"


class TestIdempotence:
    def test_second_run_changes_nothing(self, project) -> None:
        drifted = project.prd("prd_001", "a.md")
        misplaced = project.prd("prd_002", "b.md", status="done", directory="pending")
        project.save([drifted, misplaced], [project.task(1, "done", prd=drifted)])
        project.write(drifted["filePath"], "# Edited\n")
        fixer = _fixer(project)

        first = fixer.apply()
        prds_after_first = project.prds_path.read_bytes()
        tasks_after_first = project.tasks_path.read_bytes()
        second = fixer.apply()

        assert first.total_fixed == 3
        assert second.total_fixed == 0
        assert project.prds_path.read_bytes() == prds_after_first
        assert project.tasks_path.read_bytes() == tasks_after_first
