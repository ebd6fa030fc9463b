from __future__ import annotations

import pytest

from prd_ledger.models import VersionEntry
from prd_ledger.versions import next_version

from conftest import sha256


def _history(*versions: str) -> list[VersionEntry]:
    return [VersionEntry(version=v, timestamp="", change_type="manual", author="me") for v in versions]


class TestNextVersion:
    def test_first_version(self) -> None:
        assert next_version([]) == "1.0.0"
        assert next_version([], "major") == "1.0.0"

    @pytest.mark.parametrize(
        ("version_type", "expected"),
        [("patch", "1.2.4"), ("minor", "1.3.0"), ("major", "2.0.0")],
    )
    def test_bumps(self, version_type: str, expected: str) -> None:
        assert next_version(_history("1.0.0", "1.2.3"), version_type) == expected

    def test_unknown_bump_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="version_type"):
            next_version([], "huge")


class TestAddVersionEntry:
    def test_sequence_of_bumps(self, project) -> None:
        project.save([project.prd("prd_001", "a.md")])
        engine = project.engine()

        versions = [
            engine.add_version_entry("prd_001", "manual", version_type=kind)["data"]["version"]
            for kind in ("patch", "patch", "minor", "major")
        ]

        assert versions == ["1.0.0", "1.0.1", "1.1.0", "2.0.0"]
        saved = project.load_prd("prd_001")
        assert saved["currentVersion"] == "2.0.0"
        assert len(saved["versionHistory"]) == 4

    def test_entry_snapshots_the_prd(self, project) -> None:
        project.save([project.prd("prd_001", "a.md", linked=[1, 2], tags=["ui"])])

        result = project.engine().add_version_entry("prd_001", "reviewed", {"note": "ok"}, author="dana")

        entry = result["data"]["versionEntry"]
        assert entry["author"] == "dana"
        assert entry["changeDetails"] == {"note": "ok"}
        assert entry["snapshot"]["status"] == "pending"
        assert entry["snapshot"]["tags"] == ["ui"]
        assert entry["snapshot"]["linkedTaskCount"] == 2

    def test_default_author_comes_from_config(self, project) -> None:
        project.write(".taskmaster/ledger.yaml", "default_author: release-bot\n")
        project.save([project.prd("prd_001", "a.md")])

        result = project.engine().add_version_entry("prd_001", "manual")

        assert result["data"]["versionEntry"]["author"] == "release-bot"

    def test_invalid_version_type_writes_nothing(self, project) -> None:
        project.save([project.prd("prd_001", "a.md")])
        before = project.prds_path.read_bytes()

        result = project.engine().add_version_entry("prd_001", "manual", version_type="huge")

        assert not result["success"]
        assert "version_type" in result["error"]
        assert project.prds_path.read_bytes() == before


class TestTrackFileChanges:
    def test_unchanged_file(self, project) -> None:
        project.save([project.prd("prd_001", "a.md")])

        result = project.engine().track_file_changes("prd_001")

        assert result["success"]
        assert result["data"]["changed"] is False

    def test_changed_file_records_version_and_restamps(self, project) -> None:
        entry = project.prd("prd_001", "a.md", content="short\n")
        project.save([entry])
        project.write(entry["filePath"], "a little longer\n")
        engine = project.engine()

        result = engine.track_file_changes("prd_001", author="dana")

        assert result["data"]["changed"] is True
        assert result["data"]["version"] == "1.0.0"
        details = result["data"]["changeDetails"]
        assert details["previousHash"] == sha256("short\n")
        assert details["newHash"] == sha256("a little longer\n")
        assert details["sizeChange"] == 10
        saved = project.load_prd("prd_001")
        assert saved["fileHash"] == sha256("a little longer\n")
        assert saved["versionHistory"][0]["changeType"] == "file_modified"
        assert engine.track_file_changes("prd_001")["data"]["changed"] is False

    def test_missing_file(self, project) -> None:
        entry = project.prd("prd_001", "a.md")
        (project.root / entry["filePath"]).unlink()
        project.save([entry])

        result = project.engine().track_file_changes("prd_001")

        assert not result["success"]
        assert result["error"].startswith("PRD file not found")


class TestHistory:
    def _seed(self, project):
        project.save([project.prd("prd_001", "a.md")])
        engine = project.engine()
        engine.add_version_entry("prd_001", "manual", author="dana")
        engine.add_version_entry("prd_001", "reviewed", author="lee")
        engine.add_version_entry("prd_001", "manual", author="lee")
        return engine

    def test_full_history(self, project) -> None:
        data = self._seed(project).get_version_history("prd_001")["data"]

        assert data["currentVersion"] == "1.0.2"
        assert data["totalVersions"] == 3
        assert [entry["version"] for entry in data["history"]] == ["1.0.0", "1.0.1", "1.0.2"]

    def test_filters_and_limit(self, project) -> None:
        engine = self._seed(project)

        by_type = engine.get_version_history("prd_001", change_type="manual")["data"]["history"]
        by_author = engine.get_version_history("prd_001", author="lee")["data"]["history"]
        latest = engine.get_version_history("prd_001", limit=1)["data"]["history"]

        assert [entry["version"] for entry in by_type] == ["1.0.0", "1.0.2"]
        assert [entry["version"] for entry in by_author] == ["1.0.1", "1.0.2"]
        assert [entry["version"] for entry in latest] == ["1.0.2"]

    def test_prd_without_history(self, project) -> None:
        project.save([project.prd("prd_001", "a.md")])

        data = project.engine().get_version_history("prd_001")["data"]

        assert data["currentVersion"] == "1.0.0"
        assert data["totalVersions"] == 0
        assert data["history"] == []

    def test_unknown_prd(self, project) -> None:
        project.save([])

        assert project.engine().get_version_history("prd_404")["error"] == "PRD with ID prd_404 not found"


class TestCompareVersions:
    def test_reports_changed_fields(self, project) -> None:
        project.save([project.prd("prd_001", "a.md")])
        engine = project.engine()
        engine.add_version_entry("prd_001", "manual")
        engine.move_prd_file_to_status_directory("prd_001", "in-progress")
        engine.add_version_entry("prd_001", "manual")

        result = engine.compare_versions("prd_001", "1.0.0", "1.0.1")

        data = result["data"]
        assert data["hasChanges"]
        assert data["differences"]["status"] == {"changed": True, "from": "pending", "to": "in-progress"}
        assert data["differences"]["fileHash"]["changed"] is False
        assert data["version1"]["version"] == "1.0.0"

    def test_identical_versions(self, project) -> None:
        project.save([project.prd("prd_001", "a.md")])
        engine = project.engine()
        engine.add_version_entry("prd_001", "manual")
        engine.add_version_entry("prd_001", "manual")

        result = engine.compare_versions("prd_001", "1.0.0", "1.0.1")

        assert result["data"]["hasChanges"] is False

    def test_unknown_version(self, project) -> None:
        project.save([project.prd("prd_001", "a.md")])
        engine = project.engine()
        engine.add_version_entry("prd_001", "manual")

        result = engine.compare_versions("prd_001", "1.0.0", "9.9.9")

        assert result == {"success": False, "error": "One or both versions not found"}
