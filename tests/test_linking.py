from __future__ import annotations

from prd_ledger.linking import (
    check_linking_consistency,
    get_tasks_linked_to_prd,
    link_task,
    restamp_prd_source,
    unlink_task,
)
from prd_ledger.models import PrdRecord, PrdSource, TaskRecord


def _prd(prd_id: str = "prd_001", file_name: str = "a.md", linked=None) -> PrdRecord:
    return PrdRecord(
        id=prd_id,
        title="Feature",
        file_name=file_name,
        file_path=f".taskmaster/prd/pending/{file_name}",
        file_hash="abc",
        file_size=10,
        linked_tasks=list(linked or []),
    )


def _task(task_id, file_name=None, prd_id="prd_001", status="pending") -> TaskRecord:
    source = PrdSource(prd_id=prd_id, file_name=file_name) if file_name else None
    return TaskRecord(id=task_id, title=f"Task {task_id}", status=status, prd_source=source)


def _types(result) -> list[str]:
    return [issue.type for issue in result.issues]


class TestConsistency:
    def test_consistent_links_have_no_issues(self) -> None:
        result = check_linking_consistency([_prd(linked=[1])], [_task(1, "a.md")])

        assert result.issues == []
        assert result.valid

    def test_string_and_integer_ids_match(self) -> None:
        result = check_linking_consistency([_prd(linked=["7"])], [_task(7, "a.md")])

        assert result.issues == []

    def test_link_to_unknown_task_is_orphaned(self) -> None:
        result = check_linking_consistency([_prd(linked=[99])], [])

        assert _types(result) == ["orphaned_task_link"]
        assert result.issues[0].severity == "error"
        assert result.issues[0].task_id == 99
        assert not result.valid

    def test_task_pointing_at_other_file_is_a_mismatch(self) -> None:
        prds = [_prd(linked=[1]), _prd("prd_002", "b.md")]
        result = check_linking_consistency(prds, [_task(1, "b.md", prd_id="prd_002")])

        assert _types(result) == ["prd_source_mismatch", "missing_task_link"]
        mismatch = result.issues[0]
        assert mismatch.expected == "a.md"
        assert mismatch.actual == "b.md"
        assert result.valid

    def test_task_naming_unknown_prd(self) -> None:
        result = check_linking_consistency([], [_task(1, "gone.md")])

        assert _types(result) == ["missing_prd_reference"]
        assert result.issues[0].file_name == "gone.md"

    def test_missing_back_link_is_a_warning(self) -> None:
        result = check_linking_consistency([_prd()], [_task(1, "a.md")])

        assert _types(result) == ["missing_task_link"]
        assert result.issues[0].severity == "warning"
        assert result.issues[0].prd_id == "prd_001"

    def test_tasks_without_source_are_ignored(self) -> None:
        result = check_linking_consistency([_prd()], [_task(1)])

        assert result.issues == []


class TestEdits:
    def test_link_task_sets_both_directions(self) -> None:
        prd, task = _prd(), _task(3)

        assert link_task(prd, task) is True

        assert prd.linked_tasks == [3]
        assert task.prd_source.prd_id == "prd_001"
        assert task.prd_source.file_name == "a.md"
        assert task.prd_source.file_hash == "abc"

    def test_link_task_twice_is_a_no_op(self) -> None:
        prd, task = _prd(), _task(3)
        link_task(prd, task)

        assert link_task(prd, task) is False
        assert prd.linked_tasks == [3]

    def test_unlink_task_returns_removed_source(self) -> None:
        prd, task = _prd(linked=["3"]), _task(3, "a.md")

        removed = unlink_task(prd, task)

        assert removed.file_name == "a.md"
        assert prd.linked_tasks == []
        assert task.prd_source is None

    def test_unlink_keeps_source_of_another_prd(self) -> None:
        prd, task = _prd(linked=[3]), _task(3, "b.md", prd_id="prd_002")

        assert unlink_task(prd, task) is None
        assert task.prd_source.file_name == "b.md"
        assert prd.linked_tasks == []

    def test_restamp_keeps_parsed_date(self) -> None:
        prd = _prd(file_name="renamed.md")
        task = _task(1, "a.md")
        task.prd_source.parsed_date = "2024-01-02T00:00:00+00:00"

        restamp_prd_source(task, prd)

        assert task.prd_source.file_name == "renamed.md"
        assert task.prd_source.parsed_date == "2024-01-02T00:00:00+00:00"

    def test_get_tasks_linked_to_prd(self) -> None:
        tasks = [_task(1), _task(2), _task("3")]

        linked = get_tasks_linked_to_prd(_prd(linked=[3, 1]), tasks)

        assert [task.id for task in linked] == [1, "3"]
