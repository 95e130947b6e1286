"""Tests for the task store state machine and task insertion."""

from __future__ import annotations

import pytest

from claimboard.errors import DuplicateId, InvalidTransition, TaskAlreadyClaimed, TaskNotFound
from claimboard.tasks import TaskStatus, TaskStore, derive_task_id
from tests.utils import SAMPLE_TASKS, T0

SID_A = "20241229-143022-x"
SID_B = "20241229-143023-y"


@pytest.fixture
def store() -> TaskStore:
    return TaskStore.from_text(SAMPLE_TASKS)


class TestQueries:
    """Tests for listing and lookup."""

    def test_list_by_phase(self, store: TaskStore) -> None:
        ids = [t.id for t in store.list_tasks(phase="Phase 1: API")]
        assert ids == ["7", "8", "9"]

    def test_list_by_status(self, store: TaskStore) -> None:
        completed = list(store.list_tasks(status=TaskStatus.COMPLETED))
        assert [t.description for t in completed] == ["Write changelog"]

    def test_list_by_section(self, store: TaskStore) -> None:
        guides = list(store.list_tasks(section="Guides"))
        assert len(guides) == 2

    def test_query_is_restartable(self, store: TaskStore) -> None:
        query = store.list_tasks(phase="Phase 1: API")
        assert len(list(query)) == 3
        store.set_status("7", TaskStatus.CLAIMED, SID_A)
        assert len(list(query)) == 3

    def test_get_task_unknown(self, store: TaskStore) -> None:
        with pytest.raises(TaskNotFound):
            store.get_task("404")

    def test_progress(self, store: TaskStore) -> None:
        store.set_status("8", TaskStatus.CLAIMED, SID_A)
        assert store.progress() == {
            TaskStatus.OPEN: 3,
            TaskStatus.CLAIMED: 1,
            TaskStatus.COMPLETED: 1,
        }
        assert store.progress(phase="Phase 2: Docs")[TaskStatus.COMPLETED] == 1


class TestStateMachine:
    """Tests for set_status transitions."""

    def test_claim_open_task(self, store: TaskStore) -> None:
        task = store.set_status("7", TaskStatus.CLAIMED, SID_A, agent="x")
        assert task.status is TaskStatus.CLAIMED
        assert task.claimed_by == SID_A
        assert "- [ ] Add health endpoint @x #20241229-143022-x <!-- id:7 -->" in store.to_text()

    def test_claim_requires_session(self, store: TaskStore) -> None:
        with pytest.raises(ValueError):
            store.set_status("7", TaskStatus.CLAIMED)

    def test_reclaim_by_holder_is_noop(self, store: TaskStore) -> None:
        store.set_status("7", TaskStatus.CLAIMED, SID_A)
        before = store.to_text()
        store.set_status("7", TaskStatus.CLAIMED, SID_A)
        assert store.to_text() == before

    def test_claim_held_task_fails(self, store: TaskStore) -> None:
        store.set_status("7", TaskStatus.CLAIMED, SID_A)
        with pytest.raises(TaskAlreadyClaimed) as exc_info:
            store.set_status("7", TaskStatus.CLAIMED, SID_B)
        assert exc_info.value.holder == SID_A

    def test_release_writes_audit_note(self, store: TaskStore) -> None:
        store.set_status("7", TaskStatus.CLAIMED, SID_A)
        task = store.set_status("7", TaskStatus.RELEASED, SID_A, reason="blocked", now=T0)

        assert task.status is TaskStatus.OPEN
        assert task.claimed_by is None
        assert task.history == [f"released {SID_A} (blocked) 2024-12-29T14:30:22+00:00"]
        assert f"  <!-- released {SID_A} (blocked) 2024-12-29T14:30:22+00:00 -->" in store.to_text()

    def test_released_task_reparses_as_open(self, store: TaskStore) -> None:
        store.set_status("7", TaskStatus.CLAIMED, SID_A)
        store.set_status("7", TaskStatus.OPEN, SID_A, now=T0)
        reloaded = TaskStore.from_text(store.to_text())
        task = reloaded.get_task("7")
        assert task.status is TaskStatus.OPEN
        assert len(task.history) == 1

    def test_release_by_non_holder_fails(self, store: TaskStore) -> None:
        store.set_status("7", TaskStatus.CLAIMED, SID_A)
        with pytest.raises(TaskAlreadyClaimed):
            store.set_status("7", TaskStatus.OPEN, SID_B)

    def test_release_open_task_fails(self, store: TaskStore) -> None:
        with pytest.raises(InvalidTransition):
            store.set_status("7", TaskStatus.OPEN)

    def test_complete_open_task_fails(self, store: TaskStore) -> None:
        with pytest.raises(InvalidTransition):
            store.set_status("7", TaskStatus.COMPLETED, SID_A)

    def test_complete_claimed_task(self, store: TaskStore) -> None:
        store.set_status("7", TaskStatus.CLAIMED, SID_A, agent="x")
        task = store.set_status("7", TaskStatus.COMPLETED, SID_A)
        assert task.status is TaskStatus.COMPLETED
        assert task.completed_by == SID_A
        assert task.claimed_by is None
        assert "- [x] Add health endpoint ~~@x~~ ~~#20241229-143022-x~~ <!-- id:7 -->" in (
            store.to_text()
        )

    @pytest.mark.parametrize(
        "status", [TaskStatus.OPEN, TaskStatus.CLAIMED, TaskStatus.RELEASED, TaskStatus.COMPLETED]
    )
    def test_completed_is_terminal(self, store: TaskStore, status: TaskStatus) -> None:
        store.set_status("7", TaskStatus.CLAIMED, SID_A)
        store.set_status("7", TaskStatus.COMPLETED, SID_A)
        with pytest.raises(InvalidTransition):
            store.set_status("7", status, SID_A)

    def test_other_lines_untouched_by_transition(self, store: TaskStore) -> None:
        store.set_status("8", TaskStatus.CLAIMED, SID_A)
        before = SAMPLE_TASKS.split("\n")
        after = store.to_text().split("\n")
        changed = [i for i, (a, b) in enumerate(zip(before, after)) if a != b]
        assert len(before) == len(after)
        assert len(changed) == 1


class TestAppendTask:
    """Tests for adding tasks to the list."""

    def test_append_to_existing_phase(self, store: TaskStore) -> None:
        task = store.append_task("Add rate limiting", "Phase 1: API", task_id="10")
        assert task.id == "10"
        assert task.status is TaskStatus.OPEN
        assert [t.id for t in store.list_tasks(phase="Phase 1: API")] == ["7", "8", "9", "10"]

    def test_append_to_existing_section(self, store: TaskStore) -> None:
        task = store.append_task("Write upgrade guide", "Phase 2: Docs", section="Guides")
        assert task.id == derive_task_id(("Phase 2: Docs", "Guides"), "Write upgrade guide")
        guides = [t.description for t in store.list_tasks(section="Guides")]
        assert guides[-1] == "Write upgrade guide"
        # Still above the fenced example
        text = store.to_text()
        assert text.index("Write upgrade guide") < text.index("```markdown")

    def test_append_creates_missing_phase(self, store: TaskStore) -> None:
        task = store.append_task("Tag release", "Phase 3: Release")
        assert task.phase == "Phase 3: Release"
        assert "## Phase 3: Release" in store.to_text()

    def test_append_creates_missing_section(self, store: TaskStore) -> None:
        task = store.append_task("Document errors", "Phase 1: API", section="Reference")
        assert task.section_path == ("Phase 1: API", "Reference")
        assert "### Reference" in store.to_text()

    def test_append_to_empty_document(self) -> None:
        store = TaskStore.from_text("")
        task = store.append_task("First task", "Backlog")
        assert store.to_text().startswith("## Backlog\n")
        assert store.get_task(task.id).description == "First task"

    def test_existing_ids_stable_after_append(self, store: TaskStore) -> None:
        before = {t.description: t.id for t in store.list_tasks()}
        store.append_task("Add rate limiting", "Phase 1: API")
        after = {t.description: t.id for t in store.list_tasks()}
        for description, task_id in before.items():
            assert after[description] == task_id

    def test_new_section_under_lone_h1(self) -> None:
        store = TaskStore.from_text("# Backlog\n\n- [ ] Fix login\n")
        old_id = next(iter(store.list_tasks())).id

        task = store.append_task("New thing", "Backlog", section="Later")

        assert task.section_path == ("Backlog", "Later")
        assert store.get_task(old_id).phase == "Backlog"
        assert "## Later" in store.to_text()
        reloaded = TaskStore.from_text(store.to_text())
        assert [t.id for t in reloaded.list_tasks()] == [old_id, task.id]
        assert reloaded.get_task(task.id).section == "Later"

    def test_crlf_list_keeps_line_endings(self) -> None:
        store = TaskStore.from_text(SAMPLE_TASKS.replace("\n", "\r\n"))
        store.set_status("7", TaskStatus.CLAIMED, SID_A, agent="x")
        store.set_status("7", TaskStatus.OPEN, SID_A, now=T0)
        store.append_task("Document errors", "Phase 1: API", section="Reference")

        text = store.to_text()
        assert "<!-- released 20241229-143022-x" in text
        assert text.count("\r\n") == text.count("\n")
        assert all("\r" not in t.description for t in store.list_tasks())

    def test_duplicate_explicit_id(self, store: TaskStore) -> None:
        with pytest.raises(DuplicateId):
            store.append_task("Another", "Phase 1: API", task_id="7")

    def test_duplicate_derived_id(self, store: TaskStore) -> None:
        with pytest.raises(DuplicateId):
            store.append_task("Write quickstart", "Phase 2: Docs", section="Guides")

    @pytest.mark.parametrize("description", ["", "   ", "two\nlines"])
    def test_invalid_description(self, store: TaskStore, description: str) -> None:
        with pytest.raises(ValueError):
            store.append_task(description, "Phase 1: API")

    def test_invalid_explicit_id(self, store: TaskStore) -> None:
        with pytest.raises(ValueError):
            store.append_task("Task", "Phase 1: API", task_id="has space")
