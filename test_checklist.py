"""
Tests for the goal/checklist tracker.
"""

from orchestrator.checklist import TaskChecklist, TaskStatus


def _checklist():
    return TaskChecklist.from_plan(["add route", "add handler", "write test"], "add a health endpoint")


def test_ids_are_one_based_and_blank_tasks_dropped():
    checklist = TaskChecklist.from_plan(["a", "  ", "b"], "goal")
    assert [i.id for i in checklist.items] == [1, 2]
    assert [i.description for i in checklist.items] == ["a", "b"]


def test_auto_promote_picks_lowest_pending():
    checklist = _checklist()
    item = checklist.auto_promote()
    assert item.id == 1
    assert checklist.in_progress_item is item
    # Nothing promoted while an item is in progress
    assert checklist.auto_promote() is None


def test_at_most_one_in_progress():
    checklist = _checklist()
    checklist.mark_in_progress(1)
    checklist.mark_in_progress(3)
    in_progress = [i for i in checklist.items if i.status is TaskStatus.IN_PROGRESS]
    assert [i.id for i in in_progress] == [3]
    assert checklist.items[0].status is TaskStatus.PENDING


def test_unknown_id_is_ignored():
    checklist = _checklist()
    assert checklist.mark_completed(42) is False
    assert checklist.completed_count == 0


def test_progress_and_completion():
    checklist = _checklist()
    checklist.mark_completed(1, "Done")
    checklist.mark_skipped(2)
    assert checklist.completed_count == 1
    assert checklist.progress_percent == 33
    assert not checklist.is_complete
    checklist.mark_completed(3)
    assert checklist.is_complete
    assert checklist.remaining_items == []


def test_failed_items_remain():
    checklist = _checklist()
    checklist.mark_failed(2, "tests red")
    assert [i.id for i in checklist.remaining_items] == [1, 2, 3]
    assert checklist.items[1].verification_note == "tests red"


def test_current_item_falls_back_to_first_pending():
    checklist = _checklist()
    checklist.mark_completed(1)
    assert checklist.current_item.id == 2


def test_display_string():
    checklist = _checklist()
    checklist.mark_completed(1, "Done")
    checklist.auto_promote()
    text = checklist.display_string
    assert text.startswith("CHECKLIST (1/3 completed - 33%):")
    assert "✓ 1. add route [Done]" in text
    assert "→ 2. add handler" in text
    assert "○ 3. write test" in text


def test_dict_round_trip_preserves_status():
    checklist = _checklist()
    checklist.mark_completed(1, "Done")
    restored = TaskChecklist.from_dict(checklist.to_dict())
    assert restored.goal_description == "add a health endpoint"
    assert restored.items[0].status is TaskStatus.COMPLETED
    assert restored.items[0].verification_note == "Done"


def test_empty_checklist():
    checklist = TaskChecklist()
    assert not checklist.has_items
    assert checklist.progress_percent == 0
    assert checklist.auto_promote() is None
