# tests/test_steps.py

from __future__ import annotations

import pytest

from service_manager.steps import StepRecorder


def test_rollback_runs_newest_first_on_interrupt():
    undone = []
    with pytest.raises(KeyboardInterrupt):
        with StepRecorder("restore") as steps:
            steps.step("one", lambda: None, undo=lambda: undone.append("one"))
            steps.step("two", lambda: None)
            steps.step("three", lambda: None, undo=lambda: undone.append("three"))
            raise KeyboardInterrupt
    assert undone == ["three", "one"]


def test_failed_undo_does_not_stop_remaining_rollback():
    undone = []

    def broken():
        raise OSError("disk gone")

    def boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        with StepRecorder("uninstall") as steps:
            steps.step("a", lambda: None, undo=lambda: undone.append("a"))
            steps.step("b", lambda: None, undo=broken)
            steps.step("c", boom, undo=lambda: undone.append("c"))
    assert undone == ["a"]


def test_commit_disables_rollback():
    undone = []
    with pytest.raises(ValueError):
        with StepRecorder("restore") as steps:
            assert steps.step("a", lambda: 42, undo=lambda: undone.append("a")) == 42
            steps.commit()
            raise ValueError
    assert undone == []
    assert steps.done == ["a"]
