from __future__ import annotations

from typing import Callable, List, Optional, Tuple

from .utils import get_logger

Undo = Callable[[], None]


class StepRecorder:
    """
    Runs the steps of a destructive operation and remembers how to undo them.

    If anything (including KeyboardInterrupt) escapes the ``with`` block before
    ``commit()``, the recorded undo actions run newest-first and the exception
    propagates. After ``commit()`` nothing is rolled back.
    """

    def __init__(self, operation: str):
        self.operation = operation
        self.done: List[str] = []
        self._undo: List[Tuple[str, Undo]] = []
        self._committed = False
        self.log = get_logger()

    def step(self, description: str, action: Callable[[], object], undo: Optional[Undo] = None):
        self.log.info(description)
        result = action()
        self.done.append(description)
        if undo is not None:
            self._undo.append((description, undo))
        return result

    def commit(self) -> None:
        self._committed = True
        self._undo.clear()

    def rollback(self) -> None:
        while self._undo:
            description, undo = self._undo.pop()
            try:
                undo()
                self.log.warning(f"{self.operation}: rolled back '{description}'")
            except Exception as e:
                self.log.error(f"{self.operation}: rollback of '{description}' failed: {e}")

    def __enter__(self) -> "StepRecorder":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and not self._committed and self._undo:
            self.log.error(f"{self.operation} aborted after {len(self.done)} step(s); rolling back")
            self.rollback()
        return False
