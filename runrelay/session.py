"""
Session data model (without driving concerns).

A SessionContext is the (thread_id, assistant_id, run_id) triple a RunSession
is currently driving. Nested agent calls hang child contexts off their parent
so an interrupt can reach every run that is still active.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Iterator


@dataclass(eq=False)
class SessionContext:
    thread_id: str
    assistant_id: str
    run_id: str | None = None
    depth: int = 0
    parent: "SessionContext | None" = field(default=None, repr=False)
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    _children: list["SessionContext"] = field(default_factory=list, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def spawn_child(self, *, thread_id: str, assistant_id: str) -> "SessionContext":
        # Children share the cancel event: interrupting the root stops the whole tree.
        child = SessionContext(
            thread_id=thread_id,
            assistant_id=assistant_id,
            depth=self.depth + 1,
            parent=self,
            cancel_event=self.cancel_event,
        )
        with self._lock:
            self._children.append(child)
        return child

    def detach_child(self, child: "SessionContext") -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def children(self) -> list["SessionContext"]:
        with self._lock:
            return list(self._children)

    def holds_thread(self, thread_id: str) -> bool:
        """True if this context or one of its ancestors is driving ``thread_id``."""
        node: SessionContext | None = self
        while node is not None:
            if node.thread_id == thread_id:
                return True
            node = node.parent
        return False

    def iter_active(self) -> Iterator["SessionContext"]:
        """Yield this context and its descendants that currently own a run."""
        if self.run_id:
            yield self
        for child in self.children():
            yield from child.iter_active()
