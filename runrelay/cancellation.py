from __future__ import annotations

import logging
import signal
import threading
from typing import Any, Callable

from .service.base import RunService
from .session import SessionContext

logger = logging.getLogger(__name__)

INTERRUPTED_EXIT_CODE = 130

ContextSource = Callable[[], SessionContext | None]


class CancellationHandler:
    """
    On SIGINT: stop polling everywhere, ask the service to cancel every active
    run (without waiting for confirmation beyond a short grace period), then exit.
    """

    def __init__(self, service: RunService, context: ContextSource, *, grace_seconds: float = 2.0) -> None:
        self.service = service
        self.context = context
        self.grace_seconds = max(0.0, float(grace_seconds))
        self._previous: Any = None
        self._installed = False

    def install(self) -> None:
        if self._installed:
            return
        self._previous = signal.signal(signal.SIGINT, self._on_signal)
        self._installed = True

    def uninstall(self) -> None:
        if not self._installed:
            return
        signal.signal(signal.SIGINT, self._previous)
        self._installed = False

    def cancel_active(self) -> list[threading.Thread]:
        """Fire cancel requests for every active run; returns the sender threads."""
        root = self.context()
        if root is None:
            return []
        root.cancel_event.set()
        senders: list[threading.Thread] = []
        for ctx in list(root.iter_active()):
            sender = threading.Thread(
                target=self._send_cancel,
                args=(ctx.thread_id, ctx.run_id),
                name=f"cancel-{ctx.run_id}",
                daemon=True,
            )
            sender.start()
            senders.append(sender)
        return senders

    def _on_signal(self, signum: int, frame: Any) -> None:
        print("\nInterrupted, cancelling active runs...")
        senders = self.cancel_active()
        deadline_each = self.grace_seconds / max(1, len(senders))
        for sender in senders:
            sender.join(deadline_each)
        raise SystemExit(INTERRUPTED_EXIT_CODE)

    def _send_cancel(self, thread_id: str, run_id: str | None) -> None:
        if not run_id:
            return
        try:
            self.service.cancel_run(thread_id, run_id)
        except Exception as exc:
            # Best effort: the process is exiting either way.
            logger.warning("could not cancel run %s on thread %s: %s", run_id, thread_id, exc)
