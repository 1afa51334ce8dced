"""
RunSession: one (thread, assistant) pair driven through complete runs.

A session posts the user's message, starts a run and hands it to the
RunPoller. Agent calls raised by that run start nested sessions through the
same machinery; their final text becomes the result of the calling action.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, TextIO

from .agents import AgentRegistry
from .config import RelayConfig
from .dispatcher import ToolDispatcher
from .errors import RunCancelledError
from .lane_queue import _GLOBAL_THREAD_LANES, LaneMetrics, ThreadLanes
from .poller import RunPoller
from .retry import RetrySupervisor
from .service.base import RunService, is_terminal
from .session import SessionContext
from .thread_registry import ThreadRegistry
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

LANE_WARN_WAIT_MS = 1200.0

EventHandler = Callable[[dict[str, Any]], None]


class RunSession:
    def __init__(
        self,
        service: RunService,
        *,
        assistant_id: str,
        tools: ToolRegistry,
        agents: AgentRegistry,
        config: RelayConfig | None = None,
        thread_registry: ThreadRegistry | None = None,
        lanes: ThreadLanes | None = None,
        parent: SessionContext | None = None,
        progress_stream: TextIO | None = None,
        on_event: EventHandler | None = None,
    ) -> None:
        if not assistant_id:
            raise ValueError("assistant_id is required")
        self.service = service
        self.assistant_id = assistant_id
        self.tools = tools
        self.agents = agents
        self.config = config or RelayConfig()
        self.thread_registry = thread_registry
        self.lanes = lanes if lanes is not None else _GLOBAL_THREAD_LANES
        # Nested sessions give up on a busy thread instead of waiting forever.
        self.lane_timeout = self.config.nested_lane_timeout if parent is not None else None
        self.parent = parent
        self.on_event = on_event
        self._context: SessionContext | None = None
        self._resume_pending = False

        retry = RetrySupervisor(
            service,
            submit_max_retries=self.config.submit_max_retries,
            submit_retry_delay=self.config.submit_retry_delay,
            run_max_retries=self.config.run_max_retries,
        )
        dispatcher = ToolDispatcher(
            tools=tools,
            agents=agents,
            start_session=self._start_nested,
            max_workers=self.config.max_parallel_actions,
        )
        self.poller = RunPoller(
            service,
            dispatcher,
            retry,
            poll_interval=self.config.poll_interval,
            spinner_interval=self.config.spinner_interval,
            progress_stream=progress_stream,
            on_event=on_event,
        )

    @property
    def context(self) -> SessionContext | None:
        """The context currently owned by this session (read-only for observers)."""
        return self._context

    def new_thread(self) -> SessionContext:
        thread_id = self.service.create_thread()
        if self.thread_registry is not None and self.parent is None:
            self.thread_registry.append(thread_id)
        self._context = self._make_context(thread_id)
        self._resume_pending = False
        self._emit_event({"type": "thread_created", "thread_id": thread_id, "depth": self._context.depth})
        return self._context

    def attach(self, thread_id: str) -> SessionContext:
        """Use an existing thread; a stale active run on it is cancelled before the next message."""
        self._context = self._make_context(thread_id)
        self._resume_pending = True
        return self._context

    def resume(self, thread_id: str) -> SessionContext:
        ctx = self.attach(thread_id)
        self.lanes.run(
            thread_id, self._ensure_no_active_run, on_metrics=self._on_lane_metrics, timeout=self.lane_timeout
        )
        return ctx

    def submit(self, text: str) -> str:
        """Post ``text`` as a user message, run the assistant and return its reply."""
        ctx = self._context or self.new_thread()
        return self.lanes.run(
            ctx.thread_id,
            lambda: self._submit_impl(ctx, text),
            on_metrics=self._on_lane_metrics,
            timeout=self.lane_timeout,
        )

    def _submit_impl(self, ctx: SessionContext, text: str) -> str:
        self._ensure_no_active_run()
        if ctx.cancelled:
            raise RunCancelledError()
        self.service.post_message(ctx.thread_id, "user", text)
        run = self.service.create_run(ctx.thread_id, ctx.assistant_id)
        ctx.run_id = run.id
        if ctx.cancelled:
            # The interrupt may have walked the context tree before run_id was set.
            ctx.run_id = None
            self._cancel_quietly(ctx.thread_id, run.id)
            raise RunCancelledError(run.id)
        self._emit_event(
            {
                "type": "run_start",
                "run_id": run.id,
                "thread_id": ctx.thread_id,
                "assistant_id": ctx.assistant_id,
                "depth": ctx.depth,
            }
        )
        try:
            reply = self.poller.drive(ctx)
        except Exception as exc:
            self._emit_event({"type": "run_end", "thread_id": ctx.thread_id, "status": "error", "error": str(exc)})
            raise
        finally:
            ctx.run_id = None
        self._emit_event({"type": "run_end", "thread_id": ctx.thread_id, "status": "completed", "final_text": reply})
        return reply

    def _ensure_no_active_run(self) -> None:
        if not self._resume_pending or self._context is None:
            return
        ctx = self._context
        runs = self.service.list_runs(ctx.thread_id, limit=1)
        self._resume_pending = False
        if not runs or is_terminal(runs[0].status):
            return
        stale = runs[0]
        print(f"  [resume] cancelling active run {stale.id} ({stale.status}) on thread {ctx.thread_id}")
        self.service.cancel_run(ctx.thread_id, stale.id)
        self._emit_event({"type": "stale_run_cancelled", "run_id": stale.id, "thread_id": ctx.thread_id})
        deadline = time.monotonic() + self.config.stale_run_timeout
        while time.monotonic() < deadline:
            if ctx.cancel_event.wait(self.config.poll_interval):
                return
            if is_terminal(self.service.get_run(ctx.thread_id, stale.id).status):
                return
        logger.warning("run %s on thread %s did not finish cancelling in time", stale.id, ctx.thread_id)

    def _cancel_quietly(self, thread_id: str, run_id: str) -> None:
        try:
            self.service.cancel_run(thread_id, run_id)
        except Exception as exc:
            logger.warning("could not cancel run %s on thread %s: %s", run_id, thread_id, exc)

    def _start_nested(
        self,
        *,
        parent: SessionContext,
        assistant_id: str,
        prompt: str,
        thread_id: str | None = None,
    ) -> str:
        child = RunSession(
            self.service,
            assistant_id=assistant_id,
            tools=self.tools,
            agents=self.agents,
            config=self.config,
            thread_registry=self.thread_registry,
            lanes=self.lanes,
            parent=parent,
            on_event=self.on_event,
        )
        if thread_id:
            child.attach(thread_id)
        else:
            child.new_thread()
        try:
            return child.submit(prompt)
        finally:
            if child.context is not None:
                parent.detach_child(child.context)

    def _make_context(self, thread_id: str) -> SessionContext:
        if self.parent is not None:
            return self.parent.spawn_child(thread_id=thread_id, assistant_id=self.assistant_id)
        return SessionContext(thread_id=thread_id, assistant_id=self.assistant_id)

    def _on_lane_metrics(self, metrics: LaneMetrics) -> None:
        if metrics.wait_ms >= LANE_WARN_WAIT_MS:
            self._emit_event(
                {
                    "type": "lane_wait",
                    "thread_id": metrics.thread_id,
                    "wait_ms": round(metrics.wait_ms),
                    "run_ms": round(metrics.run_ms),
                }
            )

    def _emit_event(self, event: dict[str, Any]) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception:
            # Event handlers are best-effort and should not break run execution.
            return
