"""In-process async dispatcher for ship jobs.

Jobs for different applications run concurrently, bounded by a semaphore.
Jobs for the same application are serialized with a per-application lock,
since every deployment of an app targets the same worker, secrets and routes.

asyncio primitives belong to one event loop, so the semaphore and the
application locks are kept per loop. Jobs awaited through ``run()`` on a
caller's loop and jobs handed to ``submit()`` from sync code (which run on
the runner's own loop thread) are bounded and serialized separately.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import weakref
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any

from edgeship.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _LoopThread:
    loop: asyncio.AbstractEventLoop
    thread: threading.Thread


@dataclass(slots=True)
class _LoopGate:
    semaphore: asyncio.Semaphore
    app_locks: dict[str, asyncio.Lock] = field(default_factory=dict)


class ShipRunner:
    """Fire-and-forget or awaited execution of per-application jobs."""

    def __init__(self, max_concurrent: int | None = None) -> None:
        settings = get_settings()
        limit = max_concurrent or int(settings.ship_max_concurrent)
        self._max_concurrent = max(1, limit)
        self._gates: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, _LoopGate] = (
            weakref.WeakKeyDictionary()
        )
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._shutdown = asyncio.Event()
        self._lock = threading.Lock()
        self._loop_thread: _LoopThread | None = None

    @property
    def in_flight(self) -> int:
        return len(self._background_tasks)

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def _gate(self) -> _LoopGate:
        loop = asyncio.get_running_loop()
        with self._lock:
            gate = self._gates.get(loop)
            if gate is None:
                gate = _LoopGate(semaphore=asyncio.Semaphore(self._max_concurrent))
                self._gates[loop] = gate
            return gate

    async def run(self, app_id: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        """Run one job for ``app_id`` and return its result.

        Exceptions raised by the job are logged and returned as ``None``.
        """
        gate = self._gate()
        app_lock = gate.app_locks.setdefault(app_id, asyncio.Lock())
        async with app_lock:
            async with gate.semaphore:
                try:
                    if inspect.iscoroutinefunction(func):
                        return await func(**kwargs)
                    result = await asyncio.to_thread(func, **kwargs)
                    if inspect.isawaitable(result):
                        return await result
                    return result
                except Exception:
                    logger.exception("Ship job failed for %s", app_id)
                    return None

    def submit(self, app_id: str, func: Callable[..., Any], **kwargs: Any) -> bool:
        if self._shutdown.is_set():
            logger.warning("Ship runner is shutting down; skipping job for %s", app_id)
            return False
        try:
            loop = asyncio.get_running_loop()
            self._schedule_on_loop(loop, app_id, func, kwargs)
            return True
        except RuntimeError:
            return self._schedule_from_sync(app_id, func, kwargs)

    async def shutdown(self, timeout_s: float) -> None:
        self._shutdown.set()
        if self._background_tasks:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*list(self._background_tasks), return_exceptions=True),
                    timeout=max(1.0, float(timeout_s)),
                )
            except TimeoutError:
                logger.warning(
                    "Ship runner shutdown timed out; cancelling %d jobs",
                    len(self._background_tasks),
                )
                for task in list(self._background_tasks):
                    task.cancel()
        with self._lock:
            loop_thread = self._loop_thread
            self._loop_thread = None
        if loop_thread is not None:
            loop_thread.loop.call_soon_threadsafe(loop_thread.loop.stop)
            loop_thread.thread.join(timeout=2)

    def _schedule_from_sync(
        self,
        app_id: str,
        func: Callable[..., Any],
        kwargs: dict[str, Any],
    ) -> bool:
        loop_thread = self._ensure_loop_thread()
        fut: Future[None] = asyncio.run_coroutine_threadsafe(
            self._schedule_in_loop(app_id, func, kwargs),
            loop_thread.loop,
        )
        try:
            fut.result(timeout=2.0)
            return True
        except Exception:
            logger.exception("Failed to enqueue ship job for %s", app_id)
            return False

    async def _schedule_in_loop(
        self,
        app_id: str,
        func: Callable[..., Any],
        kwargs: dict[str, Any],
    ) -> None:
        self._schedule_on_loop(asyncio.get_running_loop(), app_id, func, kwargs)

    def _schedule_on_loop(
        self,
        loop: asyncio.AbstractEventLoop,
        app_id: str,
        func: Callable[..., Any],
        kwargs: dict[str, Any],
    ) -> None:
        task = loop.create_task(self.run(app_id, func, **kwargs))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _ensure_loop_thread(self) -> _LoopThread:
        with self._lock:
            current = self._loop_thread
            if current is not None and current.thread.is_alive():
                return current

            loop = asyncio.new_event_loop()

            def _run() -> None:
                asyncio.set_event_loop(loop)
                loop.run_forever()

            thread = threading.Thread(target=_run, name="edgeship-ship-runner", daemon=True)
            thread.start()
            self._loop_thread = _LoopThread(loop=loop, thread=thread)
            return self._loop_thread
