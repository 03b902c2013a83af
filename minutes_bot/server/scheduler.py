"""
Timed workflow scheduler.

Each scheduled workflow gets its own thread which sleeps until the trigger
time and then runs the workflow exactly once. Tasks never wait behind each
other, so a long meeting cannot delay the next one.

Callers get a ``TaskHandle`` back. The handle can be cancelled while the task
is still pending, waited on with ``result()``, awaited from asyncio code, or
observed with done callbacks.
"""

import asyncio
import logging
import threading
from concurrent.futures import Future, wait
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import SchedulerInternalError
from .task_manager import TaskManager, TaskState

logger = logging.getLogger(__name__)

_current = threading.local()


def current_task_id() -> Optional[str]:
    """Return the id of the scheduled task running on the calling thread, if any."""
    return getattr(_current, "task_id", None)


def _as_aware(moment: datetime) -> datetime:
    """Interpret naive datetimes as local time."""
    return moment if moment.tzinfo is not None else moment.astimezone()


class TaskHandle:
    """Cancellable, awaitable handle for one scheduled task."""

    def __init__(self, task_id: str, scheduler: "WorkflowScheduler"):
        self.task_id = task_id
        self._scheduler = scheduler
        self._future: Future = Future()
        self._wakeup = threading.Event()

    @property
    def state(self) -> Optional[TaskState]:
        return self._scheduler.task_manager.get_state(self.task_id)

    def cancel(self) -> bool:
        """Drop the task if it has not started. Returns True if it was cancelled."""
        return self._scheduler.cancel(self.task_id)

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> Any:
        """
        Wait for the workflow and return its value.

        Raises:
            Exception: Whatever the workflow raised
            concurrent.futures.CancelledError: If the task was cancelled
            TimeoutError: If the task did not finish within ``timeout``
        """
        return self._future.result(timeout)

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        return self._future.exception(timeout)

    def add_done_callback(self, fn: Callable[["TaskHandle"], Any]) -> None:
        self._future.add_done_callback(lambda _: fn(self))

    def __await__(self):
        return asyncio.wrap_future(self._future).__await__()

    def __repr__(self) -> str:
        return f"TaskHandle({self.task_id!r}, state={self.state})"


class WorkflowScheduler:
    """Runs workflows once, at or after their trigger time, each on its own thread."""

    def __init__(
        self,
        task_manager: Optional[TaskManager] = None,
        clock: Optional[Callable[[], datetime]] = None,
        on_internal_error: Optional[Callable[[SchedulerInternalError], Any]] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            task_manager: TaskManager recording task state (a private one is created if omitted)
            clock: Returns the current time; defaults to ``datetime.now(timezone.utc)``
            on_internal_error: Operator callback for tasks that could not start
        """
        self.task_manager = task_manager or TaskManager()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.on_internal_error = on_internal_error

        self._handles: Dict[str, TaskHandle] = {}
        self._lock = threading.Lock()

    def delay_until(self, trigger_time: datetime) -> float:
        """Seconds until ``trigger_time``, clamped to zero when already due."""
        delta = (_as_aware(trigger_time) - _as_aware(self.clock())).total_seconds()
        return max(0.0, delta)

    def schedule(
        self,
        workflow: Callable[..., Any],
        trigger_time: datetime,
        args: Tuple[Any, ...] = (),
        kwargs: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
    ) -> TaskHandle:
        """
        Schedule a workflow to run once at ``trigger_time``.

        The workflow succeeds when it returns anything but ``False`` and fails
        when it returns ``False`` or raises.

        Args:
            workflow: Callable to run
            trigger_time: Wall-clock time at or after which to run it
            args: Positional arguments for the workflow
            kwargs: Keyword arguments for the workflow
            name: Display name for logs and the status API

        Returns:
            TaskHandle for the new task
        """
        name = name or getattr(workflow, "__name__", type(workflow).__name__)
        task_id = self.task_manager.create_task(name, trigger_time, workflow=workflow, args=args, kwargs=kwargs)
        handle = TaskHandle(task_id, self)

        with self._lock:
            self._handles[task_id] = handle
        handle.add_done_callback(self._forget)

        delay = self.delay_until(trigger_time)
        thread = threading.Thread(target=self._run_task, args=(handle,), name=f"task-{task_id[:8]}", daemon=True)
        try:
            thread.start()
        except RuntimeError as e:
            self._report_internal_error(handle, SchedulerInternalError(f"Could not start task {name}: {e}", task_id))
            return handle

        logger.info(f"Task {task_id} ({name}) scheduled for {trigger_time.isoformat()} (in {delay:.1f}s)")
        return handle

    def cancel(self, task_id: str) -> bool:
        """
        Cancel a pending task.

        Returns:
            True if the task was pending and is now cancelled, False otherwise
        """
        with self._lock:
            handle = self._handles.get(task_id)
        if handle is None:
            return False

        if not handle._future.cancel():
            return False

        self.task_manager.transition(task_id, TaskState.PENDING, TaskState.CANCELLED)
        handle._wakeup.set()
        logger.info(f"Task {task_id} cancelled")
        return True

    def pending(self) -> List[str]:
        """Ids of tasks that have not started yet."""
        with self._lock:
            task_ids = list(self._handles)
        return [t for t in task_ids if self.task_manager.get_state(t) == TaskState.PENDING]

    def shutdown(self, wait_for_running: bool = False, timeout: Optional[float] = None) -> None:
        """Cancel all pending tasks and optionally wait for running ones."""
        for task_id in self.pending():
            self.cancel(task_id)

        if wait_for_running:
            with self._lock:
                futures = [h._future for h in self._handles.values()]
            wait(futures, timeout=timeout)

        logger.info("Scheduler stopped")

    def _run_task(self, handle: TaskHandle) -> None:
        task_id = handle.task_id
        task = self.task_manager.get_task(task_id)
        if task is None:
            self._report_internal_error(handle, SchedulerInternalError(f"Task {task_id} is not registered", task_id))
            return

        # Woken early only by cancel()
        if handle._wakeup.wait(self.delay_until(task.trigger_time)):
            return

        if not handle._future.set_running_or_notify_cancel():
            return

        if not self.task_manager.transition(task_id, TaskState.PENDING, TaskState.RUNNING):
            state = self.task_manager.get_state(task_id)
            self._report_internal_error(
                handle, SchedulerInternalError(f"Task {task_id} was {state} when its trigger fired", task_id)
            )
            return

        logger.info(f"Task {task_id} ({task.name}) started")
        _current.task_id = task_id
        try:
            result = task.workflow(*task.args, **task.kwargs)
        except Exception as e:
            logger.exception(f"Task {task_id} ({task.name}) failed with error: {e}")
            self.task_manager.transition(task_id, TaskState.RUNNING, TaskState.FAILED, error=str(e))
            handle._future.set_exception(e)
            return
        finally:
            _current.task_id = None

        if result is False:
            logger.error(f"Task {task_id} ({task.name}) reported failure")
            self.task_manager.transition(
                task_id, TaskState.RUNNING, TaskState.FAILED, error="Workflow reported failure"
            )
        else:
            logger.info(f"Task {task_id} ({task.name}) completed successfully")
            self.task_manager.transition(task_id, TaskState.RUNNING, TaskState.SUCCEEDED)
        handle._future.set_result(result)

    def _report_internal_error(self, handle: TaskHandle, error: SchedulerInternalError) -> None:
        """Surface a task that never reached running to the log, the task record and the operator."""
        logger.error(str(error))
        self.task_manager.save_error(handle.task_id, str(error))

        future = handle._future
        if future.running() or future.set_running_or_notify_cancel():
            future.set_exception(error)

        if self.on_internal_error is not None:
            try:
                self.on_internal_error(error)
            except Exception:
                logger.exception("Operator callback failed while reporting a scheduler error")

    def _forget(self, handle: TaskHandle) -> None:
        with self._lock:
            self._handles.pop(handle.task_id, None)
