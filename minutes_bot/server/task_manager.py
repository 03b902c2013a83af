"""
In-memory state management for scheduled meeting tasks.

This module tracks every scheduled task:
- Each task gets a unique id and a state machine
  (pending -> running -> succeeded/failed, or pending -> cancelled)
- State changes are compare-and-set so a task can enter running only once
- Each task can own a working directory for its recording and minutes
"""

import copy
import shutil
import threading
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple


class TaskState(Enum):
    """Lifecycle state of a scheduled task."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskStage(Enum):
    """Meeting workflow stage a task is in."""

    SCHEDULED = "scheduled"
    DIALING = "dialing"
    DOWNLOADING = "downloading"
    ENROLLING = "enrolling"
    SEGMENTING = "segmenting"
    TRANSCRIBING = "transcribing"
    DISTRIBUTING = "distributing"
    COMPLETE = "complete"
    FAILED = "failed"


TRANSITIONS = {
    TaskState.PENDING: {TaskState.RUNNING, TaskState.CANCELLED, TaskState.FAILED},
    TaskState.RUNNING: {TaskState.SUCCEEDED, TaskState.FAILED},
}


class TaskManager:
    """Tracks scheduled tasks in memory."""

    def __init__(self, tasks_dir: str = "server_tasks"):
        """
        Initialize the task manager.

        Args:
            tasks_dir: Directory under which per-task working directories are created
        """
        self.tasks_dir = Path(tasks_dir)
        self._tasks: Dict[str, "ScheduledTask"] = {}
        self._lock = threading.Lock()

    def create_task(
        self,
        name: str,
        trigger_time: datetime,
        workflow: Optional[Callable[..., Any]] = None,
        args: Tuple[Any, ...] = (),
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Create a new pending task.

        Returns:
            Task ID (UUID string)
        """
        from .models import ScheduledTask

        task_id = str(uuid.uuid4())
        task = ScheduledTask(
            id=task_id,
            name=name,
            trigger_time=trigger_time,
            workflow=workflow,
            args=tuple(args),
            kwargs=dict(kwargs or {}),
        )
        with self._lock:
            self._tasks[task_id] = task
        return task_id

    def task_exists(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._tasks

    def get_task(self, task_id: str) -> Optional["ScheduledTask"]:
        """Return a snapshot of the task, or None."""
        with self._lock:
            task = self._tasks.get(task_id)
            return copy.copy(task) if task else None

    def get_state(self, task_id: str) -> Optional[TaskState]:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.state if task else None

    def transition(self, task_id: str, expected: TaskState, new_state: TaskState, error: Optional[str] = None) -> bool:
        """
        Move a task from ``expected`` to ``new_state`` atomically.

        Returns:
            True if the task was in ``expected`` and the transition is allowed, False otherwise
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.state != expected:
                return False
            if new_state not in TRANSITIONS.get(expected, set()):
                return False

            now = datetime.now()
            task.state = new_state
            task.updated_at = now
            if new_state == TaskState.RUNNING:
                task.started_at = now
            elif new_state in (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.CANCELLED):
                task.finished_at = now
            if new_state == TaskState.SUCCEEDED:
                task.stage = TaskStage.COMPLETE
                task.progress = 100.0
            elif new_state == TaskState.FAILED:
                task.stage = TaskStage.FAILED
            if error is not None and not task.error:
                task.error = error
            return True

    def save_error(self, task_id: str, error_message: str) -> None:
        """Record an error and mark a non-terminal task as failed."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return
            task.error = error_message
            task.updated_at = datetime.now()
            if task.state in (TaskState.PENDING, TaskState.RUNNING):
                task.state = TaskState.FAILED
                task.stage = TaskStage.FAILED
                task.finished_at = task.updated_at

    def record_error(self, task_id: str, error_message: str) -> None:
        """Attach an error message without changing the task state."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task:
                task.error = error_message
                task.updated_at = datetime.now()

    def update_stage(self, task_id: str, stage: TaskStage) -> None:
        """Update the workflow stage."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task:
                task.stage = stage
                task.updated_at = datetime.now()

    def update_progress(self, task_id: str, progress: float, message: str = "") -> None:
        """Update task progress."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task:
                task.progress = progress
                task.progress_message = message
                task.updated_at = datetime.now()

    def get_task_dir(self, task_id: str) -> Path:
        """Get (and create) the working directory for a task."""
        if not self.task_exists(task_id):
            raise ValueError(f"Task {task_id} does not exist")

        task_dir = self.tasks_dir / task_id
        task_dir.mkdir(parents=True, exist_ok=True)
        return task_dir

    def list_tasks(self, state_filter: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        """
        List tasks.

        Args:
            state_filter: Filter by state (pending, running, succeeded, failed, cancelled)
            limit: Maximum number of tasks to return

        Returns:
            List of task dictionaries sorted by trigger time (soonest first)
        """
        with self._lock:
            tasks = [t for t in self._tasks.values() if not state_filter or t.state.value == state_filter]
            tasks.sort(key=lambda t: (t.trigger_time.timestamp(), t.created_at))
            return [t.to_dict() for t in tasks[:limit]]

    def count_by_state(self) -> Dict[str, int]:
        with self._lock:
            counts = {state.value: 0 for state in TaskState}
            for task in self._tasks.values():
                counts[task.state.value] += 1
            return counts

    def delete_task(self, task_id: str) -> bool:
        """
        Forget a finished task and remove its working directory.

        Returns:
            True if the task was deleted, False if it does not exist or has not finished
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or not task.is_terminal:
                return False
            del self._tasks[task_id]

        task_dir = self.tasks_dir / task_id
        if task_dir.exists():
            shutil.rmtree(task_dir)
        return True
