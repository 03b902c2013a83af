"""
Data models for the scheduling server.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from .task_manager import TaskStage, TaskState


@dataclass
class ScheduledTask:
    """A workflow bound to a trigger time, plus its bookkeeping."""

    id: str
    name: str
    trigger_time: datetime
    workflow: Optional[Callable[..., Any]] = field(default=None, repr=False)
    args: Tuple[Any, ...] = field(default=(), repr=False)
    kwargs: Dict[str, Any] = field(default_factory=dict, repr=False)
    state: TaskState = TaskState.PENDING
    stage: TaskStage = TaskStage.SCHEDULED
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    progress: float = 0.0
    progress_message: str = ""
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.CANCELLED)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view, without the workflow reference."""

        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "name": self.name,
            "trigger_time": iso(self.trigger_time),
            "state": self.state.value,
            "stage": self.stage.value,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "started_at": iso(self.started_at),
            "finished_at": iso(self.finished_at),
            "progress": self.progress,
            "progress_message": self.progress_message,
            "error": self.error,
        }
