"""
Meeting scheduling server package.

This package provides the timed workflow scheduler, the meeting workflow it
runs, the invitation polling loop and a Flask status API.
"""

from .app import create_app
from .bot import Bot, build_bot
from .listener import InvitationListener
from .models import ScheduledTask
from .scheduler import TaskHandle, WorkflowScheduler, current_task_id
from .task_manager import TaskManager, TaskStage, TaskState
from .workflow import MeetingWorkflow

__all__ = [
    "Bot",
    "InvitationListener",
    "MeetingWorkflow",
    "ScheduledTask",
    "TaskHandle",
    "TaskManager",
    "TaskStage",
    "TaskState",
    "WorkflowScheduler",
    "build_bot",
    "create_app",
    "current_task_id",
]
