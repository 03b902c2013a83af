"""
Flask status API for the minutes bot.

This server provides endpoints for operators to:
- Check that the scheduler and invitation listener are alive
- List scheduled meetings and their states
- Inspect a single task, including its stage, progress and error
- Cancel a meeting that has not started yet
"""

from datetime import datetime

from flask import Flask, jsonify, request
from flask_cors import CORS

from .scheduler import WorkflowScheduler
from .task_manager import TaskManager, TaskState


def create_app(task_manager: TaskManager, scheduler: WorkflowScheduler, listener=None) -> Flask:
    """
    Create the status API.

    Args:
        task_manager: TaskManager holding task records
        scheduler: Scheduler used to cancel pending tasks
        listener: Optional InvitationListener reported by /health
    """
    app = Flask(__name__)
    CORS(app)

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint."""
        counts = task_manager.count_by_state()
        return jsonify(
            {
                "status": "healthy",
                "timestamp": datetime.now().isoformat(),
                "listener_running": bool(listener and listener.is_running),
                "pending_tasks": counts[TaskState.PENDING.value],
                "running_tasks": counts[TaskState.RUNNING.value],
                "failed_tasks": counts[TaskState.FAILED.value],
            }
        )

    @app.route("/tasks", methods=["GET"])
    def list_tasks():
        """
        List scheduled tasks.

        Query parameters:
        - status: Filter by state (pending, running, succeeded, failed, cancelled)
        - limit: Limit number of results (default: 100)
        - offset: Offset for pagination (default: 0)
        """
        status_filter = request.args.get("status")
        try:
            limit = int(request.args.get("limit", 100))
            offset = int(request.args.get("offset", 0))
        except ValueError:
            return jsonify({"error": "limit and offset must be integers"}), 400

        if status_filter and status_filter not in {s.value for s in TaskState}:
            return jsonify({"error": f"Unknown status: {status_filter}"}), 400

        tasks = task_manager.list_tasks(state_filter=status_filter, limit=limit + offset)
        total = len(tasks)
        tasks = tasks[offset : offset + limit]

        return jsonify({"tasks": tasks, "total": total, "limit": limit, "offset": offset})

    @app.route("/tasks/<task_id>", methods=["GET"])
    def get_task(task_id: str):
        """Get a single task's state, stage, progress and error."""
        task = task_manager.get_task(task_id)
        if task is None:
            return jsonify({"error": "Task not found"}), 404
        return jsonify(task.to_dict())

    @app.route("/tasks/<task_id>", methods=["DELETE"])
    def cancel_task(task_id: str):
        """Cancel a task that has not started yet."""
        if not task_manager.task_exists(task_id):
            return jsonify({"error": "Task not found"}), 404

        if scheduler.cancel(task_id):
            return jsonify({"message": "Task cancelled", "task_id": task_id})
        return jsonify({"error": "Task has already started"}), 409

    return app
