"""
Agent API routes

Endpoints:
- GET    /agent/tools                      List registered tools
- POST   /agent/tasks                      Run a task to completion
- GET    /agent/tasks                      List stored tasks
- GET    /agent/tasks/<id>                 Get a stored task
- DELETE /agent/tasks/<id>                 Delete a task and its checkpoints
- GET    /agent/tasks/<id>/history         Transitions, results, checkpoint trail
- GET    /agent/tasks/<id>/checkpoints     List checkpoints
- POST   /agent/tasks/<id>/resume          Resume a failed or interrupted task
- GET    /agent/stats                      Storage statistics

Each request gets its own agent; requests share only the storage adapter.
"""
from dataclasses import dataclass
from typing import Callable, Optional
import json
import logging

from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from taskgraph.agent.events import AgentEvent, EventType
from taskgraph.agent.tool_registry import ToolRegistry
from taskgraph.api.models import ConfirmationPolicy, ResumeTaskRequest, RunTaskRequest
from taskgraph.config import ExecutorConfig, PlannerConfig
from taskgraph.errors import PersistenceError
from taskgraph.llm.base import ModelClient
from taskgraph.persistence import PersistenceManager, PersistentAgent, StorageAdapter, TaskFilter

logger = logging.getLogger(__name__)

bp = Blueprint("agent", __name__, url_prefix="/agent")


@dataclass
class AgentServices:
    """Shared, agent-independent collaborators stored on the Flask app"""
    storage: StorageAdapter
    model_client_factory: Callable[[], ModelClient]
    registry_factory: Callable[[Optional[ModelClient]], ToolRegistry]
    connected: bool = False

    async def ensure_connected(self) -> None:
        if not self.connected:
            await self.storage.connect()
            self.connected = True

    def model_client(self) -> ModelClient:
        # SDK clients are bound to the event loop that created them
        return self.model_client_factory()


def _services() -> AgentServices:
    return current_app.extensions["taskgraph"]


async def _manager() -> PersistenceManager:
    services = _services()
    await services.ensure_connected()
    return PersistenceManager.from_settings(services.storage)


async def _new_agent(policy: ConfirmationPolicy) -> PersistentAgent:
    services = _services()
    await services.ensure_connected()
    client = services.model_client()
    agent = PersistentAgent(
        client,
        services.registry_factory(client),
        PersistenceManager.from_settings(services.storage),
        planner_config=PlannerConfig.from_settings(),
        executor_config=ExecutorConfig.from_settings(),
    )

    async def answer(event: AgentEvent) -> None:
        step_id = event.data["step_id"]
        approved = policy.decide(step_id)
        logger.info(f"Confirmation for {step_id}: {'approved' if approved else 'rejected'}")
        await agent.confirm(approved)

    agent.events.subscribe(EventType.CONFIRMATION_REQUESTED, answer)
    return agent


@bp.errorhandler(ValidationError)
def _validation_error(e: ValidationError):
    return jsonify({"detail": json.loads(e.json(include_url=False))}), 400


@bp.errorhandler(ValueError)
def _configuration_error(e: ValueError):
    return jsonify({"detail": str(e)}), 503


@bp.route("/tools", methods=["GET"])
async def list_tools():
    """List all tools an agent would get"""
    registry = _services().registry_factory(_services().model_client())
    tools = registry.list_tools()
    return jsonify({"tools": tools, "count": len(tools)})


@bp.route("/tasks", methods=["POST"])
async def run_task():
    """
    Plan and execute a task.

    Body: {"prompt": "...", "context": {...}, "confirmations": {"step_2": true}, "auto_confirm": false}
    Returns: the agent response with plan, per-step results and output
    """
    body = RunTaskRequest.model_validate(request.get_json(silent=True) or {})
    agent = await _new_agent(body)
    response = await agent.process(body.prompt, body.context)
    return jsonify(response.to_dict())


@bp.route("/tasks", methods=["GET"])
async def list_tasks():
    """Query: ?status=failed,cancelled&limit=20&offset=0&order_by=updated_at"""
    args = request.args
    params = {k: args[k] for k in ("limit", "offset", "order_by", "descending") if k in args}
    if args.get("status"):
        params["status"] = [s.strip() for s in args["status"].split(",") if s.strip()]
    task_filter = TaskFilter.model_validate(params)

    manager = await _manager()
    tasks = await manager.list_tasks(task_filter)
    return jsonify([t.model_dump(mode="json") for t in tasks])


@bp.route("/tasks/<task_id>", methods=["GET"])
async def get_task(task_id):
    manager = await _manager()
    task = await manager.load_task(task_id)
    if not task:
        return jsonify({"detail": "Task not found"}), 404
    return jsonify(task.model_dump(mode="json"))


@bp.route("/tasks/<task_id>", methods=["DELETE"])
async def delete_task(task_id):
    manager = await _manager()
    if not await manager.delete_task(task_id):
        return jsonify({"detail": "Task not found"}), 404
    return jsonify({"deleted": task_id})


@bp.route("/tasks/<task_id>/history", methods=["GET"])
async def get_history(task_id):
    manager = await _manager()
    history = await manager.get_history(task_id)
    if history is None:
        return jsonify({"detail": "Task not found"}), 404
    return jsonify(history)


@bp.route("/tasks/<task_id>/checkpoints", methods=["GET"])
async def list_checkpoints(task_id):
    manager = await _manager()
    checkpoints = await manager.list_checkpoints(task_id)
    return jsonify([c.model_dump(mode="json") for c in checkpoints])


@bp.route("/tasks/<task_id>/resume", methods=["POST"])
async def resume_task(task_id):
    body = ResumeTaskRequest.model_validate(request.get_json(silent=True) or {})
    manager = await _manager()
    if not await manager.load_task(task_id):
        return jsonify({"detail": "Task not found"}), 404

    agent = await _new_agent(body)
    try:
        response = await agent.resume_task(task_id)
    except PersistenceError as e:
        return jsonify({"detail": str(e)}), 409
    return jsonify(response.to_dict())


@bp.route("/stats", methods=["GET"])
async def stats():
    manager = await _manager()
    statistics = await manager.get_statistics()
    return jsonify(statistics.model_dump())
