from typing import Callable, Optional

from flask import Flask, jsonify
from flask_cors import CORS
from asgiref.wsgi import WsgiToAsgi

from taskgraph.agent.tool_registry import ToolRegistry
from taskgraph.agent.tools import build_default_registry
from taskgraph.api.routes_agent import AgentServices, bp as agent_bp
from taskgraph.config import configure_logging, settings
from taskgraph.llm import create_model_client
from taskgraph.llm.base import ModelClient
from taskgraph.persistence import StorageAdapter, create_storage_adapter


def _default_registry(model_client: Optional[ModelClient]) -> ToolRegistry:
    return build_default_registry(model_client, settings.TOOLS_WORKSPACE_DIR)


def create_app(
    storage: Optional[StorageAdapter] = None,
    model_client_factory: Optional[Callable[[], ModelClient]] = None,
    registry_factory: Optional[Callable[[Optional[ModelClient]], ToolRegistry]] = None,
) -> Flask:
    app = Flask(__name__)
    CORS(app, origins=settings.cors_origins_list)

    app.extensions["taskgraph"] = AgentServices(
        storage=storage or create_storage_adapter(),
        model_client_factory=model_client_factory or create_model_client,
        registry_factory=registry_factory or _default_registry,
    )

    @app.route("/")
    async def home():
        return jsonify({
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running"
        })

    @app.route("/health")
    async def health():
        return jsonify({"status": "healthy", "storage": settings.PERSISTENCE_BACKEND}), 200

    app.register_blueprint(agent_bp)
    return app


configure_logging()
app = create_app()

# WsgiToAsgi wrapper for Uvicorn
asgi_app = WsgiToAsgi(app)
