"""Linear agent server — FastAPI application that ties all components together.

Startup:
1. Load config (YAML + env)
2. Start the Linear API client
3. Build the controller (registries, resumption store, runner)
4. Wire the webhook endpoint and begin accepting deliveries

Shutdown:
1. Cancel in-flight runs and background tasks
2. Close the Linear API client
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from linear_agent import __version__
from linear_agent.agent import ClaudeAgent
from linear_agent.config import AgentConfig, load_config
from linear_agent.controller import AgentController
from linear_agent.linear_client import LinearClient
from linear_agent.webhook import configure as configure_webhook
from linear_agent.webhook import router as webhook_router

logger = logging.getLogger(__name__)


class AgentServer:
    """Encapsulates all server components and lifecycle."""

    def __init__(
        self,
        config: AgentConfig | None = None,
        *,
        controller: AgentController | None = None,
    ):
        self.config = config or (controller.config if controller else None)
        self.controller = controller
        self.linear: LinearClient | None = None
        if controller is not None:
            configure_webhook(controller, controller.config.webhook_secret)

    async def start(self) -> None:
        """Initialize components not supplied by the caller."""
        if self.config is None:
            self.config = load_config()

        if self.controller is None:
            self.linear = LinearClient(
                access_token=self.config.access_token,
                webhook_secret=self.config.webhook_secret,
                api_url=self.config.api_url,
                timeout=self.config.request_timeout,
            )
            await self.linear.start()
            self.controller = AgentController(
                self.config, self.linear, ClaudeAgent(self.config.agent)
            )
            configure_webhook(self.controller, self.config.webhook_secret)

        logger.info(
            "Linear agent server started (environment=%s, agent=%s)",
            self.config.environment,
            self.config.agent_name,
        )

    async def stop(self) -> None:
        """Graceful shutdown — stop all components."""
        logger.info("Linear agent server shutting down")
        if self.controller:
            await self.controller.shutdown()
        if self.linear:
            await self.linear.close()
        logger.info("Linear agent server stopped")


_server = AgentServer()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan — startup and shutdown."""
    await _server.start()
    yield
    await _server.stop()


def create_app(
    config: AgentConfig | None = None,
    *,
    controller: AgentController | None = None,
) -> FastAPI:
    """Create the FastAPI application."""
    global _server
    _server = AgentServer(config, controller=controller)

    app = FastAPI(
        title="Linear Agent",
        version=__version__,
        description="Runs Claude on Linear agent sessions",
        lifespan=lifespan,
    )

    app.include_router(webhook_router)

    @app.get("/")
    async def root():
        """Liveness probe."""
        agent_name = _server.config.agent_name if _server.config else "Claude"
        return {"status": "ok", "agent": agent_name}

    @app.get("/health")
    async def health():
        """Health check endpoint with operational counters."""
        controller = _server.controller
        return {
            "status": "ok",
            "environment": _server.config.environment if _server.config else None,
            "active_runs": controller.active_runs if controller else 0,
            "tracked_keys": len(controller.registry) if controller else 0,
            "background_tasks": controller.background_tasks if controller else 0,
        }

    return app
