"""Sprintwise entry point.

Wires the components and starts the server:
  Settings -> LLMClient + RemoteToolClient -> ToolExecutor -> Gate ->
  Classifier + Reviewer -> AgentRunner -> App -> Uvicorn

Components are constructed up front; their HTTP clients are opened and
closed by the Starlette lifespan on uvicorn's event loop.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette

from sprintwise.api.gate import WriteActionGate
from sprintwise.api.llm import LLMClient
from sprintwise.api.remote import RemoteToolClient
from sprintwise.api.runner import AgentRunner
from sprintwise.api.tools import ToolExecutor, register_local_tools
from sprintwise.cognitive.continuity import ContinuityClassifier
from sprintwise.config import Settings
from sprintwise.handlers.reviewer import AnswerReviewer
from sprintwise.session import InMemorySessionStore

logger = logging.getLogger(__name__)


def create_components(settings: Settings) -> dict:
    """Construct all components in dependency order. No I/O."""
    llm = LLMClient(settings)
    remote = RemoteToolClient(settings)

    executor = ToolExecutor(remote)
    register_local_tools(executor)

    reviewer = AnswerReviewer(llm)
    gate = WriteActionGate(executor, auditor=reviewer)
    classifier = ContinuityClassifier(llm)

    runner = AgentRunner(
        llm=llm,
        executor=executor,
        classifier=classifier,
        gate=gate,
        settings=settings,
        reviewer=reviewer,
    )
    return {
        "llm": llm,
        "remote": remote,
        "executor": executor,
        "gate": gate,
        "reviewer": reviewer,
        "runner": runner,
        "sessions": InMemorySessionStore(settings.max_sessions),
    }


async def start_components(components: dict) -> None:
    await components["llm"].start()
    await components["remote"].start()


async def shutdown_components(components: dict) -> None:
    """Close HTTP clients in reverse order."""
    logger.info("Shutting down Sprintwise...")
    remote = components.get("remote")
    if remote:
        await remote.close()
    llm = components.get("llm")
    if llm:
        await llm.close()
    logger.info("Sprintwise shutdown complete.")


def build_app(settings: Settings, components: dict | None = None) -> Starlette:
    components = components if components is not None else create_components(settings)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await start_components(components)
        app.state.components = components
        logger.info(
            "Sprintwise started: model=%s, max_tool_iterations=%d",
            settings.model,
            settings.max_tool_iterations,
        )
        yield
        await shutdown_components(components)

    from sprintwise.api.rest import create_app

    return create_app(
        runner=components["runner"],
        gate=components["gate"],
        remote=components["remote"],
        sessions=components["sessions"],
        settings=settings,
        lifespan=lifespan,
    )


def main() -> None:
    """Entry point -- parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting Sprintwise")
    logger.info("LLM: %s (%s)", settings.llm_base_url, settings.model)
    logger.info("Tool service: %s", settings.tool_service_url)
    if not settings.tool_service_bypass_secret:
        logger.debug("No tool service bypass secret set")

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
