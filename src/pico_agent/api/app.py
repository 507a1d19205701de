"""
FastAPI application factory.

Exposes the agent loop over HTTP: post a message to a session and get the
final answer back, plus read/delete access to stored sessions.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from .. import __version__
from ..agent import AgentLoop
from ..config import Settings, get_settings
from ..errors import PersistenceError, ProviderError, SessionDataError

logger = structlog.get_logger()


class MessageRequest(BaseModel):
    content: str = Field(min_length=1)


class MessageReply(BaseModel):
    session_key: str
    content: str


def get_agent(request: Request) -> AgentLoop:
    return request.app.state.agent


def create_app(settings: Settings | None = None, agent: AgentLoop | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        if getattr(app.state, "agent", None) is None:
            app.state.agent = AgentLoop.from_settings(settings)
        logger.info("Agent ready", tools=app.state.agent.tools.list_tools())

        yield

        await app.state.agent.shutdown()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        description="Conversational agent runtime",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.agent = agent

    @app.get("/api/health")
    async def health_check(agent: AgentLoop = Depends(get_agent)) -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "provider": agent.provider.provider_name,
            "tools": agent.tools.list_tools(),
            "persistent_sessions": agent.sessions.persistent,
        }

    @app.get("/api/sessions")
    async def list_sessions(agent: AgentLoop = Depends(get_agent)) -> dict[str, Any]:
        try:
            keys = await agent.sessions.list()
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"sessions": keys}

    @app.get("/api/sessions/{session_key}")
    async def get_session(session_key: str, agent: AgentLoop = Depends(get_agent)) -> dict[str, Any]:
        try:
            session = await agent.sessions.get(session_key)
        except SessionDataError as e:
            raise HTTPException(status_code=500, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session '{session_key}' not found")
        return session.to_dict()

    @app.delete("/api/sessions/{session_key}")
    async def delete_session(session_key: str, agent: AgentLoop = Depends(get_agent)) -> dict[str, Any]:
        if not await agent.sessions.exists(session_key):
            raise HTTPException(status_code=404, detail=f"Session '{session_key}' not found")
        try:
            await agent.sessions.delete(session_key)
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"success": True}

    @app.post("/api/sessions/{session_key}/messages", response_model=MessageReply)
    async def post_message(
        session_key: str,
        body: MessageRequest,
        agent: AgentLoop = Depends(get_agent),
    ) -> MessageReply:
        try:
            answer = await agent.process(session_key, body.content)
        except ProviderError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except SessionDataError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return MessageReply(session_key=session_key, content=answer)

    return app
