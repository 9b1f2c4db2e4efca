import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from frontdesk.config import Settings, configure_logging, load_settings, validate_config
from frontdesk.intent import route_utterance
from frontdesk.session import CallSession
from frontdesk.session_manager import SessionRegistry, run_cleanup_loop

logger = logging.getLogger(__name__)


class RouteRequest(BaseModel):
    text: str


def _session_view(session: CallSession) -> dict:
    return {
        "call_id": session.call_id,
        "tenant_id": session.tenant_id,
        "caller_phone": session.caller_phone,
        "current_intent": session.current_intent,
        "tools_enabled": session.tools_enabled,
        "is_playing": session.is_playing,
        "is_speaking": session.is_speaking,
        "interrupt_requested": session.interrupt_requested,
        "message_count": len(session.conversation_history),
        "start_time": session.start_time,
        "last_activity_time": session.last_activity_time,
    }


def create_app(registry: SessionRegistry | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the monitoring app around a session registry.

    The lifespan runs the stale-session sweep for as long as the app is up.
    """
    settings = settings or load_settings()
    registry = registry or SessionRegistry(history_limit=settings.history_limit)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(
            run_cleanup_loop(
                registry,
                interval_s=settings.cleanup_interval_s,
                max_age_minutes=settings.session_max_age_minutes,
            )
        )
        logger.info(
            f"Session sweep every {settings.cleanup_interval_s}s "
            f"(max age {settings.session_max_age_minutes} min)"
        )
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(title="Frontdesk Voice Agent", lifespan=lifespan)
    app.state.registry = registry
    app.state.settings = settings

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.get("/sessions")
    async def list_sessions():
        sessions = registry.get_all_sessions()
        return {
            "count": len(sessions),
            "sessions": [_session_view(s) for s in sessions],
        }

    @app.get("/sessions/{call_id}")
    async def get_session(call_id: str):
        session = registry.get_session(call_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"No active session for {call_id}")
        return _session_view(session)

    @app.post("/route")
    async def route(request: RouteRequest):
        return route_utterance(request.text).to_dict()

    return app


load_dotenv()
validate_config()
configure_logging(load_settings().log_level)

app = create_app()


if __name__ == "__main__":
    uvicorn.run("frontdesk.server:app", host="0.0.0.0", port=app.state.settings.port)
