"""
Administrative commands: reload and show configuration.

Available both as plain functions (for a host CLI) and as a FastAPI router
that can be mounted into an admin application:

    app.include_router(build_router(engine), prefix="/dfspeech")
"""

from typing import List

from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from dfspeech.config.loaders import resolve_config_path
from dfspeech.engine import SpeechEngine
from dfspeech.logging_config import get_logger

logger = get_logger(__name__)


class ReloadResponse(BaseModel):
    success: bool
    version: int
    message: str


def _yes_no(value: bool) -> str:
    return "Yes" if value else "No"


def _mask(secret: str) -> str:
    if not secret:
        return ""
    if len(secret) > 4:
        return f"{secret[:2]}***REDACTED***"
    return "***REDACTED***"


def reload_configuration(engine: SpeechEngine) -> bool:
    logger.info("Reloading configuration", path=resolve_config_path(engine.config_store.path))
    return engine.reload()


def show_configuration(engine: SpeechEngine) -> str:
    """Render the current snapshot in the configuration file's section layout."""
    config = engine.config()
    lines: List[str] = [
        "[general]",
        f"service_key = {_mask(config.service_key)}",
        f"endpoint = {config.endpoint}",
        f"vad_voice_threshold = {config.vad_voice_threshold}",
        f"vad_voice_minimum_duration = {config.vad_voice_minimum_duration}",
        f"vad_silence_minimum_duration = {config.vad_silence_minimum_duration}",
        f"call_log_location = {config.call_log_location}",
        f"enable_call_logs = {_yes_no(config.enable_call_logs)}",
        f"enable_preendpointer_recordings = {_yes_no(config.enable_preendpointer_recordings)}",
        f"enable_postendpointer_recordings = {_yes_no(config.enable_postendpointer_recordings)}",
    ]
    for agent in config.agents:
        lines += [
            "",
            f"[{agent.name}]",
            f"project_id = {agent.project_id}",
            f"endpoint = {agent.endpoint}",
            f"service_key = {_mask(agent.service_key)}",
        ]
    return "\n".join(lines) + "\n"


def build_router(engine: SpeechEngine) -> APIRouter:
    router = APIRouter()

    @router.get("/config", response_class=PlainTextResponse)
    async def get_config():
        return show_configuration(engine)

    @router.post("/config/reload", response_model=ReloadResponse)
    async def post_reload():
        if not reload_configuration(engine):
            raise HTTPException(
                status_code=500,
                detail="Reload failed, previous configuration remains in effect",
            )
        version = engine.config().version
        return ReloadResponse(success=True, version=version, message="Reload complete")

    return router
