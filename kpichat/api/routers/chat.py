"""POST /api/chat -- one dialogue turn; plus time options, detail download and session stats."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field

from kpichat.copilot import service
from kpichat.copilot.dialog import TurnResult
from kpichat.copilot.export import XLSX_MEDIA_TYPE, export_rows
from kpichat.copilot.slots import TimeRange
from kpichat.core.logging import get_logger
from kpichat.governance.semantic_loader import ConfigurationNotFound

logger = get_logger(__name__)
router = APIRouter()



class ChatRequest(BaseModel):
    conversation_id: str = Field(..., min_length=1, max_length=128, description="Client-chosen conversation key")
    message: str | None = Field(None, max_length=500, description="Free-text question or answer")
    payload: dict[str, Any] | None = Field(None, description="Button payload, e.g. {'type': 'kpi_category', 'id': 'personnel'}")
    time_override: TimeRange | None = Field(None, description="Explicit time range chosen outside the chat flow")


class ChatResponse(TurnResult):
    conversation_id: str


class TimeOptionItem(BaseModel):
    value: str
    label: str


class TimeOptionsResponse(BaseModel):
    month: list[TimeOptionItem]
    half_fy: list[TimeOptionItem]
    fy: list[TimeOptionItem]


class SessionStatsResponse(BaseModel):
    size: int
    max_sessions: int
    ttl_seconds: float
    active: int
    created: int
    evicted: int



@router.post("/chat", response_model=ChatResponse)
def chat_endpoint(req: ChatRequest):
    """Apply one message / button press to the conversation and return the next prompt."""
    try:
        result = service.handle_turn(
            req.conversation_id,
            message=req.message,
            payload=req.payload,
            time_override=req.time_override,
        )
    except Exception as exc:
        logger.exception("Chat turn failed")
        raise HTTPException(status_code=500, detail=str(exc))

    return ChatResponse(conversation_id=req.conversation_id, **result.model_dump())


@router.get("/time-options", response_model=TimeOptionsResponse)
def time_options_endpoint():
    """Month / half-year / fiscal-year choices present in the data."""
    try:
        options = service.time_options()
    except Exception as exc:
        logger.exception("Loading time options failed")
        raise HTTPException(status_code=500, detail=str(exc))
    return TimeOptionsResponse(**options.to_dict())


@router.get("/detail/download")
def detail_download_endpoint(conversation_id: str = Query("", description="Conversation to export")):
    """Uncapped detail rows for the conversation's selection, as an xlsx file."""
    if not conversation_id:
        raise HTTPException(status_code=400, detail="conversation_id is required")
    try:
        rows = service.detail_rows(conversation_id)
    except service.UnknownConversation:
        raise HTTPException(status_code=400, detail="Unknown conversation")
    except ConfigurationNotFound as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        logger.exception("Detail export failed")
        raise HTTPException(status_code=500, detail=f"Export failed: {exc}")

    return Response(
        content=export_rows(rows),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="detail.xlsx"'},
    )


@router.get("/sessions/stats", response_model=SessionStatsResponse)
def session_stats_endpoint():
    """Return conversation store statistics."""
    return SessionStatsResponse(**service.get_store().stats())


@router.post("/sessions/cleanup")
def session_cleanup_endpoint():
    """Sweep idle conversations now."""
    removed = service.get_store().cleanup_expired()
    return {"removed": removed}
