"""Metered creator tools: copy, hashtags, ideas, captions, consultant and transcription."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, ConfigDict, Field

from config import settings
from routers.auth_scope import get_optional_principal
from routers.guard import get_access_guard, get_ledger, raise_for_decision
from routers.rate_limit import rate_limit
from services.access_guard import AccessGuard, Principal
from services.content_generation import (
    TRANSCRIPTION_MIME_TYPES,
    ContentProviderError,
    generate_content,
    transcribe_audio,
)
from services.ledger import CreditLedger

router = APIRouter()
logger = logging.getLogger(__name__)


class CopywritingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    product: str = Field(min_length=1, max_length=500)
    audience: Optional[str] = Field(default=None, max_length=300)
    tone: Optional[str] = Field(default=None, max_length=60)
    platform: Optional[str] = Field(default=None, max_length=60)
    language: str = Field(default="english", max_length=40)


class HashtagsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    topic: str = Field(min_length=1, max_length=300)
    quantity: int = Field(default=15, ge=5, le=30)
    type: Literal["general", "trending", "niche", "branded", "engagement"] = "general"
    language: str = Field(default="english", max_length=40)


class ContentIdeasRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    topic: str = Field(min_length=1, max_length=300)
    quantity: int = Field(default=5, ge=1, le=20)
    platform: Optional[str] = Field(default=None, max_length=60)


class CaptionsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    topic: str = Field(min_length=1, max_length=300)
    quantity: int = Field(default=3, ge=1, le=10)
    tone: Optional[str] = Field(default=None, max_length=60)


class ConsultantTurn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: str = Field(min_length=1, max_length=4000)
    is_user: bool


class ConsultantRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str = Field(min_length=1, max_length=4000)
    history: List[ConsultantTurn] = Field(default_factory=list, max_length=20)
    expertise_area: Optional[str] = Field(default=None, max_length=120)


async def _run_metered(
    feature_id: str,
    principal: Optional[Principal],
    guard: AccessGuard,
    ledger: CreditLedger,
    produce: Callable[[], Awaitable[Dict[str, Any]]],
) -> Dict[str, Any]:
    decision = await guard.authorize(principal, feature_id)
    raise_for_decision(decision)

    try:
        result = await produce()
    except ContentProviderError as exc:
        if decision.charged and settings.REFUND_ON_PROVIDER_FAILURE:
            await ledger.grant(
                principal.account_id,
                decision.charged,
                f"Refund: {feature_id} generation failed",
                source="refund",
            )
            logger.info("content_refund user=%s feature=%s credits=%s", principal.account_id, feature_id, decision.charged)
        raise HTTPException(status_code=502, detail="Content provider unavailable. Try again later.") from exc

    return {"feature_id": feature_id, **result, "credits": decision.as_dict()}


async def _run_generation(
    feature_id: str,
    request: BaseModel,
    principal: Optional[Principal],
    guard: AccessGuard,
    ledger: CreditLedger,
) -> Dict[str, Any]:
    payload = request.model_dump(exclude_none=True)
    return await _run_metered(feature_id, principal, guard, ledger, lambda: generate_content(feature_id, payload))


@router.post("/copywriting")
async def copywriting(
    request: CopywritingRequest,
    _rate_limit: None = Depends(rate_limit("content_copywriting", limit=60, window_seconds=3600)),
    principal: Optional[Principal] = Depends(get_optional_principal),
    guard: AccessGuard = Depends(get_access_guard),
    ledger: CreditLedger = Depends(get_ledger),
):
    return await _run_generation("copywriting", request, principal, guard, ledger)


@router.post("/hashtags")
async def hashtags(
    request: HashtagsRequest,
    _rate_limit: None = Depends(rate_limit("content_hashtags", limit=60, window_seconds=3600)),
    principal: Optional[Principal] = Depends(get_optional_principal),
    guard: AccessGuard = Depends(get_access_guard),
    ledger: CreditLedger = Depends(get_ledger),
):
    return await _run_generation("hashtags", request, principal, guard, ledger)


@router.post("/content-ideas")
async def content_ideas(
    request: ContentIdeasRequest,
    _rate_limit: None = Depends(rate_limit("content_ideas", limit=60, window_seconds=3600)),
    principal: Optional[Principal] = Depends(get_optional_principal),
    guard: AccessGuard = Depends(get_access_guard),
    ledger: CreditLedger = Depends(get_ledger),
):
    return await _run_generation("content-ideas", request, principal, guard, ledger)


@router.post("/captions")
async def captions(
    request: CaptionsRequest,
    _rate_limit: None = Depends(rate_limit("content_captions", limit=60, window_seconds=3600)),
    principal: Optional[Principal] = Depends(get_optional_principal),
    guard: AccessGuard = Depends(get_access_guard),
    ledger: CreditLedger = Depends(get_ledger),
):
    return await _run_generation("captions", request, principal, guard, ledger)


@router.post("/consultant")
async def consultant(
    request: ConsultantRequest,
    _rate_limit: None = Depends(rate_limit("content_consultant", limit=120, window_seconds=3600)),
    principal: Optional[Principal] = Depends(get_optional_principal),
    guard: AccessGuard = Depends(get_access_guard),
    ledger: CreditLedger = Depends(get_ledger),
):
    return await _run_generation("consultant", request, principal, guard, ledger)


@router.post("/transcription")
async def transcription(
    file: UploadFile = File(...),
    language: str = Form(default="pt", min_length=2, max_length=5),
    _rate_limit: None = Depends(rate_limit("content_transcription", limit=30, window_seconds=3600)),
    principal: Optional[Principal] = Depends(get_optional_principal),
    guard: AccessGuard = Depends(get_access_guard),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Transcribe an audio upload; the file is checked before any credits are charged."""
    content_type = (file.content_type or "").lower()
    if content_type not in TRANSCRIPTION_MIME_TYPES:
        raise HTTPException(
            status_code=415,
            detail="Unsupported audio format. Upload MP3, MP4, WAV or M4A.",
        )

    max_bytes = int(settings.TRANSCRIPTION_MAX_BYTES)
    try:
        data = await file.read(max_bytes + 1)
    finally:
        await file.close()
    if len(data) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Max upload size is {max_bytes // (1024 * 1024)}MB.",
        )
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded audio file is empty.")

    filename = file.filename or "audio"
    return await _run_metered(
        "transcription",
        principal,
        guard,
        ledger,
        lambda: transcribe_audio(filename, data, content_type, language.lower()),
    )
