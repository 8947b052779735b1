"""LLM-backed content generation for the metered creator tools."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from config import settings

logger = logging.getLogger(__name__)


class ContentProviderError(RuntimeError):
    """Raised when the LLM provider call fails or returns nothing usable."""


FEATURE_INSTRUCTIONS: Dict[str, str] = {
    "copywriting": "Write persuasive marketing copy.",
    "hashtags": "Suggest relevant hashtags, one per line, each starting with #.",
    "content-ideas": "List distinct content ideas, one per line.",
    "captions": "Write short social media captions, one per line.",
    "consultant": (
        "You are a consultant in digital marketing, copywriting and online sales. "
        "Give specific, actionable answers."
    ),
}

TRANSCRIPTION_MIME_TYPES = frozenset(
    {"audio/mpeg", "audio/mp3", "audio/mp4", "audio/wav", "audio/x-m4a", "video/mp4"}
)


def get_openai_client(api_key: str) -> Optional[AsyncOpenAI]:
    """Get OpenAI client, handling placeholders."""
    if not api_key or "your_" in api_key or api_key == "test-key":
        return None
    return AsyncOpenAI(api_key=api_key)


def _user_prompt(payload: Dict[str, Any]) -> str:
    lines = [f"{key}: {value}" for key, value in payload.items() if value not in (None, "", [])]
    return "\n".join(lines)


def _chat_messages(feature_id: str, instructions: str, payload: Dict[str, Any]) -> List[Dict[str, str]]:
    if feature_id != "consultant":
        return [
            {"role": "system", "content": instructions},
            {"role": "user", "content": _user_prompt(payload)},
        ]

    expertise = payload.get("expertise_area")
    if expertise:
        instructions = f"{instructions} Focus on {expertise}."
    messages = [{"role": "system", "content": instructions}]
    for turn in payload.get("history") or []:
        messages.append({"role": "user" if turn.get("is_user") else "assistant", "content": turn["content"]})
    messages.append({"role": "user", "content": payload["message"]})
    return messages


def _fallback_content(feature_id: str, payload: Dict[str, Any]) -> List[str]:
    topic = str(payload.get("topic") or payload.get("product") or "your content").strip()
    quantity = max(int(payload.get("quantity") or 3), 1)
    if feature_id == "hashtags":
        token = "".join(part.capitalize() for part in topic.split()) or "Content"
        return [f"#{token}"] + [f"#{token}{index}" for index in range(1, quantity)]
    if feature_id == "content-ideas":
        return [f"Idea {index}: a behind-the-scenes look at {topic}" for index in range(1, quantity + 1)]
    if feature_id == "captions":
        return [f"{topic.capitalize()} - caption option {index}" for index in range(1, quantity + 1)]
    if feature_id == "consultant":
        return ["Start by defining one measurable goal for this week, then pick a single channel to test it on."]
    return [f"Discover {topic}. Built for people who want results, not promises."]


def _completion_text(feature_id: str, response: Any) -> str:
    try:
        return (response.choices[0].message.content or "").strip()
    except (AttributeError, IndexError, TypeError) as exc:
        logger.error("Content provider returned no choices for %s.", feature_id)
        raise ContentProviderError(f"Empty completion for {feature_id}.") from exc


async def generate_content(feature_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Run one generation; the caller must have authorized the feature already."""
    instructions = FEATURE_INSTRUCTIONS.get(feature_id)
    if instructions is None:
        raise ValueError(f"Unsupported content feature: {feature_id}")

    client = get_openai_client(settings.OPENAI_API_KEY)
    if client is None:
        logger.warning("Using local content fallback for %s.", feature_id)
        return {"provider": "fallback", "items": _fallback_content(feature_id, payload)}

    try:
        response = await client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=_chat_messages(feature_id, instructions, payload),
            max_tokens=max(int(settings.OPENAI_MAX_TOKENS), 64),
        )
    except OpenAIError as exc:
        logger.error("Content generation failed for %s: %s", feature_id, exc)
        raise ContentProviderError(str(exc)) from exc

    content = _completion_text(feature_id, response)
    if feature_id == "consultant":
        items = [content] if content else []
    else:
        items = [line.strip() for line in content.splitlines() if line.strip()]
    return {"provider": "openai", "model": settings.OPENAI_MODEL, "items": items}


async def transcribe_audio(filename: str, data: bytes, content_type: str, language: str) -> Dict[str, Any]:
    """Transcribe an uploaded audio file with Whisper."""
    client = get_openai_client(settings.OPENAI_API_KEY)
    if client is None:
        logger.warning("Using local transcription fallback for %s.", filename)
        return {
            "provider": "fallback",
            "language": language,
            "text": f"Transcription unavailable offline for {filename} ({len(data)} bytes).",
        }

    try:
        transcript = await client.audio.transcriptions.create(
            model=settings.OPENAI_TRANSCRIPTION_MODEL,
            file=(filename, data, content_type),
            language=language,
            response_format="json",
        )
    except OpenAIError as exc:
        logger.error("Transcription failed for %s: %s", filename, exc)
        raise ContentProviderError(str(exc)) from exc

    return {
        "provider": "openai",
        "model": settings.OPENAI_TRANSCRIPTION_MODEL,
        "language": language,
        "text": (getattr(transcript, "text", "") or "").strip(),
    }
