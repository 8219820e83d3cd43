"""Playback commands: stream a URL to speaker groups, or play an audio clip on a player."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, TypeVar

from ..errors import (
    AudioClipFailed,
    InvalidOption,
    MissingFile,
    NotAuthenticated,
    PlaybackFailed,
    SonosCastError,
)
from ..models import (
    WILDCARD,
    AudioClipOutcome,
    ClipPriority,
    ClipType,
    PlaybackOutcome,
    TargetSelector,
)
from .gateway import SonosCastClient

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)


def normalize_selector(selector: TargetSelector | None) -> TargetSelector:
    """Resolve the groups a play command targets.

    Nothing selected, or only the wildcard, means all groups. Anything else
    is passed through as given.
    """
    if not selector:
        return WILDCARD
    if isinstance(selector, list) and len(selector) == 1 and selector[0] == WILDCARD:
        return WILDCARD
    return selector


def resolve_file_url(file_ref: Any) -> str | None:
    """Accept a bare URL or an object/dict carrying a `url` field."""
    if isinstance(file_ref, str):
        return file_ref or None
    if isinstance(file_ref, dict):
        url = file_ref.get("url")
    else:
        url = getattr(file_ref, "url", None)
    return url if isinstance(url, str) and url else None


def coerce_option(enum_cls: type[E], value: Any, label: str) -> E:
    """Accept an enum member or its name in any case."""
    try:
        return enum_cls(value.upper() if isinstance(value, str) else value)
    except ValueError:
        choices = ", ".join(m.value for m in enum_cls)
        raise InvalidOption(f"Unsupported {label} {value!r}, expected one of: {choices}") from None


class PlaybackDispatcher:
    """Issues play and audio clip commands. Never retries on its own."""

    def __init__(
        self,
        client: SonosCastClient,
        clip_app_id: str = "com.casttosonos.zapier",
        clip_name: str = "Zapier Audio Clip",
    ):
        self.client = client
        self.clip_app_id = clip_app_id
        self.clip_name = clip_name

    async def play_url(
        self,
        access_token: str | None,
        media_url: str,
        selector: TargetSelector | None = None,
        volume: int | None = None,
    ) -> PlaybackOutcome:
        if not access_token:
            raise NotAuthenticated("Please authenticate first.")

        groups = normalize_selector(selector)
        body: dict[str, Any] = {"groups": groups, "url": media_url, "metadata": {}}
        if volume is not None:
            body["volume"] = volume

        try:
            response = await self.client.request(
                "POST",
                "api/v2/extended/playUrl",
                token=access_token,
                json=body,
                failure=PlaybackFailed,
            )
        except SonosCastError as e:
            logger.error(f"Playback failed: {e.diagnostics()}")
            raise

        result = response.parsed_body if isinstance(response.parsed_body, dict) else {}
        successful = [
            s for s in result.get("successful") or [] if isinstance(s, dict) and s.get("groupId")
        ]
        failed = [f for f in result.get("failed") or [] if isinstance(f, dict)]
        for failure in failed:
            logger.warning(f"Group {failure.get('groupId')} failed to play: {failure.get('error')}")

        outcome = PlaybackOutcome(
            session_id=(successful[0].get("sessionId") if successful else None) or "unknown",
            url=media_url,
            groups=groups,
            successful_groups=[s["groupId"] for s in successful],
            failed_count=len(failed),
            volume=volume,
            status="playing" if successful else "failed",
        )
        logger.info(
            f"Play {media_url} on {groups}: {len(successful)} ok, {len(failed)} failed"
        )
        return outcome

    async def stream_file(
        self,
        access_token: str | None,
        file_ref: Any,
        selector: TargetSelector | None = None,
        volume: int | None = None,
    ) -> PlaybackOutcome:
        """Stream an uploaded file (URL string or {"url": ...}) to speaker groups."""
        file_url = resolve_file_url(file_ref)
        if not file_url:
            raise MissingFile("No file URL provided. Please ensure a file is selected.")
        return await self.play_url(access_token, file_url, selector, volume)

    async def play_audio_clip(
        self,
        access_token: str | None,
        player_id: str,
        clip_type: ClipType | str | None = None,
        file_ref: Any = None,
        volume: int | None = None,
        priority: ClipPriority | str | None = None,
    ) -> AudioClipOutcome:
        """Play a short, self-stopping clip on one player.

        CUSTOM clips (the default) need a file; built-in types like CHIME don't.
        `volume` and `priority` are only sent when given; volume 0 is sent.
        """
        if not access_token:
            raise NotAuthenticated("Please authenticate first.")

        clip_type = coerce_option(ClipType, clip_type or ClipType.CUSTOM, "clip type")
        body: dict[str, Any] = {
            "name": self.clip_name,
            "appId": self.clip_app_id,
            "clipType": clip_type.value,
        }

        if clip_type == ClipType.CUSTOM:
            file_url = resolve_file_url(file_ref)
            if not file_url:
                raise MissingFile("No file URL provided. Please ensure a file is selected.")
            body["streamUrl"] = file_url

        if priority is not None:
            body["priority"] = coerce_option(ClipPriority, priority, "clip priority").value
        if volume is not None:
            body["volume"] = volume

        try:
            response = await self.client.request(
                "POST",
                f"api/v2/sonos/players/{player_id}/audioClip",
                token=access_token,
                json=body,
                failure=AudioClipFailed,
            )
        except SonosCastError as e:
            logger.error(f"Audio clip on {player_id} failed: {e.diagnostics()}")
            raise

        result = response.parsed_body if isinstance(response.parsed_body, dict) else {}
        logger.info(f"Audio clip {result.get('id')} queued on {player_id}")
        return AudioClipOutcome(
            id=result.get("id") or "",
            player_id=player_id,
            name=result.get("name") or self.clip_name,
            status=result.get("status") or "scheduled",
        )
