import logging
import secrets
import time
from collections import OrderedDict, deque
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

from .config import get_editable_settings, get_settings, update_settings
from .errors import (
    GenericApiError,
    InvalidOption,
    MalformedTokenResponse,
    MissingCredential,
    MissingFile,
    NoHouseholds,
    NotAuthenticated,
    PermissionDenied,
    RecoverableAuthFailure,
    SonosCastError,
    TerminalAuthFailure,
)
from .models import (
    AudioClipOutcome,
    ClipPriority,
    ClipType,
    LivenessReport,
    PlaybackOutcome,
    SpeakerOption,
)
from .pkce import generate_code_challenge, generate_code_verifier
from .services.auth import AuthenticationManager, connection_label
from .services.discovery import ResourceAggregator
from .services.gateway import SonosCastClient
from .services.playback import PlaybackDispatcher
from .services.session import CastSession
from .services.tokens import TokenStore


# Custom log handler to capture recent logs
class LogCapture(logging.Handler):
    def __init__(self, maxlen=100):
        super().__init__()
        self.logs = deque(maxlen=maxlen)

    def emit(self, record):
        self.logs.append(
            {
                "time": datetime.fromtimestamp(record.created).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": self.format(record),
            }
        )


log_capture = LogCapture(maxlen=100)
log_capture.setFormatter(logging.Formatter("%(message)s"))

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Add capture handler to root logger
logging.getLogger().addHandler(log_capture)

# Transport override for the remote API client (None = real network)
http_transport: httpx.AsyncBaseTransport | None = None

# Global service instances, created in lifespan
api_client: SonosCastClient | None = None
auth_manager: AuthenticationManager | None = None
aggregator: ResourceAggregator | None = None
dispatcher: PlaybackDispatcher | None = None
token_store: TokenStore | None = None
cast_session: CastSession | None = None

# Pending authorization flows: state -> (PKCE code verifier, created at)
pending_authorizations: OrderedDict[str, tuple[str, float]] = OrderedDict()
PENDING_AUTHORIZATION_TTL = 600  # seconds
MAX_PENDING_AUTHORIZATIONS = 100


def init_services():
    """Create the API client and the components that share it."""
    global api_client, auth_manager, aggregator, dispatcher, token_store, cast_session
    settings = get_settings()

    api_client = SonosCastClient(
        base_url=settings.castbreeze.url,
        timeout=settings.castbreeze.timeout,
        transport=http_transport,
    )
    auth_manager = AuthenticationManager(
        api_client,
        client_id=settings.oauth.client_id,
        scope=settings.oauth.scope,
    )
    aggregator = ResourceAggregator(api_client)
    dispatcher = PlaybackDispatcher(
        api_client,
        clip_app_id=settings.clip_app_id,
        clip_name=settings.clip_name,
    )
    token_store = TokenStore(settings.token_path)
    cast_session = CastSession(
        auth_manager, token_store, refresh_skew=settings.oauth.refresh_skew
    )


def prune_pending_authorizations():
    """Drop expired authorization flows and make room for one more."""
    now = time.monotonic()
    for state, (_, created) in list(pending_authorizations.items()):
        if now - created > PENDING_AUTHORIZATION_TTL:
            del pending_authorizations[state]
    while len(pending_authorizations) >= MAX_PENDING_AUTHORIZATIONS:
        pending_authorizations.popitem(last=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    init_services()

    if token_store.load():
        logger.info(f"Stored CastBreeze session found at {settings.token_path}")
    else:
        logger.info("No CastBreeze tokens found - open /oauth/authorize to connect")

    yield

    # Cleanup
    if api_client:
        await api_client.close()


app = FastAPI(
    title="SonosCast API",
    description="Cast audio to Sonos speaker groups through the CastBreeze API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_status(error: SonosCastError) -> int:
    """HTTP status the host answers with for each error kind."""
    if isinstance(error, (TerminalAuthFailure, RecoverableAuthFailure, NotAuthenticated)):
        return 401
    if isinstance(error, PermissionDenied):
        return 403
    if isinstance(error, (MissingCredential, MissingFile, InvalidOption)):
        return 400
    if isinstance(error, NoHouseholds):
        return 404
    if isinstance(error, (GenericApiError, MalformedTokenResponse)):
        return 502
    return 500


@app.exception_handler(SonosCastError)
async def sonoscast_error_handler(request: Request, exc: SonosCastError):
    return JSONResponse(
        status_code=error_status(exc),
        content={
            "detail": exc.message,
            "error": type(exc).__name__,
            "reauth_required": exc.requires_reauth,
        },
    )


@app.exception_handler(httpx.HTTPError)
async def transport_error_handler(request: Request, exc: httpx.HTTPError):
    logger.error(f"CastBreeze API unreachable: {exc}")
    return JSONResponse(
        status_code=502,
        content={"detail": f"CastBreeze API unreachable: {exc}", "error": "TransportError"},
    )


class HealthResponse(BaseModel):
    status: str
    authenticated: bool


class PlayUrlRequest(BaseModel):
    url: str
    groups: list[str] | str | None = None  # Group ids, "*" or omitted = all groups
    volume: int | None = Field(default=None, ge=0, le=100)


class StreamFileRequest(BaseModel):
    file: str | dict[str, Any]  # URL or {"url": ...}
    groups: list[str] | str | None = None
    volume: int | None = Field(default=None, ge=0, le=100)


class AudioClipRequest(BaseModel):
    player_id: str
    clip_type: ClipType | None = None  # Defaults to CUSTOM
    file: str | dict[str, Any] | None = None  # Required for CUSTOM clips
    volume: int | None = Field(default=None, ge=0, le=100)
    priority: ClipPriority | None = None


@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    return HealthResponse(status="ok", authenticated=token_store.load() is not None)


@app.get("/api/logs")
async def get_server_logs(
    level: str | None = None,
    limit: int = 100,
):
    """Get recent server logs for debugging.

    Args:
        level: Filter by log level (DEBUG, INFO, WARNING, ERROR)
        limit: Maximum number of logs to return (default 100, max 500)
    """
    limit = min(limit, 500)
    logs = list(log_capture.logs)

    if level:
        level_upper = level.upper()
        logs = [log for log in logs if log["level"] == level_upper]

    # Most recent first
    return {
        "logs": list(reversed(logs[-limit:])),
        "total": len(log_capture.logs),
        "filtered": len(logs),
    }


class SettingsUpdate(BaseModel):
    castbreeze_api_url: str | None = None
    castbreeze_timeout: float | None = None
    oauth_client_id: str | None = None
    oauth_scope: str | None = None
    oauth_redirect_uri: str | None = None
    token_refresh_skew: int | None = None
    clip_app_id: str | None = None
    clip_name: str | None = None


@app.get("/settings")
async def get_current_settings():
    """Get current application settings."""
    return get_editable_settings()


@app.put("/settings")
async def update_current_settings(updates: SettingsUpdate):
    """Update application settings (persisted to settings.json)."""
    # Filter out None values
    changes = {k: v for k, v in updates.model_dump().items() if v is not None}

    if not changes:
        return {"status": "no changes"}

    update_settings(changes)

    # Rebuild the client and everything sharing it with the new values
    if api_client:
        await api_client.close()
    init_services()
    logger.info(f"Settings updated: {', '.join(sorted(changes))}")

    return {"status": "ok", "settings": get_editable_settings()}


@app.get("/oauth/authorize", include_in_schema=False)
async def oauth_authorize(state: str | None = None):
    """Start the authorization flow - generate a PKCE verifier and redirect."""
    settings = get_settings()
    state = state or secrets.token_urlsafe(16)
    verifier = generate_code_verifier()
    prune_pending_authorizations()
    pending_authorizations[state] = (verifier, time.monotonic())

    url = auth_manager.authorize_url(
        state,
        code_challenge=generate_code_challenge(verifier),
        redirect_uri=settings.oauth.redirect_uri,
    )
    logger.info(f"OAuth: redirecting to CastBreeze (redirect_uri={settings.oauth.redirect_uri})")
    return RedirectResponse(url, status_code=302)


@app.get("/oauth/callback")
async def oauth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
):
    """Exchange the authorization code and store the resulting tokens."""
    if error:
        raise HTTPException(
            status_code=400,
            detail=f"Authorization failed: {error} {error_description or ''}".strip(),
        )

    pending = pending_authorizations.pop(state, None) if state else None
    if pending is None or time.monotonic() - pending[1] > PENDING_AUTHORIZATION_TTL:
        raise HTTPException(status_code=400, detail="Unknown or expired authorization state")

    settings = get_settings()
    token_state = await auth_manager.exchange_code(
        code, settings.oauth.redirect_uri, pending[0]
    )
    token_store.save(token_state)
    return {"status": "connected", "connection": connection_label(token_state.scope)}


@app.post("/auth/refresh")
async def auth_refresh():
    """Force a token refresh."""
    token_state = await cast_session.refresh()
    return {
        "status": "refreshed",
        "expires_in": token_state.expires_in,
        "scope": token_state.scope,
    }


@app.get("/auth/test")
async def auth_test():
    """Check the stored connection against the remote whoami endpoint."""
    report: LivenessReport = await cast_session.run(auth_manager.test_liveness)
    report.connection_label = connection_label(cast_session.current_state().scope)
    return report.model_dump()


@app.delete("/auth")
async def auth_disconnect():
    """Forget the stored tokens."""
    removed = token_store.delete()
    return {"status": "disconnected" if removed else "not_connected"}


@app.get("/groups", response_model=list[SpeakerOption])
async def list_groups():
    """Speaker groups across all households, led by the "All Groups" choice."""
    return await cast_session.run(aggregator.group_options)


@app.get("/players", response_model=list[SpeakerOption])
async def list_players():
    """Individual players across all households."""
    return await cast_session.run(aggregator.player_options)


@app.post("/playback/url", response_model=PlaybackOutcome)
async def play_url(request: PlayUrlRequest):
    """Stream a media URL to the selected groups."""
    return await cast_session.run(
        lambda token: dispatcher.play_url(token, request.url, request.groups, request.volume)
    )


@app.post("/playback/file", response_model=PlaybackOutcome)
async def stream_file(request: StreamFileRequest):
    """Stream an uploaded file to the selected groups."""
    return await cast_session.run(
        lambda token: dispatcher.stream_file(token, request.file, request.groups, request.volume)
    )


@app.post("/playback/clip", response_model=AudioClipOutcome)
async def play_audio_clip(request: AudioClipRequest):
    """Play a one-off audio clip on a single player."""
    return await cast_session.run(
        lambda token: dispatcher.play_audio_clip(
            token,
            request.player_id,
            clip_type=request.clip_type,
            file_ref=request.file,
            volume=request.volume,
            priority=request.priority,
        )
    )
