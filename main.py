import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from openai import AsyncOpenAI

from config.settings import Settings, get_settings
from routes.chat_route import router as chat_router
from services.chat.push_channel import ChannelManager
from services.chat.relay import CompletionRelay
from services.chat.session_registry import SessionRegistry
from services.chat.upstream import CompletionUpstream

BASE_DIR = Path(__file__).resolve().parent
PUBLIC_DIR = BASE_DIR / "public"

LOGGER = logging.getLogger(__name__)


async def _evict_idle_sessions(registry: SessionRegistry, settings: Settings) -> None:
    """Periodically drop sessions nobody has touched within the TTL."""
    while True:
        await asyncio.sleep(settings.eviction_interval_seconds)
        evicted = registry.evict_idle(settings.session_ttl_seconds)
        if evicted:
            LOGGER.info("Evicted %d idle sessions", len(evicted))


def build_services(app: FastAPI, settings: Settings, upstream) -> None:
    """Attach the session registry, channel manager and relay to `app.state`."""
    registry = SessionRegistry()
    channel_manager = ChannelManager(registry, keepalive_seconds=settings.keepalive_seconds)
    app.state.session_registry = registry
    app.state.channel_manager = channel_manager
    app.state.relay = CompletionRelay(registry, channel_manager, upstream)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to initialize:
      - the OpenAI-compatible async client for the completion API
      - the session registry, push channel manager and completion relay
      - the idle-session eviction loop
    and attach them to `app.state`.
    """
    settings: Settings = app.state.settings
    if not settings.api_key:
        raise RuntimeError("OPENROUTER_API_KEY environment variable is not set")

    try:
        openai_client = AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
            max_retries=settings.max_retries,
        )
    except Exception as exc:
        raise RuntimeError("Failed to initialize OpenAI Async client") from exc

    app.state.openai_client = openai_client
    upstream = CompletionUpstream(
        openai_client,
        model=settings.model,
        max_tokens=settings.max_tokens,
        referer=settings.referer,
        title=settings.title,
    )
    build_services(app, settings, upstream)

    eviction_task: Optional[asyncio.Task] = None
    if settings.session_ttl_seconds > 0:
        eviction_task = asyncio.create_task(_evict_idle_sessions(app.state.session_registry, settings))

    try:
        yield
    finally:
        if eviction_task is not None:
            eviction_task.cancel()
            try:
                await eviction_task
            except asyncio.CancelledError:
                pass
        await app.state.relay.aclose()

        # Gracefully close the OpenAI client if it exposes a close/aclose method.
        client = getattr(app.state, "openai_client", None)
        if client is not None:
            aclose = getattr(client, "aclose", None) or getattr(client, "close", None)
            if aclose is not None:
                try:
                    if inspect.iscoroutinefunction(aclose):
                        await aclose()
                    else:
                        result = aclose()
                        if inspect.isawaitable(result):
                            await result
                except Exception:
                    LOGGER.warning("Error while closing the OpenAI client", exc_info=True)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application instance.
    """
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level, format="[%(asctime)s] %(levelname)s %(name)s - %(message)s")

    app = FastAPI(title="Streaming Chat Relay", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        """
        Report malformed request bodies and parameters as client errors (400).
        """
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    # Serve static assets from the public directory, if it exists.
    if PUBLIC_DIR.exists():
        app.mount("/public", StaticFiles(directory=PUBLIC_DIR), name="public")

    @app.get("/", include_in_schema=False)
    async def serve_index():
        """
        Serve the frontend index page from the public directory.
        """
        index_path = PUBLIC_DIR / "index.html"
        if not index_path.exists():
            raise HTTPException(status_code=404, detail="Frontend not found")
        return FileResponse(index_path)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check reporting live sessions and upstream client presence.
        """
        registry = getattr(request.app.state, "session_registry", None)
        has_upstream = getattr(request.app.state, "relay", None) is not None
        return {
            "ok": True,
            "sessions": len(registry) if registry is not None else 0,
            "upstream_configured": has_upstream,
        }

    app.include_router(chat_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
