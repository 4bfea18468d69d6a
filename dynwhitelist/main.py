import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, Security
from fastapi.responses import Response
from fastapi.security.api_key import APIKeyQuery
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from dynwhitelist.config import Settings, settings
from dynwhitelist.document import ConfigurationDocument, merge_documents
from dynwhitelist.errors import SourceFailure
from dynwhitelist.provider import ListProvider, Provider, PublicIPProvider

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

SHUTDOWN_TIMEOUT_SECONDS = 10


class DocumentStore:
    """Latest document published by each provider."""

    def __init__(self):
        self._documents: dict[str, ConfigurationDocument] = {}
        self._published: dict[str, datetime] = {}
        self.failures: list[SourceFailure] = []

    def update(self, provider: str, document: ConfigurationDocument) -> None:
        self._documents[provider] = document
        self._published[provider] = datetime.now(timezone.utc)

    def record_failure(self, failure: SourceFailure) -> None:
        self.failures = [*self.failures[-49:], failure]

    def merged(self) -> ConfigurationDocument | None:
        if not self._documents:
            return None
        return merge_documents(self._documents.values())

    def published(self) -> dict[str, str]:
        return {name: ts.isoformat() for name, ts in self._published.items()}


store = DocumentStore()
active_providers: list[Provider] = []


# --- Authentication ---

api_key_query = APIKeyQuery(name="token", auto_error=False)


async def verify_token(token: str | None = Security(api_key_query)) -> str | None:
    if settings.api_token is None:
        return None
    if token != settings.api_token:
        raise HTTPException(status_code=403, detail="Forbidden")
    return token


# --- Security Headers Middleware ---


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Content-Security-Policy"] = "default-src 'none'"
        response.headers["Cache-Control"] = "no-store"
        return response


# --- Providers ---


def build_providers(config: Settings) -> list[Provider]:
    providers: list[Provider] = []
    if config.public_ip_enabled:
        providers.append(PublicIPProvider(config.public_ip_config()))
    if config.lists:
        providers.append(ListProvider(config.list_config()))
    return providers


async def consume_documents(name: str, queue: asyncio.Queue) -> None:
    while True:
        document = await queue.get()
        store.update(name, document)
        logger.info("Configuration updated by %s", name)


async def consume_failures(queue: asyncio.Queue) -> None:
    while True:
        failure = await queue.get()
        store.record_failure(failure)


# --- Lifespan ---


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.getLogger().setLevel(settings.log_level.upper())
    providers = build_providers(settings)
    for provider in providers:
        provider.initialize()
    active_providers[:] = providers

    failures: asyncio.Queue = asyncio.Queue(maxsize=100)
    consumers = [asyncio.create_task(consume_failures(failures))]
    for provider in providers:
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        provider.start(queue, errors=failures)
        consumers.append(asyncio.create_task(consume_documents(provider.name, queue)))
    logger.info("Started %d providers", len(providers))
    yield
    for provider in providers:
        provider.stop()
    await asyncio.gather(
        *(provider.aclose(SHUTDOWN_TIMEOUT_SECONDS) for provider in providers)
    )
    for task in consumers:
        task.cancel()
    await asyncio.gather(*consumers, return_exceptions=True)
    active_providers.clear()


# --- App ---

app = FastAPI(
    title="Dynamic Whitelist Provider",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "providers": store.published(),
        "sources": {
            provider.name: {key: ts.isoformat() for key, ts in provider.cache.refreshed().items()}
            for provider in active_providers
        },
        "recent_failures": len(store.failures),
    }


@app.get("/config")
@limiter.limit("60/minute")
async def config(request: Request, _: str | None = Depends(verify_token)) -> Response:
    document = store.merged()
    if document is None:
        raise HTTPException(status_code=503, detail="No configuration published yet")
    return Response(content=document.to_json(), media_type="application/json")


def run() -> None:
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host=settings.listen_host, port=settings.listen_port,
                log_level=settings.log_level)
