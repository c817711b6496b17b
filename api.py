import math
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from src.chat_service import run_chat, run_chat_stream_events
from src.config import load_settings
from src.db import SqlStore
from src.logger import get_logger
from src.rate_limit import InMemoryRateLimiter, RateLimiter
from src.schemas import ChatRequest, ChatResponse

logger = get_logger(__name__)

"""
NOTE: The store and the rate limiter are created once in the lifespan hook and shared by every request
NOTE: Everything per request (identity, tool results) lives in the AppContext built by the chat service
NOTE: load_settings() raises when DATABASE_URL or GOOGLE_API_KEY is missing, so the server refuses to start
NOTE: Status codes used here:
        429 -- Too Many Requests (rate limit, with Retry-After)
        503 -- Service Unavailable (the model could not be reached after retries), body has the same shape as a 200
NOTE: Lookup failures (no email, access denied, database down) are NOT HTTP errors. They come back as a 200 with
      a polite text and a structured error in `data`
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    app.state.store = SqlStore.from_url(settings.database_url, connect_timeout=settings.db_connect_timeout)
    app.state.rate_limiter = InMemoryRateLimiter()
    logger.info("Support chat API started", extra={"model": settings.support_model})
    yield
    app.state.store.close()


app = FastAPI(
    title="TechTrend Support Chat API",
    description="Customer support chat with scoped database lookups, powered by Pydantic AI",
    lifespan=lifespan,
)


def get_store(request: Request):
    return request.app.state.store


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def enforce_rate_limit(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
    client = request.client.host if request.client else "unknown"
    decision = limiter.check_and_increment(client)
    if not decision.allowed:
        logger.warning("Rate limit exceeded", extra={"client": client})
        raise HTTPException(
            status_code=429,
            detail={"error": "Too many requests. Please wait a moment and try again."},
            headers={"Retry-After": str(math.ceil(decision.retry_after))},
        )


# Check if the server is running without triggering any LLM calls
@app.get("/health")
async def health():
    return {"status": "OK"}


@app.post("/api/chat", response_model=ChatResponse, dependencies=[Depends(enforce_rate_limit)])
async def chat(request: ChatRequest, store=Depends(get_store)):
    logger.info("Chat request received", extra={"messages": len(request.messages)})
    result = await run_chat(store, request.messages)

    if result.error:
        logger.warning("Support agent unavailable, returning 503", extra={"request_id": result.request_id})
        return JSONResponse(status_code=503, content=result.model_dump(mode="json", by_alias=True))

    logger.info("Chat request complete", extra={"request_id": result.request_id})
    return result


@app.post("/api/chat/stream", dependencies=[Depends(enforce_rate_limit)])
async def chat_stream(request: ChatRequest, store=Depends(get_store)):
    logger.info("Chat stream request received", extra={"messages": len(request.messages)})
    # StreamingResponse sends each yielded event to the client as it arrives
    return StreamingResponse(
        run_chat_stream_events(store, request.messages),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
