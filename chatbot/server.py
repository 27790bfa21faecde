"""FastAPI server for the LangGraph chatbot.

Run with:
    uvicorn chatbot.server:app --reload --host 0.0.0.0 --port 3001
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from chatbot.api.routes import router
from chatbot.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from chatbot.engine import create_chat_engine

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: build the chat engine (graph + session store) once."""
    logger.info("Compiling chatbot graph…")
    application.state.engine = create_chat_engine()
    logger.info("Chatbot ready.")
    yield
    # Shutdown: the Redis store holds a connection pool, the memory store nothing
    engine = application.state.engine
    close = getattr(engine.store, "close", None) if engine is not None else None
    if close is not None:
        await close()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="LangGraph Chatbot",
    description=(
        "Intent-routed chatbot with parallel tool calling and "
        "human-in-the-loop clarification."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "LangGraph Chatbot",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    logger.info("Starting chatbot API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "chatbot.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
