"""
FastAPI application factory.
Brings together the services, the message queue client and the health checks.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Iterable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ..core.errors import MessagingError
from ..messaging.consumer import MessageHandler
from ..messaging.interfaces import IMessageQueue
from ..services.documents import DocumentService
from ..services.todos import TodoService
from .routes import document_router, queue_router, todo_router

VERSION = "1.0.0"

HealthCheck = Callable[[], bool]


async def _run_check(name: str, check: HealthCheck) -> bool:
    try:
        return bool(await asyncio.to_thread(check))
    except Exception:
        logger.exception(f"Health check '{name}' raised")
        return False


def create_app(
    todos: TodoService,
    documents: DocumentService,
    queue: IMessageQueue,
    health_checks: dict[str, HealthCheck] | None = None,
    listeners: Iterable[tuple[str, MessageHandler]] = (),
) -> FastAPI:
    checks: dict[str, HealthCheck] = {"pulsar": queue.is_healthy}
    checks.update(health_checks or {})
    listeners = list(listeners)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            for destination, handler in listeners:
                await queue.consume(destination, handler)
        except Exception:
            logger.critical("Could not start the notification listeners. Shutting down the queue.")
            await queue.stop()
            raise

        try:
            yield
        finally:
            await queue.stop()

    app = FastAPI(title="dataservice", version=VERSION, lifespan=lifespan)
    app.state.todos = todos
    app.state.documents = documents
    app.state.queue = queue

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MessagingError)
    async def messaging_exception_handler(request: Request, exc: MessagingError):
        logger.error(f"{request.method} {request.url.path} failed: [{exc.kind}] {exc}")
        return JSONResponse(
            status_code=503 if exc.retryable else 500,
            content={"detail": "Internal server error", "error": exc.kind},
        )

    @app.get("/")
    async def root():
        return {
            "message": "dataservice API is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION,
        }

    @app.get("/healthz")
    async def healthz():
        results = {name: await _run_check(name, check) for name, check in checks.items()}
        healthy = all(results.values())
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={"status": "Healthy" if healthy else "Unhealthy", "checks": results},
        )

    app.include_router(todo_router)
    app.include_router(document_router)
    app.include_router(queue_router)
    return app
