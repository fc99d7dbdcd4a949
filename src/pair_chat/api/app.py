"""
FastAPI Application Module

HTTP and WebSocket surface for the two-party chat backend. Clients send
messages, page through a chat's history, mark messages seen, delete messages
or chats, and join per-chat topics over a WebSocket to receive live events.

Key Features:
- Atomic send workflow backed by an optimistic-transaction document store
- Cursor pagination with per-user soft-delete filtering
- Topic-based real-time fan-out (new-message, messages-seen, message-deleted, chat-deleted)
- Rate limiting, structured logging, Prometheus metrics and OpenTelemetry tracing

Services are built by ``create_app`` and kept on ``app.state`` so tests can
inject their own store and notifier.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CollectorRegistry, Counter, generate_latest
from pydantic import AliasChoices, BaseModel, Field
from structlog import get_logger

from .. import __version__
from ..config import Settings, configure_logging
from ..domain.exceptions import ChatError, StoreError
from ..domain.models import SendMessageRequest
from ..repositories.base import ChatStore
from ..repositories.memory import InMemoryChatStore
from ..services.deletion import DeletionService
from ..services.messages import MessageService
from ..services.notifier import InMemoryNotifier, RealtimeNotifier
from ..services.queries import QueryService
from ..services.seen import SeenTracker
from .rate_limiter import RateLimiter, RateLimitExceeded, rate_limit_middleware

# Registry for isolated metric collection
CUSTOM_REGISTRY = CollectorRegistry()

REQUESTS = Counter("requests_total", "Total HTTP requests", registry=CUSTOM_REGISTRY)
ERRORS = Counter("errors_total", "Total server-side errors", registry=CUSTOM_REGISTRY)
PROCESSING_TIME = Counter("processing_time_seconds", "Total request processing time", registry=CUSTOM_REGISTRY)
MESSAGES_SENT = Counter("messages_sent_total", "Messages committed", registry=CUSTOM_REGISTRY)
SUBSCRIPTIONS = Counter("realtime_subscriptions_total", "Topic joins over WebSocket", registry=CUSTOM_REGISTRY)

INTERNAL_ERROR = "Internal server error"

logger = get_logger()


class SeenRequest(BaseModel):
    """Body of a mark-seen request"""
    userId: Optional[str] = None
    uptoTimestamp: Optional[int] = Field(
        None, validation_alias=AliasChoices("uptoTimestamp", "lastSeenTimestamp")
    )


class DeleteMessageRequest(BaseModel):
    """Body of a delete-message request"""
    userId: Optional[str] = None
    forEveryone: bool = False


class DeleteChatRequest(BaseModel):
    """Body of a delete-chat request"""
    userId: Optional[str] = None


def get_message_service(request: Request) -> MessageService:
    return request.app.state.message_service


def get_query_service(request: Request) -> QueryService:
    return request.app.state.query_service


def get_seen_tracker(request: Request) -> SeenTracker:
    return request.app.state.seen_tracker


def get_deletion_service(request: Request) -> DeletionService:
    return request.app.state.deletion_service


def _http_error(exc: ChatError, event: str, **context: Any) -> HTTPException:
    """Map a chat error to an HTTP error, hiding storage details."""
    if isinstance(exc, StoreError):
        ERRORS.inc()
        logger.error(event, error=str(exc), **context)
        return HTTPException(status_code=500, detail=INTERNAL_ERROR)
    logger.warning(event, status=exc.status_code, error=exc.message, **context)
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def _unexpected(exc: Exception, event: str, **context: Any) -> HTTPException:
    ERRORS.inc()
    logger.error(event, error=str(exc), **context)
    return HTTPException(status_code=500, detail=INTERNAL_ERROR)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ChatStore] = None,
    notifier: Optional[RealtimeNotifier] = None,
) -> FastAPI:
    """Build the application and wire its services."""
    settings = settings or Settings.from_env()
    store = store or InMemoryChatStore(
        max_attempts=settings.store_max_attempts,
        retry_backoff=settings.store_retry_backoff,
    )
    notifier = notifier or InMemoryNotifier()
    rate_limiter = (
        RateLimiter(rate_limit=settings.rate_limit, time_window=settings.rate_window)
        if settings.rate_limit_enabled
        else None
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Starts and stops background housekeeping"""
        if rate_limiter is not None:
            await rate_limiter.start()
        logger.info("application_startup_complete")

        yield

        if rate_limiter is not None:
            await rate_limiter.stop()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title="Pair Chat API",
        description="Two-party chat backend with atomic message fan-out",
        version=__version__,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.store = store
    app.state.notifier = notifier
    app.state.rate_limiter = rate_limiter
    app.state.message_service = MessageService(store, notifier)
    app.state.query_service = QueryService(store, page_size=settings.page_size)
    app.state.seen_tracker = SeenTracker(store, notifier)
    app.state.deletion_service = DeletionService(store, notifier)

    # Enable cross-origin requests
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Set up request tracing
    FastAPIInstrumentor.instrument_app(app)

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Tracks requests and enforces rate limits"""
        REQUESTS.inc()
        started = time.perf_counter()
        logger.info("request_started", method=request.method, path=request.url.path)
        try:
            remaining = await rate_limit_middleware(request, rate_limiter)
        except RateLimitExceeded as e:
            return JSONResponse(
                status_code=429,
                content={"detail": str(e)},
                headers={"Retry-After": str(e.retry_after)},
            )
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("request_failed", path=request.url.path, error=str(e))
            raise
        finally:
            PROCESSING_TIME.inc(time.perf_counter() - started)
        if remaining is not None:
            response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Malformed bodies and queries are client errors, reported as 400"""
        logger.warning("request_validation_failed", path=request.url.path)
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
        )

    @app.post("/messages")
    async def send_message(
        payload: SendMessageRequest,
        service: MessageService = Depends(get_message_service)
    ) -> Dict[str, Any]:
        """Stores a message and updates the room and both chat lists atomically"""
        try:
            result = await service.send_message(payload)
        except ChatError as e:
            raise _http_error(e, "send_message_error", sender_id=payload.senderId)
        except Exception as e:
            raise _unexpected(e, "send_message_error", sender_id=payload.senderId)

        MESSAGES_SENT.inc()
        return {
            "status": "success",
            "message": "Message sent successfully",
            "messageId": result.messageId,
            "roomId": result.roomId,
        }

    @app.get("/messages/{chat_id}")
    async def list_messages(
        chat_id: str,
        requesting_user_id: Optional[str] = Query(None, alias="requestingUserId"),
        before_timestamp: Optional[int] = Query(None, alias="beforeTimestamp"),
        last_message_timestamp: Optional[int] = Query(None, alias="lastMessageTimestamp"),
        service: QueryService = Depends(get_query_service)
    ) -> Dict[str, Any]:
        """Returns the newest page of messages, optionally before a timestamp cursor"""
        cursor = before_timestamp if before_timestamp is not None else last_message_timestamp
        try:
            messages = await service.list_messages(chat_id, requesting_user_id, cursor)
        except ChatError as e:
            raise _http_error(e, "list_messages_error", chat_id=chat_id)
        except Exception as e:
            raise _unexpected(e, "list_messages_error", chat_id=chat_id)
        return {"messages": [m.model_dump(exclude_none=True) for m in messages]}

    @app.post("/messages/{chat_id}/seen")
    async def mark_seen(
        chat_id: str,
        payload: SeenRequest,
        tracker: SeenTracker = Depends(get_seen_tracker)
    ) -> Dict[str, Any]:
        """Marks the other participant's messages seen up to a timestamp"""
        try:
            updated = await tracker.mark_seen(chat_id, payload.userId, payload.uptoTimestamp)
        except ChatError as e:
            raise _http_error(e, "mark_seen_error", chat_id=chat_id)
        except Exception as e:
            raise _unexpected(e, "mark_seen_error", chat_id=chat_id)
        return {"status": "success", "message": "Messages marked as seen", "updated": updated}

    @app.get("/chats/{user_id}")
    async def list_chats(
        user_id: str,
        service: QueryService = Depends(get_query_service)
    ) -> Dict[str, Any]:
        """Returns a user's chats, most recently active first"""
        try:
            chats = await service.list_chats(user_id)
        except ChatError as e:
            raise _http_error(e, "list_chats_error", user_id=user_id)
        except Exception as e:
            raise _unexpected(e, "list_chats_error", user_id=user_id)
        return {"chats": [c.model_dump() for c in chats]}

    @app.delete("/messages/{chat_id}/{message_id}")
    async def delete_message(
        chat_id: str,
        message_id: str,
        payload: DeleteMessageRequest,
        service: DeletionService = Depends(get_deletion_service)
    ) -> Dict[str, Any]:
        """Hides a message for the caller, or removes it for everyone if they sent it"""
        try:
            await service.delete_message(chat_id, message_id, payload.userId, payload.forEveryone)
        except ChatError as e:
            raise _http_error(e, "delete_message_error", chat_id=chat_id, message_id=message_id)
        except Exception as e:
            raise _unexpected(e, "delete_message_error", chat_id=chat_id, message_id=message_id)
        return {"status": "success", "message": "Message deleted"}

    @app.delete("/chats/{chat_id}")
    async def delete_chat(
        chat_id: str,
        payload: DeleteChatRequest,
        service: DeletionService = Depends(get_deletion_service)
    ) -> Dict[str, Any]:
        """Removes the chat from the caller's chat list only"""
        try:
            await service.delete_chat(chat_id, payload.userId)
        except ChatError as e:
            raise _http_error(e, "delete_chat_error", chat_id=chat_id)
        except Exception as e:
            raise _unexpected(e, "delete_chat_error", chat_id=chat_id)
        return {"status": "success", "message": "Chat deleted"}

    @app.websocket("/ws")
    async def realtime(websocket: WebSocket):
        """Accepts join/leave commands and streams events for joined chats"""
        notifier: RealtimeNotifier = websocket.app.state.notifier
        await websocket.accept()
        logger.info("websocket_connected")
        try:
            while True:
                try:
                    command = await websocket.receive_json()
                except ValueError:
                    await websocket.send_json({"event": "error", "data": {"detail": "Invalid JSON"}})
                    continue

                action = command.get("action") if isinstance(command, dict) else None
                chat_id = command.get("chatId") if isinstance(command, dict) else None
                if action not in ("join", "join-topic", "leave", "leave-topic") or not chat_id:
                    await websocket.send_json(
                        {"event": "error", "data": {"detail": "Expected action join or leave with a chatId"}}
                    )
                    continue

                chat_id = str(chat_id)
                if action.startswith("join"):
                    await notifier.subscribe(websocket, chat_id)
                    SUBSCRIPTIONS.inc()
                    await websocket.send_json({"event": "joined", "data": {"chatId": chat_id}})
                else:
                    await notifier.unsubscribe(websocket, chat_id)
                    await websocket.send_json({"event": "left", "data": {"chatId": chat_id}})
        except WebSocketDisconnect:
            logger.info("websocket_disconnected")
        finally:
            await notifier.unsubscribe_all(websocket)

    @app.get("/metrics")
    async def metrics():
        """Provides Prometheus metrics for system monitoring"""
        return Response(generate_latest(CUSTOM_REGISTRY), media_type="text/plain")

    return app


configure_logging()
app = create_app()
