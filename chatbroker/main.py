import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from chatbroker.callbacks import CallbackIngress
from chatbroker.chatlog import ChatLog
from chatbroker.dispatcher import OutboundDispatcher
from chatbroker.engine import EngineClient
from chatbroker.errors import BadRequest, BrokerError, JobNotFound
from chatbroker.lifecycle import JobLifecycle
from chatbroker.models import ChatMessage
from chatbroker.reaper import Reaper
from chatbroker.sessions import join_session_id
from chatbroker.settings import Settings, settings as default_settings
from chatbroker.storage import JobStore, make_job_store
from chatbroker.streams import data_stream

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/api/chat/callback"
NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@dataclass
class Broker:
    settings: Settings
    store: JobStore
    lifecycle: JobLifecycle
    chat_log: ChatLog
    engine: EngineClient
    dispatcher: OutboundDispatcher
    callbacks: CallbackIngress
    reaper: Reaper


def build_broker(
    settings: Settings,
    store: Optional[JobStore] = None,
    engine: Optional[EngineClient] = None,
) -> Broker:
    store = store or make_job_store(settings.JOB_STORE_URL)
    lifecycle = JobLifecycle(store, strict_completion=settings.STRICT_COMPLETION)
    chat_log = ChatLog()
    engine = engine or EngineClient(settings)
    return Broker(
        settings=settings,
        store=store,
        lifecycle=lifecycle,
        chat_log=chat_log,
        engine=engine,
        dispatcher=OutboundDispatcher(lifecycle, engine),
        callbacks=CallbackIngress(lifecycle, chat_log),
        reaper=Reaper(store, settings.JOB_RETENTION_MS, settings.REAPER_INTERVAL_SECONDS),
    )


def get_broker(request: Request) -> Broker:
    return request.app.state.broker


def callback_url_for(request: Request, settings: Settings) -> str:
    if settings.PUBLIC_BASE_URL:
        return settings.PUBLIC_BASE_URL.rstrip("/") + CALLBACK_PATH
    host = request.headers.get("host", "")
    proto = request.headers.get("x-forwarded-proto") or ("http" if "localhost" in host else "https")
    return f"{proto}://{host}{CALLBACK_PATH}"


router = APIRouter()


@router.get("/healthz", include_in_schema=False)
def healthz():
    return {"ok": True}


# ----- Chat submit (async job or legacy blocking call) -----
@router.post("/api/chat")
def submit_chat(
    request: Request,
    bg: BackgroundTasks,
    payload: Dict[str, Any] = Body(...),
    broker: Broker = Depends(get_broker),
):
    """
    payload example:
    { "messages": [{"role": "user", "content": "hello"}], "chatId": "c1", "userId": "u1",
      "model": "engine-async", "systemPrompt": null, "async": true }
    """
    messages = payload.get("messages")
    chat_id = payload.get("chatId")
    user_id = payload.get("userId")
    if not messages or not chat_id or not user_id:
        raise BadRequest("Error, missing information")

    if not isinstance(messages, list) or not isinstance(messages[-1], dict):
        raise BadRequest("messages must be a list of {role, content} objects")

    user_message = messages[-1].get("content") or ""
    if not isinstance(user_message, str):
        raise BadRequest("message content must be a string")
    chat_id = str(chat_id)
    session_id = join_session_id(str(user_id), chat_id)
    broker.chat_log.append(chat_id, ChatMessage(role="user", content=user_message))

    if payload.get("async"):
        job = broker.lifecycle.create(user_message, session_id)
        metadata = {"model": payload.get("model"), "systemPrompt": payload.get("systemPrompt")}
        broker.dispatcher.dispatch(
            job,
            callback_url_for(request, broker.settings),
            schedule=bg.add_task,
            metadata={k: v for k, v in metadata.items() if v},
        )
        return {
            "jobId": job.id,
            "success": True,
            "status": "processing",
            "message": "Request submitted for processing",
        }

    reply = broker.engine.send(user_message, session_id)
    broker.chat_log.append(chat_id, ChatMessage(role="assistant", content=reply.message))
    return StreamingResponse(
        data_stream(reply.message),
        media_type="text/plain; charset=utf-8",
        headers={"X-Vercel-AI-Data-Stream": "v1"},
    )


# ----- Job status (polled by clients) -----
@router.get("/api/chat/status/{job_id}")
def job_status(job_id: str, broker: Broker = Depends(get_broker)):
    view = broker.lifecycle.status(job_id)
    if view is None:
        raise JobNotFound(job_id)
    return JSONResponse(view.to_wire(), headers=NO_CACHE)


# ----- Engine callback -----
@router.post(CALLBACK_PATH)
def engine_callback(payload: Dict[str, Any] = Body(...), broker: Broker = Depends(get_broker)):
    return broker.callbacks.handle(payload)


@router.get("/api/chat/{chat_id}/messages")
def chat_messages(chat_id: str, broker: Broker = Depends(get_broker)):
    return {
        "chatId": chat_id,
        "messages": [m.model_dump() for m in broker.chat_log.messages(chat_id)],
    }


# ----- Aggregate health (API + engine reachability) -----
def _recommendations(latency_ms: int):
    if latency_ms > 3000:
        return ["Engine response time is slow (>3s). Check the workflow or network connectivity."]
    if latency_ms > 1000:
        return ["Engine response time is moderate (>1s). Monitor for improvements."]
    return ["Engine performance is good."]


@router.get("/api/health")
def health(broker: Broker = Depends(get_broker)):
    start = time.monotonic()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        latency, reachable = broker.dispatcher.ping()
        total = int((time.monotonic() - start) * 1000)
        body = {
            "status": "healthy" if reachable else "degraded",
            "timestamp": timestamp,
            "checks": {
                "api": {"status": "ok", "responseTime": total},
                "engine": {
                    "status": "ok" if reachable else "error",
                    "responseTime": latency,
                    "url": "configured" if broker.settings.engine_url_configured else "missing",
                },
            },
            "performance": {
                "latency": latency,
                "engineStatus": "reachable" if reachable else "unreachable",
                "recommendations": _recommendations(latency),
            },
        }
        # 206: broker fine, engine down
        return JSONResponse(body, status_code=200 if reachable else 206, headers=NO_CACHE)
    except Exception as e:
        logger.exception("health check failed")
        return JSONResponse(
            {
                "status": "error",
                "timestamp": timestamp,
                "error": str(e),
                "checks": {
                    "api": {"status": "error", "responseTime": int((time.monotonic() - start) * 1000)},
                    "engine": {"status": "unknown", "responseTime": None},
                },
            },
            status_code=500,
            headers=NO_CACHE,
        )


# ----- App -----
def create_app(
    settings: Optional[Settings] = None,
    store: Optional[JobStore] = None,
    engine: Optional[EngineClient] = None,
) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)
    broker = build_broker(settings, store=store, engine=engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.REAPER_ENABLED:
            broker.reaper.start()
        yield
        broker.reaper.stop(timeout=5)
        broker.dispatcher.shutdown()
        broker.engine.close()

    app = FastAPI(title="chatbroker", lifespan=lifespan)
    app.state.broker = broker

    # ----- CORS (permissive; preflight answered here) -----
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "x-csrf-token"],
        max_age=86400,
    )

    @app.exception_handler(BrokerError)
    async def broker_error(request: Request, exc: BrokerError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(exc.to_body(), status_code=exc.status_code, headers={"Access-Control-Allow-Origin": "*"})

    @app.exception_handler(RequestValidationError)
    async def malformed_body(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": "Malformed request body"}, status_code=400, headers={"Access-Control-Allow-Origin": "*"})

    app.include_router(router)
    return app


app = create_app()
