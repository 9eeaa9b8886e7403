"""
Workflow engine client (webhook intake).

Three calls, all plain requests:
- fire(): intake post for an async job; the engine answers the callback later
- send(): legacy blocking round-trip, never raises (falls back to an apology)
- ping(): HEAD connectivity check for health reporting
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import requests
from pydantic import BaseModel

from chatbroker.errors import UpstreamTimeout, UpstreamUnreachable
from chatbroker.settings import Settings

logger = logging.getLogger(__name__)

TIMEOUT_FALLBACK = (
    "I apologize, but I'm experiencing some technical difficulties right now. "
    "Please try your question again in a moment."
)
ERROR_FALLBACK = "I'm having trouble processing your request right now. Please try again."


class ChatResponse(BaseModel):
    message: str
    success: bool
    error: Optional[str] = None
    response_time: Optional[int] = None  # ms


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _reply_object(data: Any) -> Dict[str, Any]:
    # webhook nodes often answer with a list of items; the first one carries the reply
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    return data if isinstance(data, dict) else {}


def _reply_text(data: Dict[str, Any]) -> str:
    for key in ("response", "message", "output"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


class EngineClient:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.url = settings.ENGINE_WEBHOOK_URL
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": settings.ENGINE_USER_AGENT,
            "Cache-Control": "no-cache",
        })

    # ---------- payloads ----------
    def build_payload(self, message: str, session_id: str, **extra: Any) -> Dict[str, Any]:
        payload = {
            "message": message,
            "language": self.settings.ENGINE_LANGUAGE,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "sessionId": session_id,
            "userAgent": self.settings.ENGINE_USER_AGENT,
            "referrer": self.settings.ENGINE_REFERRER,
        }
        payload.update({k: v for k, v in extra.items() if v is not None})
        return payload

    def _post(self, payload: Dict[str, Any], timeout: float) -> requests.Response:
        try:
            r = self.session.post(self.url, json=payload, timeout=timeout)
        except requests.Timeout as e:
            raise UpstreamTimeout(f"engine timeout after {timeout}s") from e
        except requests.RequestException as e:
            raise UpstreamUnreachable(f"engine unreachable: {e}") from e
        if not r.ok:
            raise UpstreamUnreachable(f"engine webhook error: {r.status_code} {r.reason}")
        return r

    # ---------- calls ----------
    def fire(self, payload: Dict[str, Any]) -> None:
        """Deliver an intake payload. Raises UpstreamTimeout / UpstreamUnreachable."""
        start = time.monotonic()
        self._post(payload, self.settings.DISPATCH_TIMEOUT_SECONDS)
        logger.info("engine accepted job %s in %sms", payload.get("jobId"), _elapsed_ms(start))

    def send(self, message: str, session_id: str) -> ChatResponse:
        start = time.monotonic()
        payload = self.build_payload(message, session_id)
        try:
            r = self._post(payload, self.settings.SYNC_TIMEOUT_SECONDS)
            data = _reply_object(r.json())
        except (UpstreamTimeout, UpstreamUnreachable, ValueError) as e:
            elapsed = _elapsed_ms(start)
            logger.error("engine call failed after %sms: %s", elapsed, e)
            return ChatResponse(
                message=TIMEOUT_FALLBACK if isinstance(e, UpstreamTimeout) else ERROR_FALLBACK,
                success=False,
                error=str(e),
                response_time=elapsed,
            )
        elapsed = _elapsed_ms(start)
        logger.info("engine responded in %sms", elapsed)
        return ChatResponse(
            message=_reply_text(data),
            success=data.get("success") is not False,
            response_time=elapsed,
        )

    def ping(self) -> Tuple[int, bool]:
        start = time.monotonic()
        try:
            r = self.session.head(self.url, timeout=self.settings.PING_TIMEOUT_SECONDS)
        except requests.RequestException as e:
            logger.warning("engine ping failed: %s", e)
            return _elapsed_ms(start), False
        return _elapsed_ms(start), r.ok

    def close(self) -> None:
        self.session.close()
