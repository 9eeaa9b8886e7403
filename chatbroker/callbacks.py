"""Engine completion callbacks."""

import logging
from typing import Any, Dict, Optional

from chatbroker.chatlog import ChatLog
from chatbroker.errors import BadRequest, BrokerError, InternalError, JobNotFound
from chatbroker.lifecycle import JobLifecycle
from chatbroker.models import ChatMessage
from chatbroker.sessions import chat_id_from_session

logger = logging.getLogger(__name__)


class CallbackIngress:
    def __init__(self, lifecycle: JobLifecycle, chat_log: Optional[ChatLog] = None):
        self.lifecycle = lifecycle
        self.chat_log = chat_log

    def handle(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        payload: { "jobId": "...", "response": "...", "success": true, "error": null, "sessionId": "u_c" }
        Raises BadRequest (no jobId), JobNotFound, InternalError.
        """
        try:
            return self._handle(payload)
        except BrokerError:
            raise
        except Exception as e:
            logger.exception("callback handling failed")
            raise InternalError(str(e)) from e

    def _handle(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise BadRequest("Malformed callback body")
        job_id = payload.get("jobId")
        if not job_id:
            raise BadRequest("Missing jobId")

        response = payload.get("response")
        success = payload.get("success", True) is not False
        error = payload.get("error")
        session_id = payload.get("sessionId")
        for field, value in (("response", response), ("error", error), ("sessionId", session_id)):
            if value is not None and not isinstance(value, str):
                raise BadRequest(f"{field} must be a string")

        logger.info("callback received for job %s (success=%s)", job_id, success)
        if not self.lifecycle.complete(job_id, response, success, error):
            raise JobNotFound(job_id)

        if session_id and response and success:
            self._save_reply(session_id, response)

        return {"success": True, "message": "Job completed", "jobId": job_id}

    def _save_reply(self, session_id: str, response: str) -> None:
        if self.chat_log is None:
            return
        try:
            chat_id = chat_id_from_session(session_id)
            if chat_id:
                self.chat_log.append(chat_id, ChatMessage(role="assistant", content=response))
                logger.info("saved assistant reply for chat %s", chat_id)
        except Exception:
            # chat history is best-effort; the callback itself already succeeded
            logger.exception("failed to save assistant reply for session %s", session_id)
