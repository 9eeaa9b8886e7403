"""HTTP client for the broker's own API (what a chat front end calls)."""

import logging
from typing import Any, Dict, List, Optional

import requests

from chatbroker.errors import BadRequest, BrokerError, JobNotFound

logger = logging.getLogger(__name__)


class BrokerClient:
    def __init__(self, base_url: str, session: Optional[requests.Session] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _check(self, r: requests.Response, job_id: Optional[str] = None) -> Dict[str, Any]:
        if r.status_code == 404:
            raise JobNotFound(job_id or "", "Job not found")
        if r.status_code == 400:
            raise BadRequest(_error_of(r))
        if not r.ok:
            raise BrokerError(f"{r.status_code} {r.reason}: {_error_of(r)}", job_id=job_id)
        return r.json()

    def submit(
        self,
        messages: List[Dict[str, str]],
        chat_id: str,
        user_id: str,
        model: str = "engine-async",
        system_prompt: Optional[str] = None,
    ) -> str:
        """Start an async chat job and return its id."""
        body = {
            "messages": messages,
            "chatId": chat_id,
            "userId": user_id,
            "model": model,
            "systemPrompt": system_prompt,
            "async": True,
        }
        data = self._check(self.session.post(f"{self.base_url}/api/chat", json=body, timeout=self.timeout))
        if not data.get("success") or not data.get("jobId"):
            raise BrokerError(data.get("error") or "Failed to create chat job")
        return data["jobId"]

    def get_status(self, job_id: str) -> Dict[str, Any]:
        r = self.session.get(f"{self.base_url}/api/chat/status/{job_id}", timeout=self.timeout)
        return self._check(r, job_id)

    def close(self) -> None:
        self.session.close()


def _error_of(r: requests.Response) -> str:
    try:
        return (r.json() or {}).get("error") or r.text
    except ValueError:
        return r.text
