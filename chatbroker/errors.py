"""Error taxonomy shared by the broker, the engine client and the poller.

Every error carries the HTTP status it maps to at the API boundary.
"""

from typing import Any, Dict, Optional


class BrokerError(Exception):
    status_code = 500

    def __init__(self, message: str, *, job_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.message}


class BadRequest(BrokerError):
    status_code = 400


class JobNotFound(BrokerError):
    status_code = 404

    def __init__(self, job_id: str, message: str = "Job not found"):
        super().__init__(message, job_id=job_id)


class UpstreamUnreachable(BrokerError):
    """Connect failure or non-2xx answer from the engine."""

    status_code = 502


class UpstreamTimeout(BrokerError):
    status_code = 504


class InternalError(BrokerError):
    status_code = 500

    def __init__(self, details: str, *, job_id: Optional[str] = None):
        super().__init__("Internal server error", job_id=job_id)
        self.details = details

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.message, "details": self.details}


# ---------- client-side (poller) ----------
class PollingTimeout(BrokerError):
    status_code = 408


class JobFailed(BrokerError):
    """The job reached the failed state; message is the job's error."""

    status_code = 502
