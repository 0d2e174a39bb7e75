"""Domain models for asynchronous vision jobs."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from eatlock.domain.vision import Stage


class JobStatus(StrEnum):
    """Lifecycle of a vision job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.DONE, JobStatus.FAILED})


@dataclass(frozen=True)
class VisionJob:
    """Represents a persisted vision job row."""

    id: str
    user_id: str
    stage: Stage
    r2_keys: dict[str, str]
    status: JobStatus
    session_id: str | None = None
    result_id: str | None = None
    error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class JobMessage:
    """Queue payload for one vision job.

    Fields are kept as received; validation happens in the consumer so that an
    invalid payload can still be failed and acknowledged.
    """

    job_id: str | None
    user_id: str | None
    stage: str | None
    r2_keys: dict[str, str]
    attempt: int = 1

    @classmethod
    def from_body(cls, body: dict[str, object]) -> "JobMessage":
        raw_keys = body.get("r2_keys")
        r2_keys = (
            {str(role): str(key) for role, key in raw_keys.items()}
            if isinstance(raw_keys, dict)
            else {}
        )
        raw_attempt = body.get("attempt")
        attempt = raw_attempt if isinstance(raw_attempt, int) and raw_attempt > 0 else 1
        return cls(
            job_id=_optional_str(body.get("job_id")),
            user_id=_optional_str(body.get("user_id")),
            stage=_optional_str(body.get("stage")),
            r2_keys=r2_keys,
            attempt=attempt,
        )

    def to_body(self) -> dict[str, object]:
        return {
            "job_id": self.job_id,
            "user_id": self.user_id,
            "stage": self.stage,
            "r2_keys": dict(self.r2_keys),
            "attempt": self.attempt,
        }


def _optional_str(value: object) -> str | None:
    if value is None or value == "":
        return None
    return str(value)
