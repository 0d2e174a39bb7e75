"""Supabase-backed vision job repository."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from eatlock.domain.jobs import JobStatus, VisionJob
from eatlock.domain.vision import Stage, VisionResult
from eatlock.services.jobs import VisionJobRepository

_JOB_COLUMNS = (
    "id, user_id, session_id, stage, r2_keys, status, result_id, error, "
    "created_at, updated_at"
)
_RESULT_COLUMNS = "verdict, confidence, finished_score, reason, roast, signals"


@dataclass
class SupabaseVisionJobRepository(VisionJobRepository):
    """Supabase implementation for ``vision_jobs`` and ``vision_results``."""

    client: Client

    def create_job(
        self,
        user_id: str,
        stage: Stage,
        r2_keys: dict[str, str],
        session_id: str | None,
    ) -> VisionJob:
        """Insert a queued job row and return it."""
        response = (
            self.client.table("vision_jobs")
            .insert(
                {
                    "user_id": user_id,
                    "session_id": session_id,
                    "stage": stage.value,
                    "r2_keys": r2_keys,
                    "status": JobStatus.QUEUED.value,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create job")
        return _job_from_row(response.data[0])

    def get_job(self, job_id: str, user_id: str | None = None) -> VisionJob | None:
        """Return a job by id, restricted to its owner when given."""
        query = self.client.table("vision_jobs").select(_JOB_COLUMNS).eq("id", job_id)
        if user_id is not None:
            query = query.eq("user_id", user_id)
        response = query.limit(1).execute()
        if not response.data:
            return None
        return _job_from_row(response.data[0])

    def mark_processing(self, job_id: str) -> None:
        """Set status to processing."""
        self._update(job_id, {"status": JobStatus.PROCESSING.value})

    def mark_queued(self, job_id: str, error: str) -> None:
        """Return a job to queued with the failed attempt recorded."""
        self._update(job_id, {"status": JobStatus.QUEUED.value, "error": error})

    def mark_done(self, job_id: str, result_id: str) -> None:
        """Set status to done with the result reference."""
        self._update(job_id, {"status": JobStatus.DONE.value, "result_id": result_id})

    def mark_failed(self, job_id: str, error: str) -> None:
        """Set status to failed with an error message."""
        self._update(job_id, {"status": JobStatus.FAILED.value, "error": error})

    def create_result(
        self, job_id: str, user_id: str | None, result: VisionResult
    ) -> str:
        """Insert a result row and return its id."""
        response = (
            self.client.table("vision_results")
            .insert(
                {
                    "job_id": job_id,
                    "user_id": user_id,
                    "verdict": result.verdict,
                    "confidence": result.confidence,
                    "finished_score": result.finished_score,
                    "reason": result.reason,
                    "roast": result.roast,
                    "signals": result.signals,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to store vision result")
        return str(response.data[0]["id"])

    def get_result(self, result_id: str) -> VisionResult | None:
        """Return a stored result by id."""
        response = (
            self.client.table("vision_results")
            .select(_RESULT_COLUMNS)
            .eq("id", result_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        return VisionResult(
            verdict=row["verdict"],
            confidence=row["confidence"],
            finished_score=row.get("finished_score"),
            reason=row.get("reason"),
            roast=row.get("roast"),
            signals=row.get("signals") or {},
        )

    def _update(self, job_id: str, values: dict[str, object]) -> None:
        self.client.table("vision_jobs").update(
            {**values, "updated_at": datetime.now(tz=UTC).isoformat()}
        ).eq("id", job_id).execute()


def _job_from_row(row: dict[str, object]) -> VisionJob:
    return VisionJob(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        stage=Stage(row["stage"]),
        r2_keys=dict(row.get("r2_keys") or {}),
        status=JobStatus(row["status"]),
        session_id=row.get("session_id"),
        result_id=str(row["result_id"]) if row.get("result_id") else None,
        error=row.get("error"),
        created_at=_parse_timestamp(row.get("created_at")),
        updated_at=_parse_timestamp(row.get("updated_at")),
    )


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    return datetime.fromisoformat(value)
