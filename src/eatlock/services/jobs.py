"""Asynchronous vision jobs: enqueueing, status polling and queue consumption."""

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from eatlock.domain.jobs import TERMINAL_STATUSES, JobMessage, JobStatus, VisionJob
from eatlock.domain.vision import Stage, VisionResult
from eatlock.errors import EatLockError, ForbiddenError, NotFoundError, ValidationError
from eatlock.services.contracts import STAGE_CONTRACTS
from eatlock.services.images import ImageService
from eatlock.services.vision import LabeledImage, VisionService

_logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 30


class VisionJobRepository(Protocol):
    """Persistence interface for vision jobs and their results."""

    def create_job(
        self,
        user_id: str,
        stage: Stage,
        r2_keys: dict[str, str],
        session_id: str | None,
    ) -> VisionJob:
        """Insert a queued job and return it."""

    def get_job(self, job_id: str, user_id: str | None = None) -> VisionJob | None:
        """Return a job, optionally restricted to its owner."""

    def mark_processing(self, job_id: str) -> None:
        """Set status to processing."""

    def mark_queued(self, job_id: str, error: str) -> None:
        """Return a job to the queue, recording the failed attempt."""

    def mark_done(self, job_id: str, result_id: str) -> None:
        """Set status to done with a reference to the stored result."""

    def mark_failed(self, job_id: str, error: str) -> None:
        """Set status to failed with an error message."""

    def create_result(
        self, job_id: str, user_id: str | None, result: VisionResult
    ) -> str:
        """Store the result of a job and return its id."""

    def get_result(self, result_id: str) -> VisionResult | None:
        """Return a stored result by id."""


class VisionQueue(Protocol):
    """Producer side of the job queue."""

    async def send(self, payload: dict[str, object]) -> None:
        """Publish one job message."""


class QueueMessage(Protocol):
    """A delivered message the consumer must settle exactly once."""

    body: dict[str, object]

    def ack(self) -> None:
        """Remove the message from the queue."""

    def retry(self, delay_seconds: float) -> None:
        """Redeliver the message after a delay."""


class EnqueueRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stage: Stage
    r2_keys: dict[str, str] = Field(min_length=1)
    session_id: str | None = None


@dataclass
class VisionJobService:
    """Creates queued jobs and reports their progress to the owner."""

    repository: VisionJobRepository
    queue: VisionQueue

    async def enqueue(self, user_id: str, payload: object) -> dict[str, object]:
        """Create a job row and publish it to the queue."""
        request = _parse_enqueue(payload)
        for key in request.r2_keys.values():
            if user_id not in key:
                raise ForbiddenError("r2_key does not belong to user")
        job = await asyncio.to_thread(
            self.repository.create_job,
            user_id=user_id,
            stage=request.stage,
            r2_keys=request.r2_keys,
            session_id=request.session_id,
        )
        message = JobMessage(
            job_id=job.id,
            user_id=user_id,
            stage=request.stage.value,
            r2_keys=request.r2_keys,
        )
        await self.queue.send(message.to_body())
        _logger.info("Queued vision job %s", job.id, extra={"stage": job.stage})
        return {"job_id": job.id, "status": JobStatus.QUEUED.value}

    async def get_status(self, user_id: str, job_id: str) -> dict[str, object]:
        """Return the caller's job with its result once available."""
        job = await asyncio.to_thread(self.repository.get_job, job_id, user_id)
        if job is None:
            raise NotFoundError("Job not found")
        result = (
            await asyncio.to_thread(self.repository.get_result, job.result_id)
            if job.result_id
            else None
        )
        return {
            "job_id": job.id,
            "stage": job.stage.value,
            "status": job.status.value,
            "error": job.error,
            "result": result.model_dump() if result else None,
            "created_at": job.created_at.isoformat() if job.created_at else None,
            "updated_at": job.updated_at.isoformat() if job.updated_at else None,
        }


def _parse_enqueue(payload: object) -> EnqueueRequest:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON body")
    if not payload.get("stage") or not payload.get("r2_keys"):
        raise ValidationError("Missing stage or r2_keys")
    try:
        return EnqueueRequest.model_validate(payload)
    except PydanticValidationError as exc:
        fields = {str(error["loc"][0]) for error in exc.errors() if error["loc"]}
        if fields == {"stage"}:
            raise ValidationError("Invalid stage") from exc
        raise ValidationError("Invalid stage or r2_keys") from exc


@dataclass
class VisionJobConsumer:
    """Processes job messages with bounded retries and one-time cleanup.

    Source photos are deleted once per job: after the result is stored, or
    when the job fails for good. A job waiting for a retry keeps its photos.
    """

    repository: VisionJobRepository
    images: ImageService
    vision: VisionService
    max_retries: int = 5

    async def handle_batch(self, messages: Sequence[QueueMessage]) -> None:
        """Process messages one after another."""
        for message in messages:
            await self.process(message)

    async def process(self, message: QueueMessage) -> None:
        """Settle one message by acknowledging it or scheduling a retry."""
        job = JobMessage.from_body(message.body)
        invalid = invalid_reason(job)
        if invalid:
            _logger.error("Permanent error for job %s: %s", job.job_id, invalid)
            if job.job_id:
                await self._record(
                    self.repository.mark_failed,
                    job.job_id,
                    f"Invalid payload: {invalid}",
                )
            await self.images.delete_many(job.r2_keys.values())
            message.ack()
            return

        try:
            existing = await asyncio.to_thread(self.repository.get_job, job.job_id)
            if existing is not None and existing.status in TERMINAL_STATUSES:
                _logger.info("Skipping job %s, already %s", job.job_id, existing.status)
                message.ack()
                return
            await self._run(job)
        except Exception as exc:
            _logger.error(
                "Job %s attempt %s failed: %s",
                job.job_id,
                job.attempt,
                exc,
                exc_info=exc,
            )
            detail = _error_text(exc)
            if is_retryable(exc) and job.attempt <= self.max_retries:
                await self._record(
                    self.repository.mark_queued,
                    job.job_id,
                    f"Attempt {job.attempt} failed: {detail[:200]}",
                )
                message.retry(backoff_seconds(job.attempt))
                return
            await self._record(
                self.repository.mark_failed,
                job.job_id,
                f"After {job.attempt} attempts: {detail[:400]}",
            )
        await self.images.delete_many(job.r2_keys.values())
        message.ack()

    async def _run(self, job: JobMessage) -> None:
        stage = Stage(job.stage)
        await asyncio.to_thread(self.repository.mark_processing, job.job_id)
        roles = list(job.r2_keys)
        fetched = await self.images.fetch_many(job.r2_keys.values())
        labeled = [
            LabeledImage(image, label=f"{role}:" if len(roles) > 1 else None)
            for role, image in zip(roles, fetched, strict=True)
        ]
        verdict = await self.vision.infer(STAGE_CONTRACTS[stage], labeled)
        result = VisionResult.model_validate(verdict.model_dump())
        result_id = await asyncio.to_thread(
            self.repository.create_result, job.job_id, job.user_id, result
        )
        await asyncio.to_thread(self.repository.mark_done, job.job_id, result_id)
        _logger.info("Vision job %s done: %s", job.job_id, result.verdict)

    async def _record(
        self, update: Callable[[str, str], None], job_id: str, error: str
    ) -> None:
        """Persist a failure-path status change; errors here are only logged."""
        try:
            await asyncio.to_thread(update, job_id, error)
        except Exception:
            _logger.exception("Failed to update job %s", job_id)


def invalid_reason(job: JobMessage) -> str | None:
    """Return why a payload can never succeed, or None when it is usable."""
    if not job.job_id:
        return "missing job_id"
    if job.stage not in {stage.value for stage in Stage}:
        return "invalid stage"
    if not job.r2_keys:
        return "missing r2_keys"
    return None


def is_retryable(exc: BaseException) -> bool:
    """Classify an error as transient from its type, never its text."""
    if isinstance(exc, EatLockError):
        return exc.retryable
    return isinstance(exc, httpx.TransportError)


def backoff_seconds(attempt: int) -> int:
    """Exponential redelivery delay capped at thirty seconds."""
    return min(2**attempt, MAX_BACKOFF_SECONDS)


def _error_text(exc: Exception) -> str:
    if isinstance(exc, EatLockError):
        return exc.message
    return str(exc) or type(exc).__name__
