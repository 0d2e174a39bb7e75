"""Shared test fixtures."""

import json
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from uuid import uuid4

import pytest

from eatlock.adapters.memory_queue import InMemoryVisionQueue
from eatlock.adapters.openfoodfacts_client import OpenFoodFactsClient
from eatlock.config import Settings, parse_user_ids
from eatlock.containers import AppContainer
from eatlock.domain.barcode import BarcodeProduct
from eatlock.domain.jobs import JobStatus, VisionJob
from eatlock.domain.vision import Stage, VisionResult
from eatlock.services.auth import AuthGate, IdentityClient
from eatlock.services.barcode import BarcodeCacheRepository, BarcodeService
from eatlock.services.cleanup import StaleUploadSweeper
from eatlock.services.images import (
    ImageService,
    ObjectEntry,
    ObjectStore,
    StoredObject,
)
from eatlock.services.jobs import (
    QueueMessage,
    VisionJobConsumer,
    VisionJobRepository,
    VisionJobService,
)
from eatlock.services.rate_limit import (
    AbuseGuard,
    FailedScanTracker,
    InMemoryRateLimiter,
)
from eatlock.services.uploads import UploadService
from eatlock.services.verification import (
    DevBypass,
    NutritionQuota,
    NutritionQuotaRepository,
    VerificationService,
    build_policies,
)
from eatlock.services.vision import VisionClient, VisionService

USER_ID = "user-123"
TOKEN = "header.payload.signature"
AUTH_HEADERS = {"Authorization": f"Bearer {TOKEN}"}
JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-bytes"


def food_check_json(
    *, is_food: bool = True, reason_code: str = "OK", confidence: float = 0.93
) -> str:
    return json.dumps(
        {
            "isFood": is_food,
            "confidence": confidence,
            "hasPlateOrBowl": is_food,
            "quality": {"brightness": 0.8, "blur": 0.9, "framing": 0.85},
            "reasonCode": reason_code,
            "roastLine": "Nice plate 🍝",
            "retakeHint": "" if is_food else "Point the camera at your meal",
        }
    )


def comparison_json(verdict: str = "EATEN", confidence: float = 0.9) -> str:
    return json.dumps(
        {
            "isSameScene": True,
            "duplicateScore": 0.1,
            "foodChangeScore": 0.9 if verdict == "EATEN" else 0.3,
            "verdict": verdict,
            "confidence": confidence,
            "reasonCode": "OK" if verdict == "EATEN" else "CANT_TELL",
            "roastLine": "Clean plate club 🏆",
            "retakeHint": "",
        }
    )


def nutrition_json() -> str:
    return json.dumps(
        {
            "food_label": "spaghetti bolognese",
            "estimated_calories": 650,
            "min_calories": 520,
            "max_calories": 780,
            "confidence": 0.6,
            "notes": "Assumes a standard restaurant portion.",
        }
    )


def start_scan_json(verdict: str = "FOOD_OK") -> str:
    return json.dumps(
        {
            "verdict": verdict,
            "confidence": 0.88,
            "finished_score": None,
            "reason": "A bowl of ramen on a table.",
            "roast": "Slurp responsibly 🍜",
            "signals": {
                "has_food": True,
                "food_type": "ramen",
                "is_screenshot": False,
                "is_stock_photo": False,
                "plate_visible": True,
            },
        }
    )


def end_scan_json(verdict: str = "FINISHED", finished_score: float = 0.95) -> str:
    return json.dumps(
        {
            "verdict": verdict,
            "confidence": 0.9,
            "finished_score": finished_score,
            "reason": "The bowl is empty.",
            "roast": "Not a noodle left behind 🥢",
            "signals": {
                "plate_empty": True,
                "food_remaining_pct": 5,
                "same_setting": True,
                "utensils_moved": True,
                "napkin_used": False,
            },
        }
    )


@dataclass
class FakeIdentityClient(IdentityClient):
    """Identity provider that knows a fixed set of tokens."""

    tokens: dict[str, str] = field(default_factory=lambda: {TOKEN: USER_ID})
    calls: list[str] = field(default_factory=list)

    async def get_user_id(self, access_token: str) -> str | None:
        self.calls.append(access_token)
        return self.tokens.get(access_token)


@dataclass
class InMemoryObjectStore(ObjectStore):
    """Object store backed by a dictionary."""

    objects: dict[str, StoredObject] = field(default_factory=dict)
    deleted: list[str] = field(default_factory=list)
    failing_deletes: set[str] = field(default_factory=set)
    get_error: Exception | None = None
    uploaded: dict[str, datetime] = field(default_factory=dict)

    def add(
        self, key: str, content: bytes = JPEG_BYTES, content_type: str = "image/jpeg"
    ) -> None:
        self.objects[key] = StoredObject(key, content, content_type)

    async def get(self, key: str) -> StoredObject | None:
        if self.get_error is not None:
            raise self.get_error
        return self.objects.get(key)

    async def put(self, key: str, content: bytes, content_type: str) -> None:
        self.objects[key] = StoredObject(key, content, content_type)

    async def delete(self, key: str) -> None:
        self.deleted.append(key)
        if key in self.failing_deletes:
            raise RuntimeError(f"delete failed for {key}")
        self.objects.pop(key, None)

    async def list_objects(self, prefix: str) -> list[ObjectEntry]:
        return [
            ObjectEntry(key, self.uploaded.get(key, datetime.now(UTC)))
            for key in self.objects
            if key.startswith(prefix)
        ]


@dataclass
class ScriptedVisionClient(VisionClient):
    """Vision client replaying scripted outputs or errors in order."""

    outputs: list[str | Exception] = field(default_factory=list)
    calls: list[dict[str, object]] = field(default_factory=list)

    async def respond(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        instructions: str,
        content: list[dict[str, object]],
        schema_name: str,
        schema: dict[str, object],
    ) -> str:
        self.calls.append(
            {
                "model": model,
                "instructions": instructions,
                "content": content,
                "schema_name": schema_name,
            }
        )
        if not self.outputs:
            raise AssertionError("Unexpected vision call")
        output = self.outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        return output


@dataclass
class InMemoryVisionJobRepository(VisionJobRepository):
    """In-memory jobs and results with a status history per job."""

    jobs: dict[str, VisionJob] = field(default_factory=dict)
    results: dict[str, VisionResult] = field(default_factory=dict)
    history: dict[str, list[JobStatus]] = field(default_factory=dict)
    fail_updates: bool = False

    def add_job(
        self,
        job_id: str,
        stage: Stage = Stage.START_SCAN,
        r2_keys: dict[str, str] | None = None,
        status: JobStatus = JobStatus.QUEUED,
        user_id: str = USER_ID,
    ) -> VisionJob:
        job = VisionJob(
            id=job_id,
            user_id=user_id,
            stage=stage,
            r2_keys=r2_keys or {},
            status=status,
            created_at=datetime(2026, 1, 5, 12, 0, tzinfo=UTC),
            updated_at=datetime(2026, 1, 5, 12, 0, tzinfo=UTC),
        )
        self.jobs[job_id] = job
        self.history[job_id] = [status]
        return job

    def create_job(
        self,
        user_id: str,
        stage: Stage,
        r2_keys: dict[str, str],
        session_id: str | None,
    ) -> VisionJob:
        job = self.add_job(str(uuid4()), stage, r2_keys, user_id=user_id)
        job = self._replace(job.id, session_id=session_id)
        return job

    def get_job(self, job_id: str, user_id: str | None = None) -> VisionJob | None:
        job = self.jobs.get(job_id)
        if job is None or (user_id is not None and job.user_id != user_id):
            return None
        return job

    def mark_processing(self, job_id: str) -> None:
        self._transition(job_id, JobStatus.PROCESSING)

    def mark_queued(self, job_id: str, error: str) -> None:
        self._transition(job_id, JobStatus.QUEUED, error=error)

    def mark_done(self, job_id: str, result_id: str) -> None:
        self._transition(job_id, JobStatus.DONE, result_id=result_id)

    def mark_failed(self, job_id: str, error: str) -> None:
        self._transition(job_id, JobStatus.FAILED, error=error)

    def create_result(
        self, job_id: str, user_id: str | None, result: VisionResult
    ) -> str:
        result_id = str(uuid4())
        self.results[result_id] = result
        return result_id

    def get_result(self, result_id: str) -> VisionResult | None:
        return self.results.get(result_id)

    def _transition(self, job_id: str, status: JobStatus, **changes: object) -> None:
        if self.fail_updates and status is not JobStatus.PROCESSING:
            raise RuntimeError("database unavailable")
        if job_id not in self.jobs:
            return
        self._replace(job_id, status=status, **changes)
        self.history[job_id].append(status)

    def _replace(self, job_id: str, **changes: object) -> VisionJob:
        self.jobs[job_id] = replace(self.jobs[job_id], **changes)
        return self.jobs[job_id]


@dataclass
class InMemoryNutritionQuotaRepository(NutritionQuotaRepository):
    """Counts estimates per user like the database function."""

    used: dict[str, int] = field(default_factory=dict)

    def consume_nutrition_quota(self, user_id: str, limit: int) -> NutritionQuota:
        count = self.used.get(user_id, 0)
        if count >= limit:
            return NutritionQuota(allowed=False, used=count, limit=limit)
        self.used[user_id] = count + 1
        return NutritionQuota(allowed=True, used=count + 1, limit=limit)


@dataclass
class InMemoryBarcodeCache(BarcodeCacheRepository):
    """Barcode cache that records upserts."""

    products: dict[str, BarcodeProduct] = field(default_factory=dict)
    upserts: list[str] = field(default_factory=list)
    fail_upserts: bool = False

    def get_product(self, barcode: str) -> BarcodeProduct | None:
        return self.products.get(barcode)

    def upsert_product(self, barcode: str, product: BarcodeProduct) -> None:
        self.upserts.append(barcode)
        if self.fail_upserts:
            raise RuntimeError("cache unavailable")
        self.products[barcode] = product


@dataclass
class FakeOpenFoodFactsClient(OpenFoodFactsClient):
    """Product database returning a fixed payload."""

    payload: dict[str, object] | None = None
    calls: list[str] = field(default_factory=list)

    async def get_product(self, barcode: str) -> dict[str, object] | None:
        self.calls.append(barcode)
        return self.payload


@dataclass
class RecordingQueue:
    """Queue producer that keeps sent payloads."""

    sent: list[dict[str, object]] = field(default_factory=list)

    async def send(self, payload: dict[str, object]) -> None:
        self.sent.append(payload)


@dataclass
class FakeQueueMessage(QueueMessage):
    """Queue message recording how it was settled."""

    body: dict[str, object]
    acks: int = 0
    retries: list[float] = field(default_factory=list)

    def ack(self) -> None:
        self.acks += 1

    def retry(self, delay_seconds: float) -> None:
        self.retries.append(delay_seconds)


@dataclass
class FakeClock:
    """Manually advanced clock for limiter tests."""

    now: float = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="service.role.key",
        openai_api_key="openai-key",
    )


@pytest.fixture
def identity_client() -> FakeIdentityClient:
    return FakeIdentityClient()


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def vision_client() -> ScriptedVisionClient:
    return ScriptedVisionClient()


@pytest.fixture
def job_repository() -> InMemoryVisionJobRepository:
    return InMemoryVisionJobRepository()


@pytest.fixture
def quota_repository() -> InMemoryNutritionQuotaRepository:
    return InMemoryNutritionQuotaRepository()


@pytest.fixture
def barcode_cache() -> InMemoryBarcodeCache:
    return InMemoryBarcodeCache()


@pytest.fixture
def openfoodfacts_client() -> FakeOpenFoodFactsClient:
    return FakeOpenFoodFactsClient()


@pytest.fixture
def job_queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def guard(settings: Settings) -> AbuseGuard:
    return AbuseGuard(
        limiter=InMemoryRateLimiter(),
        failed_scans=FailedScanTracker(),
        enforce=settings.enforce_limits,
        daily_limits_enabled=not settings.disable_daily_limits,
    )


@pytest.fixture
def vision_service(
    settings: Settings, vision_client: ScriptedVisionClient
) -> VisionService:
    return VisionService(
        client=vision_client,
        model=settings.openai_model,
        reasoning_effort=settings.openai_reasoning_effort,
        store=settings.openai_store,
    )


@pytest.fixture
def container(  # noqa: PLR0913
    settings: Settings,
    guard: AbuseGuard,
    identity_client: FakeIdentityClient,
    object_store: InMemoryObjectStore,
    vision_service: VisionService,
    job_repository: InMemoryVisionJobRepository,
    quota_repository: InMemoryNutritionQuotaRepository,
    barcode_cache: InMemoryBarcodeCache,
    openfoodfacts_client: FakeOpenFoodFactsClient,
    job_queue: RecordingQueue,
) -> AppContainer:
    image_service = ImageService(object_store)
    verification_service = VerificationService(
        guard=guard,
        images=image_service,
        vision=vision_service,
        quota_repository=quota_repository,
        policies=build_policies(
            verify_daily_limit=settings.verify_daily_limit,
            compare_daily_limit=settings.compare_daily_limit,
        ),
        nutrition_daily_limit=settings.nutrition_daily_limit,
        dev_bypass=DevBypass(
            user_ids=parse_user_ids(settings.dev_bypass_user_ids),
            token=settings.dev_bypass_token,
        ),
    )

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        auth_gate=AuthGate(identity_client),
        verification_service=verification_service,
        upload_service=UploadService(guard=guard, images=image_service),
        job_service=VisionJobService(repository=job_repository, queue=job_queue),
        job_consumer=VisionJobConsumer(
            repository=job_repository,
            images=image_service,
            vision=vision_service,
            max_retries=settings.queue_max_retries,
        ),
        barcode_service=BarcodeService(
            guard=guard, cache=barcode_cache, client=openfoodfacts_client
        ),
        queue=InMemoryVisionQueue(),
        upload_sweeper=StaleUploadSweeper(images=image_service),
        close_resources=close_resources,
    )
