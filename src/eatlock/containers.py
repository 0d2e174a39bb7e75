"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from eatlock.adapters.memory_queue import InMemoryVisionQueue
from eatlock.adapters.openai_vision_client import OpenAIVisionClient
from eatlock.adapters.openfoodfacts_client import HttpxOpenFoodFactsClient
from eatlock.adapters.supabase_auth_client import HttpxSupabaseAuthClient
from eatlock.adapters.supabase_barcode_cache_repository import (
    SupabaseBarcodeCacheRepository,
)
from eatlock.adapters.supabase_job_repository import SupabaseVisionJobRepository
from eatlock.adapters.supabase_quota_repository import (
    SupabaseNutritionQuotaRepository,
)
from eatlock.adapters.supabase_storage_client import HttpxStorageClient
from eatlock.config import Settings, parse_user_ids
from eatlock.services.auth import AuthGate
from eatlock.services.barcode import BarcodeService
from eatlock.services.cleanup import StaleUploadSweeper
from eatlock.services.images import ImageService
from eatlock.services.jobs import VisionJobConsumer, VisionJobService
from eatlock.services.rate_limit import (
    AbuseGuard,
    FailedScanTracker,
    InMemoryRateLimiter,
)
from eatlock.services.uploads import UploadService
from eatlock.services.verification import (
    DevBypass,
    VerificationService,
    build_policies,
)
from eatlock.services.vision import VisionService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    auth_gate: AuthGate
    verification_service: VerificationService
    upload_service: UploadService
    job_service: VisionJobService
    job_consumer: VisionJobConsumer
    barcode_service: BarcodeService
    queue: InMemoryVisionQueue
    upload_sweeper: StaleUploadSweeper
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    job_repository = SupabaseVisionJobRepository(supabase_client)
    barcode_cache = SupabaseBarcodeCacheRepository(supabase_client)
    quota_repository = SupabaseNutritionQuotaRepository(supabase_client)

    auth_client = HttpxSupabaseAuthClient.create(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    storage_client = HttpxStorageClient.create(
        resolved_settings.supabase_url,
        resolved_settings.supabase_service_key,
        resolved_settings.storage_bucket,
    )
    openai_client = OpenAIVisionClient.create(resolved_settings.openai_api_key)
    openfoodfacts_client = HttpxOpenFoodFactsClient.create(
        resolved_settings.openfoodfacts_base_url
    )

    guard = AbuseGuard(
        limiter=InMemoryRateLimiter(),
        failed_scans=FailedScanTracker(),
        enforce=resolved_settings.enforce_limits,
        daily_limits_enabled=not resolved_settings.disable_daily_limits,
    )
    image_service = ImageService(storage_client)
    vision_service = VisionService(
        client=openai_client,
        model=resolved_settings.openai_model,
        reasoning_effort=resolved_settings.openai_reasoning_effort,
        store=resolved_settings.openai_store,
    )
    verification_service = VerificationService(
        guard=guard,
        images=image_service,
        vision=vision_service,
        quota_repository=quota_repository,
        policies=build_policies(
            verify_daily_limit=resolved_settings.verify_daily_limit,
            compare_daily_limit=resolved_settings.compare_daily_limit,
        ),
        nutrition_daily_limit=resolved_settings.nutrition_daily_limit,
        dev_bypass=DevBypass(
            user_ids=parse_user_ids(resolved_settings.dev_bypass_user_ids),
            token=resolved_settings.dev_bypass_token,
        ),
    )
    queue = InMemoryVisionQueue()

    async def close_resources() -> None:
        await auth_client.close()
        await storage_client.close()
        await openfoodfacts_client.close()
        await openai_client.close()

    return AppContainer(
        settings=resolved_settings,
        auth_gate=AuthGate(auth_client),
        verification_service=verification_service,
        upload_service=UploadService(guard=guard, images=image_service),
        job_service=VisionJobService(repository=job_repository, queue=queue),
        job_consumer=VisionJobConsumer(
            repository=job_repository,
            images=image_service,
            vision=vision_service,
            max_retries=resolved_settings.queue_max_retries,
        ),
        barcode_service=BarcodeService(
            guard=guard, cache=barcode_cache, client=openfoodfacts_client
        ),
        queue=queue,
        upload_sweeper=StaleUploadSweeper(
            images=image_service,
            ttl_seconds=resolved_settings.stale_upload_ttl_seconds,
            interval_seconds=resolved_settings.stale_upload_sweep_interval_seconds,
        ),
        close_resources=close_resources,
    )
