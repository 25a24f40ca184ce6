"""Provider Caller: one accounted call to one business platform."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from answerwatch.core.encryption import decrypt_value
from answerwatch.core.metrics import PROVIDER_CALLS
from answerwatch.models.platform import Platform
from answerwatch.providers.base import BaseProvider, ProviderResponse, TokenUsage
from answerwatch.providers.registry import build_provider, get_platform_config

if TYPE_CHECKING:
    from answerwatch.services.usage_tracker import UsageTracker

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str, str, "str | None"], BaseProvider]


class ProviderCaller:
    """Resolve a platform row to a provider client, call it and record usage.

    Accounting goes through the usage tracker, which never raises; a provider
    failure is recorded and then re-raised to the job.
    """

    def __init__(
        self,
        usage_tracker: UsageTracker | None = None,
        provider_factory: ProviderFactory = build_provider,
    ):
        self._usage = usage_tracker
        self._provider_factory = provider_factory

    async def call(
        self,
        platform: Platform,
        prompt: str,
        *,
        business_id: int,
        execution_id: int | None = None,
        call_type: str = "main_query",
        web_search: bool = True,
    ) -> ProviderResponse:
        config = get_platform_config(platform.platform_key)
        client = self._provider_factory(platform.platform_key, decrypt_value(platform.api_key), platform.model)

        start = time.perf_counter()
        try:
            response = await client.generate(prompt, web_search=web_search)
        except Exception as e:
            duration_ms = int((time.perf_counter() - start) * 1000)
            PROVIDER_CALLS.labels(provider=config.provider, status="error").inc()
            logger.error(
                "Provider call failed: business=%d platform=%s model=%s (%dms): %s",
                business_id,
                platform.platform_key,
                client.model,
                duration_ms,
                e,
            )
            if self._usage is not None:
                await self._usage.record_call(
                    business_id=business_id,
                    platform_id=platform.id,
                    execution_id=execution_id,
                    call_type=call_type,
                    provider=config.provider,
                    model=client.model,
                    usage=TokenUsage(),
                    cost_usd=0.0,
                    duration_ms=duration_ms,
                    success=False,
                    error_message=str(e),
                )
            raise

        duration_ms = int((time.perf_counter() - start) * 1000)
        PROVIDER_CALLS.labels(provider=config.provider, status="success").inc()
        logger.info(
            "Provider call ok: business=%d platform=%s model=%s tokens=%d sources=%d (%dms)",
            business_id,
            platform.platform_key,
            response.model,
            response.usage.total_tokens,
            len(response.sources),
            duration_ms,
        )
        if self._usage is not None:
            await self._usage.record_call(
                business_id=business_id,
                platform_id=platform.id,
                execution_id=execution_id,
                call_type=call_type,
                provider=config.provider,
                model=response.model,
                usage=response.usage,
                cost_usd=response.cost_usd,
                duration_ms=duration_ms,
                success=True,
            )
        return response
