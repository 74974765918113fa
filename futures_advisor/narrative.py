"""
Optional narrative summaries of the top scan setups
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ValidationError, field_validator

from .models import SetupCandidate

logger = logging.getLogger(__name__)

PROVIDER_TIMEOUT = 60


class SetupsSummary(BaseModel):
    """Shape a provider must return"""
    summary: str

    @field_validator('summary')
    @classmethod
    def summary_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('summary must not be empty')
        return value


class NarrativeSummarizer(ABC):
    """External text generator for a handful of setups"""

    name: str = "provider"
    model: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def summarize_setups(self, top_setups: List[Dict[str, Any]], context: Dict[str, Any]) -> Any:
        """Return raw provider output, expected to match SetupsSummary"""
        pass


def provider_result(provider: str, enabled: bool, model: Optional[str], latency_ms: Optional[int] = None,
                    output: Optional[str] = None, error: Optional[str] = None) -> Dict[str, Any]:
    return {
        'provider': provider,
        'enabled': enabled,
        'model': model,
        'latencyMs': latency_ms,
        'output': output,
        'error': error
    }


async def _run_one(summarizer: NarrativeSummarizer, top: List[Dict[str, Any]],
                   context: Dict[str, Any], timeout: float) -> Dict[str, Any]:
    if not summarizer.enabled:
        return provider_result(summarizer.name, False, summarizer.model)

    started = time.monotonic()
    try:
        raw = await asyncio.wait_for(summarizer.summarize_setups(top, context), timeout=timeout)
        if isinstance(raw, str):
            raw = {'summary': raw}
        summary = SetupsSummary.model_validate(raw)
        latency_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"{summarizer.name} summary completed in {latency_ms}ms")
        return provider_result(summarizer.name, True, summarizer.model, latency_ms, summary.summary)
    except asyncio.TimeoutError:
        error = f"timed out after {timeout:g}s"
    except ValidationError as e:
        error = f"invalid output: {e.errors()[0]['msg']}"
    except Exception as e:
        error = str(e) or type(e).__name__

    latency_ms = int((time.monotonic() - started) * 1000)
    logger.warning(f"{summarizer.name} summary failed after {latency_ms}ms: {error}")
    return provider_result(summarizer.name, True, summarizer.model, latency_ms, error=error)


async def run_summarizers(summarizers: Sequence[NarrativeSummarizer], top_setups: Sequence[SetupCandidate],
                          context: Optional[Dict[str, Any]] = None,
                          timeout: float = PROVIDER_TIMEOUT) -> List[Dict[str, Any]]:
    """Run every provider concurrently; failures become error entries"""
    if not summarizers:
        return []
    top = [s.to_dict() for s in top_setups]
    return list(await asyncio.gather(*(_run_one(s, top, context or {}, timeout) for s in summarizers)))
