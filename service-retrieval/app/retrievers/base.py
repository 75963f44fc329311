"""Shared failure-absorption wrapper for the search adapters."""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import structlog

from libs.common.errors import ConfigurationError, TransientAdapterError

from ..models import AdapterOutcome, RetrievalResult

logger = structlog.get_logger("retrieval_service.adapters")


class SearchAdapter(ABC):
    """Base class for the semantic and lexical adapters.

    Subclasses implement ``_search``, which may raise freely. ``run`` bounds
    it with a timeout and turns every failure except ``ConfigurationError``
    into an empty, failed ``AdapterOutcome``.
    """

    name = "adapter"

    def __init__(self, timeout_seconds: float = 5.0, metrics_collector: Optional[Any] = None):
        self.timeout_seconds = timeout_seconds
        self.metrics_collector = metrics_collector

    @abstractmethod
    async def _search(self, query: str, k: int, **kwargs: Any) -> List[RetrievalResult]:
        pass

    async def run(self, query: str, k: int, **kwargs: Any) -> AdapterOutcome:
        """Search and report whether the collaborator call worked."""
        start_time = time.perf_counter()
        try:
            results = await asyncio.wait_for(self._search(query, k, **kwargs), self.timeout_seconds)
            outcome = AdapterOutcome(adapter=self.name, results=results)
        except ConfigurationError:
            self._record("config_error", start_time)
            raise
        except asyncio.TimeoutError:
            logger.warning("Search adapter timed out", adapter=self.name, timeout_seconds=self.timeout_seconds)
            outcome = AdapterOutcome.failed(self.name, "timeout")
        except TransientAdapterError as e:
            logger.warning("Search adapter failed", adapter=self.name, error=str(e))
            outcome = AdapterOutcome.failed(self.name, str(e) or type(e).__name__)
        except Exception as e:
            logger.error("Search adapter raised unexpectedly", adapter=self.name, error=str(e))
            outcome = AdapterOutcome.failed(self.name, str(e) or type(e).__name__)

        self._record("ok" if outcome.succeeded else "error", start_time)
        return outcome

    async def search(self, query: str, k: int, **kwargs: Any) -> List[RetrievalResult]:
        """Search, returning an empty list on any collaborator failure."""
        outcome = await self.run(query, k, **kwargs)
        return outcome.results

    def _record(self, status: str, start_time: float) -> None:
        if self.metrics_collector is not None:
            self.metrics_collector.record_adapter(self.name, status, time.perf_counter() - start_time)
