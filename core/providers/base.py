"""
Provider driver interface.
Every provider backend is reached through this capability interface.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from core.errors import ConfigurationError
from core.models import CompatibilityReport, ModelInfo, ProviderSettings

ProgressReporter = Callable[[float], None]
RawModel = Union[ModelInfo, dict[str, Any]]


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    """Await coroutine functions; run plain callables in a worker thread."""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    result = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(result):
        return await result
    return result


class ProviderDriver(ABC):
    """Abstract base class for provider drivers.

    ``test_connection`` and ``fetch_models`` are required. Local runtimes
    additionally implement ``load_model`` and may report cached artifacts
    and device capabilities.
    """

    @abstractmethod
    async def test_connection(self, settings: ProviderSettings) -> bool:
        """
        Check that the provider is reachable with the given settings.

        Returns:
            True if the provider answered, False if it refused.
        """
        pass

    @abstractmethod
    async def fetch_models(self, settings: ProviderSettings) -> list[RawModel]:
        """
        Fetch the provider's model list.

        Returns:
            Raw model entries, either ModelInfo or provider dicts
        """
        pass

    async def load_model(self, model_id: str, report_progress: ProgressReporter) -> None:
        """Download and initialize a local model, reporting progress in [0, 1]."""
        raise ConfigurationError("This provider does not load local models")

    def poll_progress(self, model_id: str) -> Optional[float]:
        """Latest progress of an in-flight load, for runtimes that are polled."""
        return None

    def list_cached(self) -> Optional[list[str]]:
        """Model ids whose artifacts the runtime holds, or None if unknown."""
        return None

    def probe(self) -> Optional[CompatibilityReport]:
        """Device capability report, or None to use the default system probe."""
        return None


class CallableDriver(ProviderDriver):
    """Driver built from injected opaque functions.

    Each function may be plain or a coroutine function. Plain functions run
    in a worker thread so a blocking call never stalls the event loop. The
    connection and fetch functions take no arguments; the load function
    receives the model id and a progress reporter.
    """

    def __init__(
        self,
        connection_test_fn: Callable[[], Union[bool, Awaitable[bool]]],
        models_fetch_fn: Callable[[], Union[Iterable[RawModel], Awaitable[Iterable[RawModel]]]],
        load_fn: Optional[Callable[[str, ProgressReporter], Any]] = None,
        progress_fn: Optional[Callable[[str], Optional[float]]] = None,
        cached_fn: Optional[Callable[[], Iterable[str]]] = None,
        probe_fn: Optional[Callable[[], CompatibilityReport]] = None,
    ):
        self._connection_test_fn = connection_test_fn
        self._models_fetch_fn = models_fetch_fn
        self._load_fn = load_fn
        self._progress_fn = progress_fn
        self._cached_fn = cached_fn
        self._probe_fn = probe_fn

    async def test_connection(self, settings: ProviderSettings) -> bool:
        return bool(await _call(self._connection_test_fn))

    async def fetch_models(self, settings: ProviderSettings) -> list[RawModel]:
        return list(await _call(self._models_fetch_fn))

    async def load_model(self, model_id: str, report_progress: ProgressReporter) -> None:
        if self._load_fn is None:
            await super().load_model(model_id, report_progress)
            return
        if inspect.iscoroutinefunction(self._load_fn):
            await self._load_fn(model_id, report_progress)
            return
        loop = asyncio.get_running_loop()

        def report_from_thread(value: float) -> None:
            loop.call_soon_threadsafe(report_progress, value)

        await _call(self._load_fn, model_id, report_from_thread)

    def poll_progress(self, model_id: str) -> Optional[float]:
        if self._progress_fn is None:
            return None
        return self._progress_fn(model_id)

    def list_cached(self) -> Optional[list[str]]:
        if self._cached_fn is None:
            return None
        return list(self._cached_fn())

    def probe(self) -> Optional[CompatibilityReport]:
        if self._probe_fn is None:
            return None
        return self._probe_fn()
