"""Download, initialization and cache state of on-device models."""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import shutil
import threading
from datetime import datetime
from typing import Callable, Iterable, Optional

from PySide6.QtCore import QObject, Signal

from core.config import get_poll_interval
from core.constants import LOW_MEMORY_THRESHOLD_GB
from core.errors import AlreadyLoadingError, LoadError, ProviderError, SupersededError
from core.models import (
    AutoLoadPolicy,
    AutoLoadStrategy,
    CompatibilityReport,
    LoadState,
    LocalModelRecord,
    ModelCategory,
    ModelInfo,
    OperationResult,
)
from core.persistence.model_history_repository import ModelHistoryRepository
from core.providers.base import ProviderDriver
from core.services.model_catalog import ModelCatalog

logger = logging.getLogger(__name__)


# ----- Auto-load resolution -----

def _first_small(catalog: list[ModelInfo]) -> Optional[ModelInfo]:
    return ModelCatalog.first_of_category(catalog, ModelCategory.SMALL)


def _fastest(catalog: list[ModelInfo]) -> Optional[ModelInfo]:
    # Smallest models initialize and generate fastest on-device.
    return ModelCatalog.first_of_category(catalog, ModelCategory.SMALL)


def _first_medium(catalog: list[ModelInfo]) -> Optional[ModelInfo]:
    return ModelCatalog.first_of_category(catalog, ModelCategory.MEDIUM)


def _nothing(catalog: list[ModelInfo]) -> Optional[ModelInfo]:
    return None


_RESOLVERS: dict[AutoLoadStrategy, Callable[[list[ModelInfo]], Optional[ModelInfo]]] = {
    AutoLoadStrategy.SMALLEST: _first_small,
    AutoLoadStrategy.FASTEST: _fastest,
    AutoLoadStrategy.BALANCED: _first_medium,
    AutoLoadStrategy.DEFAULT_MODEL: _nothing,
    AutoLoadStrategy.NONE: _nothing,
}


def resolve_auto_load(
    catalog: Iterable[ModelInfo],
    policy: AutoLoadPolicy,
) -> Optional[ModelInfo]:
    """
    Pick the model to load without user action.

    A pinned default model present in the catalog wins. Otherwise the
    strategy's category is searched in catalog order; when that category is
    empty nothing is returned. Without a pinned model the ``none`` strategy
    resolves nothing.
    """
    models = list(catalog)
    if policy.default_model_id:
        pinned = next((m for m in models if m.id == policy.default_model_id), None)
        if pinned is not None:
            return pinned
    return _RESOLVERS[policy.strategy](models)


# ----- Compatibility -----

def _detect_memory_gb() -> Optional[float]:
    try:
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return None
    if pages <= 0 or page_size <= 0:
        return None
    return round(pages * page_size / (1024 ** 3), 1)


def _detect_gpu() -> bool:
    if shutil.which("nvidia-smi"):
        return True
    if platform.system() == "Darwin" and platform.machine() == "arm64":
        return True
    return os.path.exists("/dev/dri")


def probe_system() -> CompatibilityReport:
    """Best-effort device probe used when the runtime does not report one."""
    gpu = _detect_gpu()
    memory_gb = _detect_memory_gb()
    warnings: list[str] = []
    if not gpu:
        warnings.append("GPU acceleration unavailable; local models will run slowly")
    if memory_gb is not None and memory_gb < LOW_MEMORY_THRESHOLD_GB:
        warnings.append(f"Only {memory_gb} GB of memory detected; large models may fail")
    return CompatibilityReport(
        gpu_acceleration=gpu,
        execution_runtime=True,
        memory_gb=memory_gb,
        warnings=tuple(warnings),
    )


# ----- Lifecycle -----

class LocalModelLifecycle(QObject):
    """Owns the loading slot and the active-model slot for the local runtime.

    At most one load is in flight system-wide. A second request while one is
    running is rejected with ``AlreadyLoadingError`` before any suspension
    point, never queued.
    """

    load_state_changed = Signal(str, str)
    load_progress = Signal(str, float)
    active_model_changed = Signal(str)
    history_changed = Signal()
    error_occurred = Signal(str)

    def __init__(
        self,
        driver: ProviderDriver,
        history: ModelHistoryRepository,
        provider_id: Optional[str] = None,
        poll_interval: Optional[float] = None,
        probe: Optional[Callable[[], CompatibilityReport]] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._driver = driver
        self._history = history
        self._provider_id = provider_id
        self._poll_interval = poll_interval if poll_interval is not None else get_poll_interval()
        self._probe = probe
        self._load_lock = threading.Lock()
        self._loading_model_id: Optional[str] = None
        self._load_task: Optional[asyncio.Future] = None
        self._load_token = 0
        self._active_model_id: Optional[str] = None
        self._records: dict[str, LocalModelRecord] = {}

    # ----- Queries -----

    @property
    def active_model_id(self) -> Optional[str]:
        return self._active_model_id

    @property
    def loading_model_id(self) -> Optional[str]:
        return self._loading_model_id

    @property
    def is_loading(self) -> bool:
        return self._loading_model_id is not None

    @property
    def downloaded_ids(self) -> list[str]:
        return self._history.list_ids()

    def record(self, model_id: str) -> LocalModelRecord:
        """Return the record for a model, creating it on first reference."""
        record = self._records.get(model_id)
        if record is None:
            record = LocalModelRecord(
                model_id=model_id,
                downloaded=self._history.contains(model_id),
            )
            self._records[model_id] = record
        return record

    def records(self) -> list[LocalModelRecord]:
        return list(self._records.values())

    def load_state(self, model_id: str) -> LoadState:
        return self.record(model_id).load_state

    def is_downloaded(self, model_id: str) -> bool:
        return self.record(model_id).downloaded

    def check_compatibility(self) -> CompatibilityReport:
        report = self._driver.probe()
        if report is None:
            report = (self._probe or probe_system)()
        for warning in report.warnings:
            logger.info("Local runtime compatibility: %s", warning)
        return report

    # ----- Loading -----

    async def load_model(self, model_id: str) -> OperationResult:
        """
        Download and initialize ``model_id`` and make it the active model.

        Raises:
            AlreadyLoadingError: another load is in flight.
        """
        if not self._load_lock.acquire(blocking=False):
            loading = self._loading_model_id or "another model"
            logger.warning("Rejected load of %s: %s is loading", model_id, loading)
            raise AlreadyLoadingError(model_id, loading)

        self._load_token += 1
        token = self._load_token
        self._loading_model_id = model_id

        try:
            if self._active_model_id == model_id:
                logger.debug("Model %s already active", model_id)
                return OperationResult.ok()

            report = self.check_compatibility()
            if report.strictly_unavailable:
                return self._fail(
                    model_id,
                    LoadError("No execution runtime available for local models", self._provider_id),
                )
            return await self._run_load(model_id, token)
        finally:
            if token == self._load_token:
                self._release_slot()

    async def _run_load(self, model_id: str, token: int) -> OperationResult:
        record = self.record(model_id)
        record.progress = 0.0
        record.error = None
        self._set_state(record, LoadState.LOADING)
        self.load_progress.emit(model_id, 0.0)
        logger.info("Loading local model %s", model_id)

        def report_progress(value: float) -> None:
            if token != self._load_token:
                return
            try:
                sample = min(1.0, max(0.0, float(value)))
            except (TypeError, ValueError):
                return
            if sample > record.progress:
                record.progress = sample
                self.load_progress.emit(model_id, sample)

        task = asyncio.ensure_future(self._driver.load_model(model_id, report_progress))
        self._load_task = task
        try:
            while True:
                done, _ = await asyncio.wait({task}, timeout=self._poll_interval)
                if done:
                    break
                sample = self._driver.poll_progress(model_id)
                if sample is not None:
                    report_progress(sample)
            task.result()
        except asyncio.CancelledError:
            if token != self._load_token:
                logger.info("Load of %s was cancelled", model_id)
                return OperationResult.stale(
                    SupersededError(f"Load of {model_id} was cancelled", self._provider_id)
                )
            task.cancel()
            self._reset_record(record)
            raise
        except Exception as exc:
            if token != self._load_token:
                return OperationResult.stale()
            detail = exc.message if isinstance(exc, ProviderError) else (str(exc) or type(exc).__name__)
            return self._fail(
                model_id,
                LoadError(f"Failed to load {model_id}: {detail}", self._provider_id),
            )
        finally:
            if self._load_task is task:
                self._load_task = None

        if token != self._load_token:
            return OperationResult.stale(
                SupersededError(f"Load of {model_id} was superseded", self._provider_id)
            )
        self._complete(record)
        return OperationResult.ok()

    def _complete(self, record: LocalModelRecord) -> None:
        model_id = record.model_id
        if record.progress < 1.0:
            record.progress = 1.0
            self.load_progress.emit(model_id, 1.0)
        record.downloaded = True
        record.last_loaded_at = datetime.now()
        record.error = None
        self._set_state(record, LoadState.SUCCESS)

        if self._history.add(model_id):
            self.history_changed.emit()

        previous = self._active_model_id
        if previous and previous != model_id:
            previous_record = self._records.get(previous)
            if previous_record is not None and previous_record.load_state == LoadState.SUCCESS:
                self._set_state(previous_record, LoadState.IDLE)
        self._active_model_id = model_id
        self.active_model_changed.emit(model_id)
        logger.info("Local model %s is active", model_id)

    def _fail(self, model_id: str, error: LoadError) -> OperationResult:
        record = self.record(model_id)
        record.error = error.message
        self._set_state(record, LoadState.ERROR)
        logger.warning("%s", error.message)
        self.error_occurred.emit(error.message)
        return OperationResult.failed(error)

    def cancel_load(self) -> bool:
        """Cancel the in-flight load; its late result is discarded."""
        model_id = self._loading_model_id
        if model_id is None:
            return False
        self._load_token += 1
        task = self._load_task
        self._load_task = None
        if task is not None and not task.done():
            task.cancel()
        self._reset_record(self.record(model_id))
        self._release_slot()
        logger.info("Cancelled load of %s", model_id)
        return True

    def _reset_record(self, record: LocalModelRecord) -> None:
        record.progress = 0.0
        self._set_state(record, LoadState.IDLE)

    def _release_slot(self) -> None:
        self._loading_model_id = None
        if self._load_lock.locked():
            self._load_lock.release()

    def _set_state(self, record: LocalModelRecord, state: LoadState) -> None:
        if record.load_state == state:
            return
        record.load_state = state
        self.load_state_changed.emit(record.model_id, state.value)

    # ----- Cache reconciliation -----

    def reconcile_cache(self, cached_ids: Optional[Iterable[str]] = None) -> list[str]:
        """
        Reconcile the downloaded history against what the runtime holds.

        Models the runtime confirms are marked downloaded and recorded.
        History entries the runtime does not confirm are returned as stale
        but stay in the history.
        """
        if cached_ids is None:
            cached_ids = self._driver.list_cached()
        if cached_ids is None:
            for model_id in self._history.list_ids():
                self.record(model_id).downloaded = True
            return []

        cached = list(dict.fromkeys(cached_ids))
        added = False
        for model_id in cached:
            added = self._history.add(model_id) or added
            self.record(model_id).downloaded = True

        confirmed = set(cached)
        stale = [mid for mid in self._history.list_ids() if mid not in confirmed]
        for model_id in stale:
            self.record(model_id).downloaded = False
        if stale:
            logger.info("Downloaded history has %d unconfirmed entries", len(stale))
        if added:
            self.history_changed.emit()
        return stale

    # ----- Auto-load -----

    async def auto_load(
        self,
        catalog: Iterable[ModelInfo],
        policy: AutoLoadPolicy,
    ) -> Optional[OperationResult]:
        """Load the policy's model when nothing is active or loading."""
        if self._active_model_id is not None or self.is_loading:
            return None
        model = resolve_auto_load(catalog, policy)
        if model is None:
            logger.debug("Auto-load resolved no model for %s", policy.strategy.value)
            return None
        return await self.load_model(model.id)
