"""Tests for the local model lifecycle."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from core.errors import AlreadyLoadingError, LoadError
from core.models import (
    AutoLoadPolicy,
    AutoLoadStrategy,
    CompatibilityReport,
    LoadState,
    ModelCategory,
    ModelInfo,
)
from core.persistence import Database, ModelHistoryRepository
from core.providers.base import CallableDriver
from core.services.local_model_lifecycle import LocalModelLifecycle, resolve_auto_load


CATALOG = [
    ModelInfo(id="llama-8b", name="Llama 8B", category=ModelCategory.MEDIUM),
    ModelInfo(id="qwen-0.5b", name="Qwen 0.5B", category=ModelCategory.SMALL),
    ModelInfo(id="phi-mini", name="Phi Mini", category=ModelCategory.SMALL),
    ModelInfo(id="mistral-7b", name="Mistral 7B", category=ModelCategory.MEDIUM),
]


@pytest.fixture
def history(tmp_path: Path) -> ModelHistoryRepository:
    return ModelHistoryRepository(Database(tmp_path / "history.db"))


@pytest.fixture
def make_lifecycle(history: ModelHistoryRepository):
    def factory(load_fn=None, progress_fn=None, cached_fn=None, report=None):
        driver = CallableDriver(
            MagicMock(return_value=True),
            MagicMock(return_value=[]),
            load_fn=load_fn,
            progress_fn=progress_fn,
            cached_fn=cached_fn,
        )
        return LocalModelLifecycle(
            driver,
            history,
            provider_id="webllm",
            poll_interval=0.01,
            probe=lambda: report or CompatibilityReport(True, True),
        )

    return factory


async def instant_load(model_id, report_progress):
    report_progress(1.0)


def test_successful_load_activates_and_records(make_lifecycle, history, qtbot) -> None:
    lifecycle = make_lifecycle(load_fn=instant_load)

    with qtbot.waitSignal(lifecycle.active_model_changed) as blocker:
        result = asyncio.run(lifecycle.load_model("m1"))

    assert result.success
    assert blocker.args == ["m1"]
    assert lifecycle.active_model_id == "m1"
    assert lifecycle.load_state("m1") == LoadState.SUCCESS
    assert lifecycle.record("m1").last_loaded_at is not None
    assert history.list_ids() == ["m1"]
    assert not lifecycle.is_loading


def test_second_load_while_loading_is_rejected(make_lifecycle) -> None:
    async def run():
        gate = asyncio.Event()

        async def gated_load(model_id, report_progress):
            report_progress(0.3)
            await gate.wait()

        lifecycle = make_lifecycle(load_fn=gated_load)
        first = asyncio.create_task(lifecycle.load_model("m1"))
        await asyncio.sleep(0.05)

        with pytest.raises(AlreadyLoadingError) as exc_info:
            await lifecycle.load_model("m2")

        during = (
            lifecycle.loading_model_id,
            lifecycle.load_state("m1"),
            lifecycle.record("m1").progress,
            lifecycle.load_state("m2"),
        )
        gate.set()
        return lifecycle, exc_info.value, during, await first

    lifecycle, error, during, result = asyncio.run(run())

    assert error.requested_model_id == "m2"
    assert error.loading_model_id == "m1"
    assert during == ("m1", LoadState.LOADING, 0.3, LoadState.IDLE)
    assert result.success
    assert lifecycle.active_model_id == "m1"


def test_progress_is_non_decreasing(make_lifecycle) -> None:
    async def noisy_load(model_id, report_progress):
        for value in (0.1, 0.4, 0.3, 0.9, 0.85, 1.2):
            report_progress(value)
            await asyncio.sleep(0)

    lifecycle = make_lifecycle(load_fn=noisy_load)
    samples: list[float] = []
    lifecycle.load_progress.connect(lambda model_id, value: samples.append(value))

    asyncio.run(lifecycle.load_model("m1"))

    assert samples == sorted(samples)
    assert all(b >= a for a, b in zip(samples, samples[1:]))
    assert samples[0] == 0.0
    assert samples[-1] == 1.0


def test_polled_progress_is_clamped(make_lifecycle) -> None:
    polled = iter([0.2, 0.6, 0.5, 0.7])

    async def slow_load(model_id, report_progress):
        await asyncio.sleep(0.1)

    lifecycle = make_lifecycle(
        load_fn=slow_load,
        progress_fn=lambda model_id: next(polled, None),
    )
    samples: list[float] = []
    lifecycle.load_progress.connect(lambda model_id, value: samples.append(value))

    asyncio.run(lifecycle.load_model("m1"))

    assert samples == sorted(samples)
    assert 0.5 not in samples
    assert samples[-1] == 1.0


def test_failed_load_keeps_history_and_active_model(make_lifecycle, history) -> None:
    async def load(model_id, report_progress):
        if model_id == "m1":
            raise RuntimeError("device lost")
        report_progress(1.0)

    lifecycle = make_lifecycle(load_fn=load)
    asyncio.run(lifecycle.load_model("m0"))
    history.add("m1")
    errors: list[str] = []
    lifecycle.error_occurred.connect(errors.append)

    result = asyncio.run(lifecycle.load_model("m1"))

    assert not result.success
    assert isinstance(result.error, LoadError)
    assert "device lost" in result.message
    assert lifecycle.load_state("m1") == LoadState.ERROR
    assert lifecycle.record("m1").error == result.message
    assert lifecycle.is_downloaded("m1")
    assert "m1" in history.list_ids()
    assert lifecycle.active_model_id == "m0"
    assert errors == [result.message]


def test_new_active_model_replaces_previous(make_lifecycle) -> None:
    lifecycle = make_lifecycle(load_fn=instant_load)

    asyncio.run(lifecycle.load_model("m1"))
    asyncio.run(lifecycle.load_model("m2"))

    assert lifecycle.active_model_id == "m2"
    assert lifecycle.load_state("m1") == LoadState.IDLE
    assert lifecycle.load_state("m2") == LoadState.SUCCESS


def test_active_model_is_not_reloaded(make_lifecycle) -> None:
    calls: list[str] = []

    async def counting_load(model_id, report_progress):
        calls.append(model_id)

    lifecycle = make_lifecycle(load_fn=counting_load)

    asyncio.run(lifecycle.load_model("m1"))
    result = asyncio.run(lifecycle.load_model("m1"))

    assert result.success
    assert calls == ["m1"]


def test_blocking_load_keeps_progress_polling(make_lifecycle, history) -> None:
    polls: list[str] = []

    def blocking_load(model_id, report_progress):
        for value in (0.25, 0.5, 0.75):
            time.sleep(0.05)
            report_progress(value)

    def poll(model_id):
        polls.append(model_id)
        return None

    lifecycle = make_lifecycle(load_fn=blocking_load, progress_fn=poll)
    samples: list[float] = []
    lifecycle.load_progress.connect(lambda model_id, value: samples.append(value))

    result = asyncio.run(lifecycle.load_model("m1"))

    assert result.success
    assert len(polls) >= 3
    assert samples == [0.0, 0.25, 0.5, 0.75, 1.0]
    assert history.list_ids() == ["m1"]


def test_cancel_load_discards_late_result(make_lifecycle, history) -> None:
    async def run():
        gate = asyncio.Event()

        async def gated_load(model_id, report_progress):
            await gate.wait()

        lifecycle = make_lifecycle(load_fn=gated_load)
        first = asyncio.create_task(lifecycle.load_model("m1"))
        await asyncio.sleep(0.05)

        assert lifecycle.cancel_load() is True
        state_after_cancel = lifecycle.load_state("m1")
        result = await first
        return lifecycle, state_after_cancel, result

    lifecycle, state_after_cancel, result = asyncio.run(run())

    assert state_after_cancel == LoadState.IDLE
    assert result.superseded
    assert lifecycle.active_model_id is None
    assert lifecycle.load_state("m1") == LoadState.IDLE
    assert history.list_ids() == []
    assert not lifecycle.is_loading
    assert lifecycle.cancel_load() is False


def test_missing_runtime_blocks_loading(make_lifecycle) -> None:
    load_fn = MagicMock()
    lifecycle = make_lifecycle(
        load_fn=load_fn,
        report=CompatibilityReport(
            gpu_acceleration=False,
            execution_runtime=False,
            warnings=("no runtime",),
        ),
    )

    result = asyncio.run(lifecycle.load_model("m1"))

    assert not result.success
    assert isinstance(result.error, LoadError)
    assert load_fn.call_count == 0
    assert lifecycle.load_state("m1") == LoadState.ERROR
    assert not lifecycle.is_loading


def test_missing_gpu_is_advisory(make_lifecycle) -> None:
    report = CompatibilityReport(
        gpu_acceleration=False,
        execution_runtime=True,
        memory_gb=2.0,
        warnings=("slow",),
    )
    lifecycle = make_lifecycle(load_fn=instant_load, report=report)

    assert not lifecycle.check_compatibility().compatible
    assert not lifecycle.check_compatibility().strictly_unavailable
    assert asyncio.run(lifecycle.load_model("m1")).success


def test_reconcile_cache_never_shrinks_history(make_lifecycle, history) -> None:
    history.add("a")
    history.add("b")
    lifecycle = make_lifecycle(cached_fn=lambda: ["b", "c"])
    changes: list[int] = []
    lifecycle.history_changed.connect(lambda: changes.append(1))

    stale = lifecycle.reconcile_cache()

    assert stale == ["a"]
    assert set(history.list_ids()) == {"a", "b", "c"}
    assert not lifecycle.is_downloaded("a")
    assert lifecycle.is_downloaded("b")
    assert lifecycle.is_downloaded("c")
    assert changes == [1]


def test_reconcile_without_runtime_listing_trusts_history(make_lifecycle, history) -> None:
    history.add("a")
    lifecycle = make_lifecycle()

    assert lifecycle.reconcile_cache() == []
    assert lifecycle.is_downloaded("a")


def test_auto_load_only_when_idle(make_lifecycle) -> None:
    lifecycle = make_lifecycle(load_fn=instant_load)
    policy = AutoLoadPolicy(strategy=AutoLoadStrategy.SMALLEST)

    result = asyncio.run(lifecycle.auto_load(CATALOG, policy))
    assert result.success
    assert lifecycle.active_model_id == "qwen-0.5b"

    assert asyncio.run(lifecycle.auto_load(CATALOG, policy)) is None


class TestResolveAutoLoad:
    """Tests for auto-load model resolution."""

    def test_smallest_returns_first_small(self):
        policy = AutoLoadPolicy(strategy=AutoLoadStrategy.SMALLEST)
        assert resolve_auto_load(CATALOG, policy).id == "qwen-0.5b"

    def test_fastest_matches_smallest(self):
        policy = AutoLoadPolicy(strategy=AutoLoadStrategy.FASTEST)
        assert resolve_auto_load(CATALOG, policy).id == "qwen-0.5b"

    def test_balanced_returns_first_medium(self):
        policy = AutoLoadPolicy(strategy=AutoLoadStrategy.BALANCED)
        assert resolve_auto_load(CATALOG, policy).id == "llama-8b"

    def test_no_substitute_category(self):
        only_medium = [m for m in CATALOG if m.category == ModelCategory.MEDIUM]
        policy = AutoLoadPolicy(strategy=AutoLoadStrategy.SMALLEST)
        assert resolve_auto_load(only_medium, policy) is None

    def test_pinned_default_wins(self):
        policy = AutoLoadPolicy(
            strategy=AutoLoadStrategy.SMALLEST,
            default_model_id="mistral-7b",
        )
        assert resolve_auto_load(CATALOG, policy).id == "mistral-7b"

    def test_missing_pinned_default_falls_back_to_strategy(self):
        policy = AutoLoadPolicy(
            strategy=AutoLoadStrategy.BALANCED,
            default_model_id="not-in-catalog",
        )
        assert resolve_auto_load(CATALOG, policy).id == "llama-8b"

    def test_default_model_strategy_without_match(self):
        policy = AutoLoadPolicy(
            strategy=AutoLoadStrategy.DEFAULT_MODEL,
            default_model_id="not-in-catalog",
        )
        assert resolve_auto_load(CATALOG, policy) is None

    def test_none_strategy_still_honors_pinned_default(self):
        policy = AutoLoadPolicy(
            strategy=AutoLoadStrategy.NONE,
            default_model_id="mistral-7b",
        )
        assert resolve_auto_load(CATALOG, policy).id == "mistral-7b"

    def test_none_strategy_without_pin(self):
        policy = AutoLoadPolicy(strategy=AutoLoadStrategy.NONE)
        assert resolve_auto_load(CATALOG, policy) is None

    def test_none_strategy_with_missing_pin(self):
        policy = AutoLoadPolicy(
            strategy=AutoLoadStrategy.NONE,
            default_model_id="not-in-catalog",
        )
        assert resolve_auto_load(CATALOG, policy) is None
