import asyncio

import pytest

from futures_advisor.config.models import AppConfig
from futures_advisor.core.exchange_gateway import FrozenExchangeGateway
from futures_advisor.core.scanner import (
    ScanAlreadyRunningError, ScannerService, attach_sizing, run_setup_scan
)
from futures_advisor.models import SetupStrategy
from futures_advisor.narrative import NarrativeSummarizer
from futures_advisor.watchlist import WatchlistStore

CREATED_AT = "2024-01-01T00:00:00+00:00"


class SlowGateway(FrozenExchangeGateway):
    """Blocks candle fetches until released"""

    def __init__(self, candles):
        super().__init__(candles)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_candles(self, symbol, timeframe, limit=200):
        self.started.set()
        await self.release.wait()
        return await super().fetch_candles(symbol, timeframe, limit)


class EchoSummarizer(NarrativeSummarizer):
    name = "echo"
    model = "echo-1"

    async def summarize_setups(self, top_setups, context):
        return f"{len(top_setups)} setups, max leverage {context['maxLeverage']}"


def make_service(tmp_path, gateway, symbols=("BTCUSDC", "ETHUSDC"), **kwargs):
    config = AppConfig()
    watchlist = WatchlistStore(tmp_path, default_symbols=symbols)
    return ScannerService(config, gateway, watchlist, tmp_path, **kwargs)


def test_scan_collects_setups_and_symbol_errors(frozen_candles):
    gateway = FrozenExchangeGateway(frozen_candles)
    setups, errors = asyncio.run(
        run_setup_scan(gateway, ["BTCUSDC", "BADUSDC", "ETHUSDC"], AppConfig(), CREATED_AT)
    )

    assert {s.symbol for s in setups} == {"BTCUSDC", "ETHUSDC"}
    assert {s.strategy for s in setups} == {SetupStrategy.CONTINUATION, SetupStrategy.BREAKOUT_RETEST}
    assert len(errors) == 1
    assert errors[0].symbol == "BADUSDC"
    assert errors[0].message.startswith("4h trend fetch failed")


def test_scan_results_sorted_by_score(frozen_candles):
    setups, _ = asyncio.run(run_setup_scan(FrozenExchangeGateway(frozen_candles),
                                           ["BTCUSDC", "ETHUSDC"], AppConfig(), CREATED_AT))
    scores = [s.score for s in setups]
    assert scores == sorted(scores, reverse=True)


def test_scan_is_idempotent_on_frozen_data(frozen_candles):
    gateway = FrozenExchangeGateway(frozen_candles)
    config = AppConfig()
    first = asyncio.run(run_setup_scan(gateway, ["BTCUSDC", "ETHUSDC"], config, CREATED_AT))
    second = asyncio.run(run_setup_scan(gateway, ["BTCUSDC", "ETHUSDC"], config, CREATED_AT))
    assert first == second


def test_missing_timeframe_is_reported_but_others_scanned(frozen_candles):
    del frozen_candles["ETHUSDC_15m"]
    setups, errors = asyncio.run(run_setup_scan(FrozenExchangeGateway(frozen_candles),
                                                ["ETHUSDC"], AppConfig(), CREATED_AT))
    assert [s.timeframe for s in setups] == ["1h"]
    assert errors[0].message.startswith("15m klines failed")


def test_attach_sizing_needs_positive_equity(frozen_candles):
    config = AppConfig()
    setups, _ = asyncio.run(run_setup_scan(FrozenExchangeGateway(frozen_candles),
                                           ["BTCUSDC"], config, CREATED_AT))
    assert attach_sizing(setups, None, config) == setups
    assert attach_sizing(setups, 0.0, config) == setups

    sized = attach_sizing(setups, 10_000.0, config)
    assert all(s.sizing is not None for s in sized)
    assert all(s.sizing.leverage_required <= config.risk.max_leverage for s in sized)


def test_run_now_persists_snapshot(tmp_path, frozen_candles):
    service = make_service(tmp_path, FrozenExchangeGateway(frozen_candles))
    result = asyncio.run(service.run_now())

    assert (tmp_path / "scanner-latest.json").exists()
    assert service.get_latest() is result
    assert service.get_status().last_run_at == result.run_at
    assert not service.get_status().running
    assert result.watchlist.symbols == ("BTCUSDC", "ETHUSDC")
    assert result.narratives == []

    reloaded = make_service(tmp_path, FrozenExchangeGateway(frozen_candles))
    assert reloaded.get_latest().to_dict() == result.to_dict()
    assert reloaded.get_status().last_run_at == result.run_at


def test_run_now_attaches_sizing_with_equity(tmp_path, frozen_candles):
    service = make_service(tmp_path, FrozenExchangeGateway(frozen_candles, equity=5_000.0))
    result = asyncio.run(service.run_now())
    assert result.results
    assert all(s.sizing is not None for s in result.results)


def test_run_now_includes_narratives(tmp_path, frozen_candles):
    service = make_service(tmp_path, FrozenExchangeGateway(frozen_candles), summarizers=[EchoSummarizer()])
    result = asyncio.run(service.run_now())

    assert len(result.narratives) == 1
    entry = result.narratives[0]
    assert entry["provider"] == "echo"
    assert entry["output"] == "3 setups, max leverage 3.0"
    assert result.to_dict()["llm"]["providers"] == result.narratives


def test_concurrent_run_is_rejected(tmp_path, frozen_candles):
    async def scenario():
        gateway = SlowGateway(frozen_candles)
        service = make_service(tmp_path, gateway)
        first = asyncio.create_task(service.run_now())
        await gateway.started.wait()

        assert service.get_status().running
        with pytest.raises(ScanAlreadyRunningError, match="Scanner is already running."):
            await service.run_now()

        gateway.release.set()
        result = await first
        return service, result

    service, result = asyncio.run(scenario())
    assert result.results
    assert not service.get_status().running


def test_failed_run_releases_guard(tmp_path, frozen_candles, monkeypatch):
    service = make_service(tmp_path, FrozenExchangeGateway(frozen_candles))

    def broken_write(path, data):
        raise OSError("disk full")

    monkeypatch.setattr("futures_advisor.core.scanner.write_json_file", broken_write)
    with pytest.raises(OSError):
        asyncio.run(service.run_now())
    assert not service.get_status().running
    assert service.get_latest() is None


def test_start_and_stop_schedule(tmp_path, frozen_candles):
    async def scenario():
        service = make_service(tmp_path, FrozenExchangeGateway(frozen_candles))
        service.start()
        started = service.get_status()
        await service.stop()
        return started, service.get_status()

    started, stopped = asyncio.run(scenario())
    assert started.next_run_at is not None
    assert not started.running
    assert stopped.next_run_at is None


def test_disabled_scanner_does_not_schedule(tmp_path, frozen_candles):
    async def scenario():
        service = make_service(tmp_path, FrozenExchangeGateway(frozen_candles))
        service.config.scanner.enabled = False
        service.start()
        return service.get_status()

    assert asyncio.run(scenario()).next_run_at is None
