import json

import pytest

from futures_advisor.storage import read_json_file, resolve_data_dir, write_json_file
from futures_advisor.watchlist import (
    DEFAULT_WATCHLIST, MAX_SYMBOLS, WatchlistError, WatchlistStore, normalize_symbol, normalize_symbols
)


def test_write_json_is_atomic_replace(tmp_path):
    path = tmp_path / "nested" / "state.json"
    write_json_file(path, {"a": 1})
    write_json_file(path, {"a": 2})

    assert read_json_file(path) == {"a": 2}
    # no temp files left behind
    assert [p.name for p in path.parent.iterdir()] == ["state.json"]


def test_read_json_missing_or_corrupt(tmp_path):
    assert read_json_file(tmp_path / "missing.json") is None
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    assert read_json_file(broken) is None


def test_resolve_data_dir(monkeypatch, tmp_path):
    monkeypatch.delenv("DATA_DIR", raising=False)
    monkeypatch.chdir(tmp_path)
    assert resolve_data_dir() == tmp_path / ".data"

    monkeypatch.setenv("DATA_DIR", str(tmp_path / "custom"))
    assert resolve_data_dir() == (tmp_path / "custom").resolve()
    assert resolve_data_dir(str(tmp_path / "arg")) == (tmp_path / "arg").resolve()


def test_normalize_symbol():
    assert normalize_symbol(" btcusdc ") == "BTCUSDC"
    assert normalize_symbol("BTC-USDC") is None
    assert normalize_symbol("BTC") is None
    assert normalize_symbol("") is None


def test_normalize_symbols_reports_rejections():
    symbols, warnings = normalize_symbols(["ethusdc", "ETHUSDC", "bad!", "solusdc"])
    assert symbols == ["ETHUSDC", "SOLUSDC"]
    assert len(warnings) == 2


def test_first_read_seeds_defaults(monkeypatch, tmp_path):
    monkeypatch.delenv("WATCHLIST_SYMBOLS", raising=False)
    store = WatchlistStore(tmp_path)

    assert store.get_symbols() == list(DEFAULT_WATCHLIST)
    saved = json.loads((tmp_path / "watchlist.json").read_text(encoding="utf-8"))
    assert saved["symbols"] == list(DEFAULT_WATCHLIST)


def test_first_read_seeds_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("WATCHLIST_SYMBOLS", "btcusdc, xrpusdc ,??")
    assert WatchlistStore(tmp_path).get_symbols() == ["BTCUSDC", "XRPUSDC"]


def test_set_normalizes_and_persists(tmp_path):
    store = WatchlistStore(tmp_path, default_symbols=["BTCUSDC"])
    watchlist = store.set([" solusdc", "SOLUSDC", "x"])

    assert watchlist.symbols == ("SOLUSDC",)
    assert len(store.last_warnings) == 2
    assert WatchlistStore(tmp_path).get_symbols() == ["SOLUSDC"]


def test_set_rejects_empty(tmp_path):
    store = WatchlistStore(tmp_path)
    with pytest.raises(WatchlistError):
        store.set(["??", ""])


def test_set_rejects_too_many(tmp_path):
    store = WatchlistStore(tmp_path)
    with pytest.raises(WatchlistError):
        store.set([f"SYM{i:03d}USDT" for i in range(MAX_SYMBOLS + 1)])
