import pandas as pd
import pytest

from futures_advisor.data_loader import dataframe_to_candles, load_candles_csv


def write_csv(path, rows):
    pd.DataFrame(rows).to_csv(path, index=False)
    return str(path)


def test_load_sorts_and_dedupes(tmp_path):
    path = write_csv(tmp_path / "BTCUSDC_15m.csv", [
        {"Timestamp": 1_700_000_900_000, "Open": 2, "High": 3, "Low": 1, "Close": 2.5, "Volume": 5},
        {"Timestamp": 1_700_000_000_000, "Open": 1, "High": 2, "Low": 0.5, "Close": 1.5, "Volume": 5},
        {"Timestamp": 1_700_000_900_000, "Open": 2, "High": 3.5, "Low": 1, "Close": 3, "Volume": 6},
    ])
    df = load_candles_csv(path)

    assert len(df) == 2
    assert df["timestamp"].is_monotonic_increasing
    # last duplicate wins
    assert df["close"].iloc[-1] == 3


def test_load_parses_string_timestamps_and_fills_volume(tmp_path):
    path = write_csv(tmp_path / "ETHUSDC_1h.csv", [
        {"timestamp": "2024-01-01 00:00:00", "open": 10, "high": 11, "low": 9, "close": 10.5},
        {"timestamp": "2024-01-01 01:00:00", "open": 10.5, "high": 12, "low": 10, "close": 11},
    ])
    df = load_candles_csv(path)
    assert (df["volume"] == 0).all()

    candles = dataframe_to_candles(df)
    assert candles[0].open_time == 1_704_067_200_000
    # inferred one-hour bars
    assert candles[0].close_time == 1_704_067_200_000 + 3_600_000 - 1


def test_invalid_rows_are_dropped(tmp_path):
    path = write_csv(tmp_path / "BTCUSDC_1h.csv", [
        {"timestamp": 1_700_000_000_000, "open": 10, "high": 11, "low": 9, "close": 10.5},
        {"timestamp": 1_700_003_600_000, "open": 10, "high": 8, "low": 9, "close": 10.5},
        {"timestamp": 1_700_007_200_000, "open": -1, "high": 11, "low": -2, "close": 10.5},
    ])
    assert len(load_candles_csv(path)) == 1


def test_missing_columns_raise(tmp_path):
    path = write_csv(tmp_path / "BTCUSDC_1h.csv", [{"timestamp": 1, "open": 1, "close": 1}])
    with pytest.raises(ValueError, match="Missing"):
        load_candles_csv(path)


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_candles_csv(str(tmp_path / "nope.csv"))


def test_nothing_valid_raises(tmp_path):
    path = write_csv(tmp_path / "BTCUSDC_1h.csv", [
        {"timestamp": 1_700_000_000_000, "open": 10, "high": 8, "low": 9, "close": 10.5},
    ])
    with pytest.raises(ValueError, match="no valid candles"):
        load_candles_csv(path)
