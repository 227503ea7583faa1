"""Tests for the record normalizer (series_engine stage A).

Covers:
- Per-record validation and type coercion
- Collection of malformed records without aborting the run
- Structural dataset errors
- Empty input
"""

import datetime as dt
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from series_engine import (
    ENTRY_COLS,
    InvalidDatasetError,
    MalformedRecord,
    normalize_records,
    parse_record,
)


class TestParseRecord:
    def test_valid_record(self):
        r = parse_record({"name": "SMIC", "date": "2025-04-01",
                          "close_price": 88.5, "market_cap": 6.8e11}, 0)
        assert r.name == "SMIC"
        assert r.date == dt.date(2025, 4, 1)
        assert r.close_price == 88.5
        assert r.market_cap == 6.8e11

    def test_market_cap_optional(self):
        assert parse_record({"name": "A", "date": "2025-04-01", "close_price": 1}, 0).market_cap is None
        assert parse_record({"name": "A", "date": "2025-04-01", "close_price": 1,
                             "market_cap": None}, 0).market_cap is None

    def test_numeric_strings_coerced(self):
        r = parse_record({"name": 600519, "date": "2025-04-01",
                          "close_price": "12.5", "market_cap": "1000"}, 0)
        assert r.name == "600519"
        assert r.close_price == 12.5
        assert r.market_cap == 1000.0

    def test_name_is_stripped(self):
        r = parse_record({"name": "  Hygon ", "date": "2025-04-01", "close_price": 1}, 0)
        assert r.name == "Hygon"

    def test_timestamp_keeps_calendar_day(self):
        r = parse_record({"name": "A", "date": "2025-04-01T15:00:00", "close_price": 1}, 0)
        assert r.date == dt.date(2025, 4, 1)

    def test_extra_keys_allowed(self):
        r = parse_record({"name": "A", "date": "2025-04-01", "close_price": 1,
                          "code": "688981.SH"}, 0)
        assert r.name == "A"

    @pytest.mark.parametrize("bad,field", [
        ({"name": "A", "date": "not-a-date", "close_price": 1}, "date"),
        ({"name": "A", "date": "2025/04/01", "close_price": 1}, "date"),
        ({"name": "A", "date": 20250401, "close_price": 1}, "date"),
        ({"name": "A", "close_price": 1}, "date"),
        ({"name": "A", "date": "2025-04-01", "close_price": "abc"}, "close_price"),
        ({"name": "A", "date": "2025-04-01", "close_price": -1}, "close_price"),
        ({"name": "A", "date": "2025-04-01", "close_price": float("nan")}, "close_price"),
        ({"name": "A", "date": "2025-04-01", "close_price": float("inf")}, "close_price"),
        ({"name": "A", "date": "2025-04-01"}, "close_price"),
        ({"name": "A", "date": "2025-04-01", "close_price": 1, "market_cap": -5}, "market_cap"),
        ({"name": "A", "date": "2025-04-01", "close_price": 1, "market_cap": "big"}, "market_cap"),
        ({"name": "   ", "date": "2025-04-01", "close_price": 1}, "name"),
        ({"name": None, "date": "2025-04-01", "close_price": 1}, "name"),
    ])
    def test_malformed_raises(self, bad, field):
        with pytest.raises(MalformedRecord) as exc:
            parse_record(bad, 7)
        assert exc.value.index == 7
        assert field in exc.value.reason
        assert exc.value.record is bad

    def test_non_object_raises(self):
        with pytest.raises(MalformedRecord, match="expected an object"):
            parse_record(["A", "2025-04-01", 1], 3)

    def test_malformed_is_value_error(self):
        with pytest.raises(ValueError):
            parse_record("junk", 0)

    @pytest.mark.parametrize("day", ["1500-01-01", "1677-09-21", "2262-04-12", "9999-12-31"])
    def test_date_outside_timestamp_range_raises(self, day):
        with pytest.raises(MalformedRecord, match="date"):
            parse_record({"name": "A", "date": day, "close_price": 1}, 0)

    def test_timestamp_range_edges_accepted(self):
        assert parse_record({"name": "A", "date": "1677-09-22", "close_price": 1}, 0).date \
            == dt.date(1677, 9, 22)
        assert parse_record({"name": "A", "date": "2262-04-11", "close_price": 1}, 0).date \
            == dt.date(2262, 4, 11)


class TestNormalizeRecords:
    def test_frame_columns_and_dtypes(self, valid_records):
        entries, rejected = normalize_records(valid_records)
        assert rejected == []
        assert list(entries.columns) == ENTRY_COLS
        assert len(entries) == len(valid_records)
        assert pd.api.types.is_datetime64_any_dtype(entries["date"])
        assert entries["close_price"].dtype == np.float64
        assert entries["market_cap"].dtype == np.float64

    def test_seq_is_raw_position(self, valid_records):
        entries, _ = normalize_records(valid_records)
        assert entries["seq"].tolist() == list(range(len(valid_records)))

    def test_missing_market_cap_is_nan(self, valid_records):
        entries, _ = normalize_records(valid_records)
        delta = entries[entries["name"] == "Delta"]
        assert delta["market_cap"].isna().all()

    def test_malformed_records_collected(self, sample_records):
        with pytest.warns(UserWarning, match="3 of 20 records rejected"):
            entries, rejected = normalize_records(sample_records)
        assert [r.index for r in rejected] == [17, 18, 19]
        assert "date" in rejected[0].reason
        assert "close_price" in rejected[1].reason
        assert "expected an object" in rejected[2].reason
        assert rejected[2].record == "junk"
        # the rest still flows through
        assert len(entries) == 17
        assert "Theta" not in set(entries["name"])

    def test_out_of_range_date_rejected_not_fatal(self):
        records = [
            {"name": "A", "date": "2024-01-01", "close_price": 10, "market_cap": 5},
            {"name": "B", "date": "1500-01-01", "close_price": 20, "market_cap": 9},
        ]
        with pytest.warns(UserWarning, match="1 of 2 records rejected"):
            entries, rejected = normalize_records(records)
        assert entries["name"].tolist() == ["A"]
        assert [r.index for r in rejected] == [1]
        assert "date" in rejected[0].reason

    def test_empty_input(self):
        entries, rejected = normalize_records([])
        assert entries.empty
        assert rejected == []
        assert list(entries.columns) == ENTRY_COLS
        assert pd.api.types.is_datetime64_any_dtype(entries["date"])

    def test_all_market_caps_missing(self):
        entries, _ = normalize_records([
            {"name": "A", "date": "2025-04-01", "close_price": 1},
            {"name": "B", "date": "2025-04-01", "close_price": 2},
        ])
        assert entries["market_cap"].dtype == np.float64
        assert entries["market_cap"].isna().all()

    def test_tuple_input_accepted(self, valid_records):
        entries, _ = normalize_records(tuple(valid_records))
        assert len(entries) == len(valid_records)

    @pytest.mark.parametrize("bad", [
        {"name": "A", "date": "2025-04-01", "close_price": 1},
        "2025-04-01",
        b"[]",
        42,
        None,
        [1, 2, 3],
        ["a", "b"],
    ])
    def test_structurally_invalid_dataset(self, bad):
        with pytest.raises(InvalidDatasetError):
            normalize_records(bad)

    def test_invalid_dataset_is_type_error(self):
        with pytest.raises(TypeError):
            normalize_records({"records": []})
