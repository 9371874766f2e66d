"""Tests for response normalization into canonical records."""

import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ledbridge.exceptions import InvalidRateError, SchemaError
from ledbridge.formatting import format_weather
from ledbridge.models import Location, RateTable
from ledbridge.normalization import (
    WEATHER_DESCRIPTIONS,
    build_exchange_records,
    describe_weather_code,
    normalize_exchange,
    normalize_weather,
)


class TestDescribeWeatherCode:
    """Weather code lookup."""

    @pytest.mark.parametrize(
        "code,expected",
        [(0, "Clear"), (2, "Partly Cloudy"), (45, "Foggy"), (95, "Thunderstorm")],
    )
    def test_known_codes(self, code: int, expected: str) -> None:
        assert describe_weather_code(code) == expected

    @pytest.mark.parametrize("code", [4, 100, -1, None, "2", True])
    def test_unknown_codes(self, code: object) -> None:
        assert describe_weather_code(code) == "Unknown"

    def test_integral_float_is_accepted(self) -> None:
        assert describe_weather_code(3.0) == "Overcast"

    def test_every_table_entry_round_trips(self) -> None:
        for code, description in WEATHER_DESCRIPTIONS.items():
            assert describe_weather_code(code) == description


class TestNormalizeWeather:
    """Open-Meteo current-conditions normalization."""

    def test_maps_current_block(self, open_meteo_response: dict) -> None:
        record = normalize_weather(open_meteo_response)

        assert record.temperature == 31.4
        assert record.humidity == 70.0
        assert record.pressure == 1008.2
        assert record.wind_speed == 12.5
        assert record.description == "Partly Cloudy"

    def test_coordinates_from_response_without_location(
        self, open_meteo_response: dict
    ) -> None:
        record = normalize_weather(open_meteo_response)
        assert (record.latitude, record.longitude) == (10.75, 106.625)

    def test_coordinates_from_requested_location(self, open_meteo_response: dict) -> None:
        record = normalize_weather(open_meteo_response, Location(21.0285, 105.8542))
        assert (record.latitude, record.longitude) == (21.0285, 105.8542)

    def test_local_observation_time_converted_to_utc(
        self, open_meteo_response: dict
    ) -> None:
        record = normalize_weather(open_meteo_response)
        assert record.observed_at == datetime(2024, 6, 1, 7, 0, tzinfo=timezone.utc)

    def test_missing_fields_default_to_zero_and_unknown(self) -> None:
        record = normalize_weather({"current": {}})

        assert record.temperature == 0.0
        assert record.humidity == 0.0
        assert record.pressure == 0.0
        assert record.wind_speed == 0.0
        assert record.description == "Unknown"

    def test_non_numeric_values_default_to_zero(self) -> None:
        record = normalize_weather(
            {"current": {"temperature_2m": "hot", "relative_humidity_2m": None}}
        )
        assert record.temperature == 0.0
        assert record.humidity == 0.0

    def test_overflowing_numbers_default_to_zero(self) -> None:
        response = json.loads(
            '{"current": {"temperature_2m": 1e999, "relative_humidity_2m": -1e999,'
            ' "pressure_msl": 1' + "0" * 400 + ', "wind_speed_10m": 3.5}}'
        )

        record = normalize_weather(response)

        assert record.temperature == 0.0
        assert record.humidity == 0.0
        assert record.pressure == 0.0
        assert record.wind_speed == 3.5
        assert format_weather(record) == "Temp: 0C Unknown H:0%"

    @pytest.mark.parametrize("response", [[], "current", None])
    def test_non_object_response_raises(self, response: object) -> None:
        with pytest.raises(SchemaError):
            normalize_weather(response)

    @pytest.mark.parametrize("response", [{}, {"current": None}, {"current": []}])
    def test_missing_current_block_raises(self, response: dict) -> None:
        with pytest.raises(SchemaError):
            normalize_weather(response)


class TestNormalizeExchange:
    """Rate-table shape detection."""

    def test_free_tier_rates(self, free_tier_rates: dict) -> None:
        table = normalize_exchange(free_tier_rates, has_api_key=False)
        assert table.base == "USD"
        assert table.rates["VND"] == 24567.891

    def test_keyed_tier_conversion_rates(self, keyed_tier_rates: dict) -> None:
        table = normalize_exchange(keyed_tier_rates, has_api_key=True)
        assert table.base == "USD"
        assert table.rates["VND"] == 25410.5

    def test_keyed_tier_accepts_rates_shape(self, free_tier_rates: dict) -> None:
        table = normalize_exchange(free_tier_rates, has_api_key=True)
        assert table.rates["EUR"] == 0.92

    def test_free_tier_rejects_conversion_rates_shape(self, keyed_tier_rates: dict) -> None:
        with pytest.raises(SchemaError):
            normalize_exchange(keyed_tier_rates, has_api_key=False)

    def test_missing_base_defaults_to_usd(self) -> None:
        table = normalize_exchange({"rates": {"VND": 25000}}, has_api_key=False)
        assert table.base == "USD"

    def test_unrecognized_shape_raises(self) -> None:
        with pytest.raises(SchemaError):
            normalize_exchange({"result": "error", "error-type": "invalid-key"}, True)

    @pytest.mark.parametrize("response", [[{"rates": {}}], 42])
    def test_non_object_response_raises(self, response: object) -> None:
        with pytest.raises(SchemaError):
            normalize_exchange(response, has_api_key=False)


class TestBuildExchangeRecords:
    """Watch-list selection and rate validation."""

    def test_follows_watch_list_order_and_skips_absent(self) -> None:
        table = RateTable(base="USD", rates={"EUR": 0.92, "VND": 24567.891})

        records = build_exchange_records(table, ["VND", "XYZ", "EUR"])

        assert [r.target_currency for r in records] == ["VND", "EUR"]
        assert all(r.base_currency == "USD" for r in records)

    def test_rates_become_exact_decimals(self) -> None:
        table = RateTable(base="USD", rates={"VND": 24567.891})
        (record,) = build_exchange_records(table, ["VND"])
        assert record.rate == Decimal("24567.891")

    def test_watch_list_codes_are_case_insensitive(self) -> None:
        table = RateTable(base="USD", rates={"VND": 25000})
        (record,) = build_exchange_records(table, ["vnd"])
        assert record.target_currency == "VND"

    def test_empty_result_when_nothing_tracked(self) -> None:
        table = RateTable(base="USD", rates={"EUR": 0.92})
        assert build_exchange_records(table, ["VND"]) == []

    @pytest.mark.parametrize("bad_rate", [0, -1.5, "abc", None, float("nan")])
    def test_invalid_rate_rejects_whole_table(self, bad_rate: object) -> None:
        table = RateTable(base="USD", rates={"EUR": 0.92, "VND": bad_rate})

        with pytest.raises(InvalidRateError):
            build_exchange_records(table, ["EUR", "VND"])

    def test_invalid_rate_is_a_schema_error(self) -> None:
        table = RateTable(base="USD", rates={"VND": 0})
        with pytest.raises(SchemaError):
            build_exchange_records(table, ["VND"])
