"""Tests for transform strategies, registries and built-in tiles."""

from datetime import datetime, timezone
from typing import Any

import pytest

from tilecache.errors import TransformFailure, ValidationFailure
from tilecache.transforms.base import (
    BaseMapper,
    BaseParser,
    Invalid,
    MapperRegistry,
    ParserRegistry,
    Valid,
    as_validation_result,
)
from tilecache.transforms.builtin import EarthquakeMapper, UraniumHtmlParser, register_builtin_transforms


class PriceMapper(BaseMapper[dict]):
    def validate(self, raw: Any):
        return isinstance(raw, dict) and "price" in raw

    def map(self, raw):
        return {"price": float(raw["price"])}

    def create_default(self):
        return {"price": 0.0}


class RaisingValidatorMapper(PriceMapper):
    def validate(self, raw):
        raise KeyError("boom")


class TextParser(BaseParser[str]):
    def validate(self, raw):
        if not isinstance(raw, str):
            return Invalid("not text")
        return Valid(raw.strip())

    def parse(self, raw):
        if raw == "explode":
            raise RuntimeError("cannot parse")
        return raw.upper()


class TestValidationResult:
    def test_bool_results_are_tagged(self):
        assert as_validation_result(True, 1) == Valid(1)
        assert isinstance(as_validation_result(False, 1), Invalid)

    def test_tagged_results_pass_through(self):
        assert as_validation_result(Invalid("nope"), 1) == Invalid("nope")
        assert not Invalid("nope")
        assert Valid(None)


class TestBaseMapper:
    def test_safe_map_success(self):
        assert PriceMapper().safe_map({"price": "3.5"}) == {"price": 3.5}

    def test_safe_map_invalid_returns_default_and_warns(self):
        warnings = []
        mapper = PriceMapper()
        mapper.type_id = "price"

        result = mapper.safe_map({"nope": 1}, lambda reason, details: warnings.append((reason, details)))

        assert result == {"price": 0.0}
        assert len(warnings) == 1
        assert warnings[0][0].startswith("Invalid API response format")
        assert warnings[0][1] == {"type": "price", "errorName": "ValidationFailure"}

    def test_safe_map_mapping_error_returns_default(self):
        warnings = []
        result = PriceMapper().safe_map({"price": "abc"}, lambda r, d: warnings.append(d))

        assert result == {"price": 0.0}
        assert warnings[0]["errorName"] == "ValueError"

    def test_safe_map_without_callback_reports_diagnostic(self, capsys):
        mapper = PriceMapper()
        mapper.type_id = "price"

        assert mapper.safe_map({"nope": 1}) == {"price": 0.0}
        assert "[price] Invalid API response format" in capsys.readouterr().err

    def test_safe_map_never_raises_on_validator_error(self):
        assert RaisingValidatorMapper().safe_map({"price": 1}) == {"price": 0.0}


class TestBaseParser:
    def test_safe_parse_success(self):
        assert TextParser().safe_parse("  abc ") == "ABC"

    def test_safe_parse_validation_failure(self):
        parser = TextParser()
        parser.type_id = "text"
        with pytest.raises(ValidationFailure) as exc_info:
            parser.safe_parse(42)
        assert str(exc_info.value) == "[text] Invalid raw data: not text"

    def test_safe_parse_transform_failure(self):
        with pytest.raises(TransformFailure) as exc_info:
            TextParser().safe_parse("explode")
        assert "cannot parse" in str(exc_info.value)
        assert isinstance(exc_info.value.cause, RuntimeError)


class TestRegistries:
    def test_register_and_get(self):
        registry = MapperRegistry()
        mapper = PriceMapper()
        registry.register("price", mapper)

        assert registry.get("price") is mapper
        assert registry.has("price")
        assert "price" in registry
        assert mapper.type_id == "price"
        assert registry.registered_types() == ["price"]

    def test_unknown_type(self):
        registry = ParserRegistry()
        assert registry.get("missing") is None
        assert not registry.has("missing")

    def test_reregistration_replaces(self):
        registry = MapperRegistry()
        first, second = PriceMapper(), PriceMapper()
        registry.register("price", first)
        registry.register("price", second)

        assert registry.get("price") is second
        assert len(registry) == 1

    def test_rejects_wrong_strategy_kind(self):
        with pytest.raises(TypeError):
            MapperRegistry().register("text", TextParser())

    def test_rejects_empty_type(self):
        with pytest.raises(ValueError):
            ParserRegistry().register("", TextParser())


class TestEarthquakeMapper:
    def test_maps_feed(self, sample_earthquake_feed):
        result = EarthquakeMapper().safe_map(sample_earthquake_feed)

        assert len(result["items"]) == 2
        first = result["items"][0]
        assert first["id"] == "us7000abcd"
        assert first["magnitude"] == 5.1
        assert first["time"] == datetime.fromtimestamp(1750000000, tz=timezone.utc)
        assert first["coordinates"] == [121.6, 23.9, 15.0]

    def test_default_on_bad_payload(self):
        assert EarthquakeMapper().safe_map({"type": "FeatureCollection"}) == {"items": []}
        assert EarthquakeMapper().safe_map({"features": [{"no": "id"}]}) == {"items": []}


class TestUraniumHtmlParser:
    def test_parses_page(self, sample_uranium_html):
        result = UraniumHtmlParser().safe_parse(sample_uranium_html)

        assert result["spotPrice"] == 85.5
        assert result["change"] == -1.25
        assert result["changePercent"] == -1.44
        assert result["history"] == [
            {"date": "2025-06-01", "price": 86.75},
            {"date": "2025-06-02", "price": 85.5},
        ]
        assert isinstance(result["lastUpdated"], datetime)

    def test_derives_change_percent(self):
        html = '<span id="spot-price">110</span><span id="price-change">10</span>'
        assert UraniumHtmlParser().safe_parse(html)["changePercent"] == 10.0

    def test_rejects_unrelated_page(self):
        with pytest.raises(ValidationFailure):
            UraniumHtmlParser().safe_parse("<html><body>Not found</body></html>")

    def test_missing_number_is_transform_failure(self):
        with pytest.raises(TransformFailure):
            UraniumHtmlParser().safe_parse('<span id="spot-price">n/a</span>')


def test_register_builtin_transforms():
    mappers, parsers = MapperRegistry(), ParserRegistry()
    register_builtin_transforms(mappers, parsers)

    assert isinstance(mappers.get("earthquake"), EarthquakeMapper)
    assert isinstance(parsers.get("uranium"), UraniumHtmlParser)
