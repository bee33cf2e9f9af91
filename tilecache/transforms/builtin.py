"""Built-in transform strategies for the stock dashboard tiles.

- earthquake: USGS GeoJSON feature collection (mapper)
- uranium: Trading Economics commodity page (HTML parser)
"""

from __future__ import annotations

import datetime as dt
import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from .base import BaseMapper, BaseParser, Invalid, MapperRegistry, ParserRegistry, Valid, ValidationResult

NUMBER_RE = re.compile(r"[-+]?\d+(?:[.,]\d+)*")


class EarthquakeMapper(BaseMapper[Dict[str, Any]]):
    """Maps a USGS earthquake feed to ``{"items": [...]}``."""

    type_id = "earthquake"

    def validate(self, raw: Any) -> ValidationResult:
        if not isinstance(raw, dict):
            return Invalid(f"expected an object, got {type(raw).__name__}")
        if not isinstance(raw.get("features"), list):
            return Invalid("missing 'features' list")
        return Valid(raw)

    def map(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        items: List[Dict[str, Any]] = []
        for feature in raw["features"]:
            props = feature["properties"]
            time_ms = props.get("time")
            items.append({
                "id": feature["id"],
                "place": props.get("place"),
                "magnitude": props.get("mag"),
                "time": (
                    dt.datetime.fromtimestamp(time_ms / 1000, tz=dt.timezone.utc)
                    if isinstance(time_ms, (int, float))
                    else None
                ),
                "coordinates": list(feature.get("geometry", {}).get("coordinates", [])),
            })
        return {"items": items}

    def create_default(self) -> Dict[str, Any]:
        return {"items": []}


class UraniumHtmlParser(BaseParser[Dict[str, Any]]):
    """Parses the uranium spot price out of a scraped commodity page."""

    type_id = "uranium"

    def validate(self, raw: Any) -> ValidationResult:
        if not isinstance(raw, str):
            return Invalid(f"expected HTML text, got {type(raw).__name__}")
        if "spot-price" not in raw:
            return Invalid("page has no spot-price element")
        return Valid(raw)

    def parse(self, raw: str) -> Dict[str, Any]:
        soup = BeautifulSoup(raw, "html.parser")
        spot = self._number(soup.find(id="spot-price"))
        if spot is None:
            raise ValueError("spot-price element has no numeric value")
        change = self._number(soup.find(id="price-change")) or 0.0
        change_percent = self._number(soup.find(id="price-change-percent"))
        if change_percent is None:
            previous = spot - change
            change_percent = round(change / previous * 100, 2) if previous else 0.0
        return {
            "spotPrice": spot,
            "change": change,
            "changePercent": change_percent,
            "lastUpdated": dt.datetime.now(dt.timezone.utc).replace(microsecond=0),
            "history": self._history(soup),
        }

    def _number(self, node: Optional[Any]) -> Optional[float]:
        if not isinstance(node, Tag):
            return None
        m = NUMBER_RE.search(node.get_text(" ", strip=True))
        if not m:
            return None
        return float(m.group(0).replace(",", ""))

    def _history(self, soup: BeautifulSoup) -> List[Dict[str, Any]]:
        rows = []
        table = soup.find(id="price-history")
        if not isinstance(table, Tag):
            return rows
        for tr in table.find_all("tr"):
            cells = [td.get_text(strip=True) for td in tr.find_all("td")]
            if len(cells) < 2:
                continue
            m = NUMBER_RE.search(cells[1])
            if m:
                rows.append({"date": cells[0], "price": float(m.group(0).replace(",", ""))})
        return rows


def register_builtin_transforms(mappers: MapperRegistry, parsers: ParserRegistry) -> None:
    """Register the stock tile strategies."""
    mappers.register(EarthquakeMapper.type_id, EarthquakeMapper())
    parsers.register(UraniumHtmlParser.type_id, UraniumHtmlParser())
