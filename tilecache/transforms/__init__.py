"""Transform strategies - mappers, parsers and their registries."""

from .base import (
    BaseMapper,
    BaseParser,
    Invalid,
    MapperRegistry,
    ParserRegistry,
    TypedRegistry,
    Valid,
    ValidationResult,
)
from .builtin import EarthquakeMapper, UraniumHtmlParser, register_builtin_transforms

__all__ = [
    "BaseMapper",
    "BaseParser",
    "Invalid",
    "MapperRegistry",
    "ParserRegistry",
    "TypedRegistry",
    "Valid",
    "ValidationResult",
    "EarthquakeMapper",
    "UraniumHtmlParser",
    "register_builtin_transforms",
]
