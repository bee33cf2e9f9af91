"""Per-type transform strategies and their registries.

A *mapper* turns a validated API payload into tile data and always has a
safe default. A *parser* turns scraped content into tile data and has no
safe default: its failures propagate to the caller.
"""

from __future__ import annotations

import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

from ..errors import TransformFailure, ValidationFailure

Out = TypeVar("Out")
Strategy = TypeVar("Strategy")

WarningCallback = Callable[[str, Dict[str, Any]], None]


def _log(msg: str) -> None:
    """Developer diagnostic output (stderr, flushed)."""
    print(msg, file=sys.stderr, flush=True)


@dataclass(frozen=True)
class Valid:
    """Successful validation, carrying the checked value."""

    value: Any

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Invalid:
    """Failed validation with a human-readable reason."""

    reason: str

    def __bool__(self) -> bool:
        return False


ValidationResult = Union[Valid, Invalid]


def as_validation_result(result: Union[bool, ValidationResult], raw: Any) -> ValidationResult:
    """Normalize a validator return value into a tagged result."""
    if isinstance(result, (Valid, Invalid)):
        return result
    if result:
        return Valid(raw)
    return Invalid("Invalid raw data format")


class BaseMapper(ABC, Generic[Out]):
    """Maps an API payload to tile data with a default fallback."""

    type_id: str = ""

    @abstractmethod
    def validate(self, raw: Any) -> Union[bool, ValidationResult]:
        """Check that ``raw`` has the expected shape."""

    @abstractmethod
    def map(self, raw: Any) -> Out:
        """Map a validated payload. May raise."""

    @abstractmethod
    def create_default(self) -> Out:
        """Return empty tile data used when mapping fails."""

    def safe_map(self, raw: Any, warn: Optional[WarningCallback] = None) -> Out:
        """Validate then map; any failure yields ``create_default()``. Never raises."""
        type_id = self.type_id or type(self).__name__
        try:
            checked = as_validation_result(self.validate(raw), raw)
        except Exception as exc:
            checked = Invalid(f"Validator raised {type(exc).__name__}: {exc}")

        if isinstance(checked, Invalid):
            reason = f"Invalid API response format: {checked.reason}"
            details = {"type": type_id, "errorName": "ValidationFailure"}
        else:
            try:
                return self.map(checked.value)
            except Exception as exc:
                reason = f"Data mapping failed: {exc}"
                details = {"type": type_id, "errorName": type(exc).__name__}

        if warn is not None:
            warn(reason, details)
        else:
            _log(f"[{type_id}] {reason}; using default")
        return self.create_default()


class BaseParser(ABC, Generic[Out]):
    """Parses scraped content to tile data. Failures are hard errors."""

    type_id: str = ""

    @abstractmethod
    def validate(self, raw: Any) -> Union[bool, ValidationResult]:
        """Check that ``raw`` looks like the expected source."""

    @abstractmethod
    def parse(self, raw: Any) -> Out:
        """Parse validated content. May raise."""

    def safe_parse(self, raw: Any) -> Out:
        """Validate then parse.

        Raises:
            ValidationFailure: If validation fails.
            TransformFailure: If parsing raises.
        """
        type_id = self.type_id or type(self).__name__
        checked = as_validation_result(self.validate(raw), raw)
        if isinstance(checked, Invalid):
            raise ValidationFailure(type_id, checked.reason)
        try:
            return self.parse(checked.value)
        except (ValidationFailure, TransformFailure):
            raise
        except Exception as exc:
            raise TransformFailure(type_id, f"Data parsing failed: {exc}", exc) from exc


class TypedRegistry(Generic[Strategy]):
    """Associates type identifiers with one strategy each."""

    kind = "strategy"
    strategy_class: type = object

    def __init__(self) -> None:
        self._strategies: Dict[str, Strategy] = {}

    def register(self, type_id: str, strategy: Strategy) -> None:
        """Register (or replace) the strategy for ``type_id``."""
        if not type_id:
            raise ValueError(f"A {self.kind} needs a non-empty type identifier")
        if not isinstance(strategy, self.strategy_class):
            raise TypeError(
                f"{type(strategy).__name__} is not a {self.strategy_class.__name__}; "
                f"cannot register {self.kind} for {type_id!r}"
            )
        if not getattr(strategy, "type_id", ""):
            strategy.type_id = type_id  # type: ignore[attr-defined]
        self._strategies[type_id] = strategy

    def get(self, type_id: str) -> Optional[Strategy]:
        return self._strategies.get(type_id)

    def has(self, type_id: str) -> bool:
        return type_id in self._strategies

    def registered_types(self) -> List[str]:
        return list(self._strategies.keys())

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._strategies

    def __len__(self) -> int:
        return len(self._strategies)


class MapperRegistry(TypedRegistry[BaseMapper]):
    kind = "mapper"
    strategy_class = BaseMapper


class ParserRegistry(TypedRegistry[BaseParser]):
    kind = "parser"
    strategy_class = BaseParser
