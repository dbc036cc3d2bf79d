"""Calculation service entrypoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from .calculation import CalculationService

__all__ = ["CalculationService"]


def __getattr__(name: str) -> Any:
    if name == "CalculationService":
        from .calculation import CalculationService

        return CalculationService
    raise AttributeError("module '{}' has no attribute '{}'".format(__name__, name))
