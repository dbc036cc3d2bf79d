"""Client-side helpers for frontends."""

from .api_client import (
    CalculateAPIError,
    CalculationOutcome,
    CalculationSession,
    apply_assignments,
    build_calculate_payload,
    call_calculate_api_async,
)

__all__ = [
    "CalculateAPIError",
    "CalculationOutcome",
    "CalculationSession",
    "apply_assignments",
    "build_calculate_payload",
    "call_calculate_api_async",
]
