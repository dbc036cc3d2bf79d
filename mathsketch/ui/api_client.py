"""HTTP client and session state for frontends talking to `/calculate`."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx

from mathsketch.tools.images import encode_image_bytes, infer_image_media_type

logger = logging.getLogger("mathsketch.ui.api_client")

SUCCESS_MESSAGE = "Calculation completed!"
UNRECOGNIZED_MESSAGE = "Could not recognize the equation. Please try drawing more clearly."
FAILURE_MESSAGE = "Failed to calculate. Please check your connection and try again."


class CalculateAPIError(RuntimeError):
    """Raised when the calculate endpoint is unreachable or answers with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class CalculationOutcome:
    """Result of one calculate round-trip as the UI should present it.

    `status` is `success`, `unrecognized` (the server answered but found
    nothing) or `error` (network failure or non-2xx response).
    """

    status: str
    message: str
    records: List[Dict[str, Any]] = field(default_factory=list)


def build_calculate_payload(
    image_bytes: Optional[bytes] = None,
    image_data_url: Optional[str] = None,
    dict_of_vars: Optional[Mapping[str, Any]] = None,
    image_filename: Optional[str] = None,
    prompt_variant: Optional[str] = None,
) -> Dict[str, Any]:
    """Builds the `/calculate` request body.

    Args:
        image_bytes: Raw image bytes, encoded as a data URL.
        image_data_url: Ready-made data URL, used when `image_bytes` is absent.
        dict_of_vars: Current variable bindings.
        image_filename: Optional filename for media-type inference.
        prompt_variant: Optional prompt registry entry.

    Returns:
        JSON-serializable payload dictionary.

    Raises:
        ValueError: If no image is provided.
    """
    if image_bytes:
        image = encode_image_bytes(image_bytes, media_type=infer_image_media_type(image_filename or ""))
    elif image_data_url and image_data_url.strip():
        image = image_data_url.strip()
    else:
        raise ValueError("An image is required.")

    payload: Dict[str, Any] = {"image": image, "dict_of_vars": dict(dict_of_vars or {})}
    if prompt_variant:
        payload["prompt_variant"] = prompt_variant
    return payload


async def call_calculate_api_async(
    base_url: str,
    payload: Dict[str, Any],
    timeout_seconds: float = 120,
    request_id: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """Posts a calculate request and returns the parsed JSON envelope.

    Args:
        base_url: API base URL.
        payload: Request body from `build_calculate_payload`.
        timeout_seconds: Request timeout in seconds.
        request_id: Optional value for the `X-Request-ID` header.
        transport: Optional httpx transport, used by tests.

    Returns:
        Response envelope with `status`, `message` and `data`.

    Raises:
        CalculateAPIError: If HTTP/network errors occur.
    """
    endpoint = base_url.rstrip("/") + "/calculate"
    started_at = time.perf_counter()
    logger.info("HTTP POST start endpoint=%s timeout=%ss", endpoint, timeout_seconds)
    try:
        async with httpx.AsyncClient(timeout=timeout_seconds, transport=transport) as client:
            headers = {"X-Request-ID": request_id} if request_id else None
            response = await client.post(endpoint, json=payload, headers=headers)
            elapsed_ms = (time.perf_counter() - started_at) * 1000.0
            logger.info("HTTP POST done endpoint=%s status=%s elapsed_ms=%.1f", endpoint, response.status_code, elapsed_ms)
            if response.status_code >= 400:
                detail = _extract_error_detail(response.text)
                raise CalculateAPIError("API error {}: {}".format(response.status_code, detail), response.status_code)
            envelope = response.json()
            if not isinstance(envelope, dict):
                raise CalculateAPIError("API returned an unexpected body", response.status_code)
            return envelope
    except httpx.TimeoutException as exc:
        elapsed_ms = (time.perf_counter() - started_at) * 1000.0
        logger.error("HTTP timeout endpoint=%s elapsed_ms=%.1f", endpoint, elapsed_ms)
        raise CalculateAPIError("Request timed out after {}s".format(timeout_seconds)) from exc
    except httpx.TransportError as exc:
        elapsed_ms = (time.perf_counter() - started_at) * 1000.0
        logger.error("HTTP connect error endpoint=%s elapsed_ms=%.1f error=%s", endpoint, elapsed_ms, exc)
        raise CalculateAPIError("Could not reach the API: {}".format(exc)) from exc
    except ValueError as exc:
        raise CalculateAPIError("API returned a non-JSON body") from exc


def apply_assignments(dict_of_vars: Mapping[str, Any], records: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    """Returns a copy of the bindings updated with every assignment record.

    Args:
        dict_of_vars: Current variable bindings.
        records: Solution records from the server, in response order.

    Returns:
        New bindings map; records with `assign` false leave it untouched.
    """
    updated = dict(dict_of_vars)
    for record in records:
        if record.get("assign") is True:
            updated[str(record.get("expr", ""))] = record.get("result")
    return updated


class CalculationSession:
    """Client-side state of one drawing session.

    Owns the variable bindings sent with every request and the history of
    results, newest first.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 120,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.dict_of_vars: Dict[str, Any] = {}
        self.results: List[Dict[str, Any]] = []

    async def calculate(
        self,
        image_bytes: Optional[bytes] = None,
        image_data_url: Optional[str] = None,
        image_filename: Optional[str] = None,
        prompt_variant: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> CalculationOutcome:
        """Sends the drawing with the current bindings and records the answer."""
        payload = build_calculate_payload(
            image_bytes=image_bytes,
            image_data_url=image_data_url,
            dict_of_vars=self.dict_of_vars,
            image_filename=image_filename,
            prompt_variant=prompt_variant,
        )
        try:
            envelope = await call_calculate_api_async(
                self.base_url,
                payload,
                timeout_seconds=self.timeout_seconds,
                request_id=request_id,
                transport=self.transport,
            )
        except CalculateAPIError as exc:
            logger.error("calculate_failed error=%s", exc)
            return CalculationOutcome(status="error", message=FAILURE_MESSAGE)

        records = envelope.get("data") or []
        if not isinstance(records, list) or not records:
            return CalculationOutcome(status="unrecognized", message=UNRECOGNIZED_MESSAGE)

        self.dict_of_vars = apply_assignments(self.dict_of_vars, records)
        self.results = list(records) + self.results
        return CalculationOutcome(status="success", message=SUCCESS_MESSAGE, records=list(records))

    def clear_results(self) -> None:
        """Forgets the result history and every variable binding."""
        self.results = []
        self.dict_of_vars = {}


def _extract_error_detail(raw_body: str) -> str:
    """Extracts a readable error from the API error envelope."""
    try:
        parsed = json.loads(raw_body)
        if isinstance(parsed, dict):
            for key in ("error", "detail", "message"):
                if key in parsed:
                    return str(parsed[key])
    except json.JSONDecodeError:
        pass
    return raw_body.strip() or "Unknown error"
