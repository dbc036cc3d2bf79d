"""REST interface for the MathSketch calculation service."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mathsketch.service import CalculationService
from mathsketch.utils.config_loader import AppConfig, load_app_config, validate_startup
from mathsketch.utils.logger import get_logger, log_event

logger = get_logger("mathsketch.api")

SUCCESS_MESSAGE = "Image processed"
FAILURE_MESSAGE = "Error processing image"


class CalculateRequest(BaseModel):
    image: str = Field(..., description="Canvas drawing as a data URL (data:image/<fmt>;base64,...)")
    dict_of_vars: Dict[str, Any] = Field(default_factory=dict, description="Variables assigned so far")
    prompt_variant: Optional[str] = Field(default=None, description="Prompt registry entry: standard|step_by_step")


class StepPayload(BaseModel):
    description: str
    expression: str


class SolutionPayload(BaseModel):
    expr: str
    result: Any
    assign: bool
    problem_type: str
    steps: List[StepPayload]
    method: str


class CalculateResponse(BaseModel):
    message: str
    status: str
    data: List[SolutionPayload]


class ErrorResponse(BaseModel):
    message: str
    status: str
    error: str


def _error_response(status_code: int, message: str, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"message": message, "status": "error", "error": error},
    )


def _format_validation_errors(errors: List[Dict[str, Any]]) -> str:
    parts = []
    for item in errors:
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        parts.append("{}: {}".format(location or "body", item.get("msg", "invalid value")))
    return "; ".join(parts) or "invalid request body"


def create_app(config: Optional[AppConfig] = None, service: Optional[CalculationService] = None) -> FastAPI:
    """Builds and configures the FastAPI application.

    Args:
        config: Application settings; loaded from YAML and environment when omitted.
        service: Pre-built calculation service; built from `config` when omitted.

    Returns:
        Configured FastAPI app instance.

    Raises:
        ConfigError: If required settings (CORS origin, model credential) are missing.
    """
    config = config or load_app_config()
    if service is None:
        service = CalculationService.from_config(config)
        validate_startup(config, llm_status=service.vision_client.describe())
    else:
        validate_startup(config)

    app = FastAPI(title="MathSketch API", version=config.version)
    max_body_bytes = int(config.server.max_body_bytes)

    @app.middleware("http")
    async def limit_body_size(request: Request, call_next: Any) -> Any:
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > max_body_bytes:
            logger.warning("request_too_large path=%s bytes=%s limit=%s", request.url.path, declared, max_body_bytes)
            return _error_response(
                413,
                "Request body too large",
                "Body of {} bytes exceeds the {} byte limit".format(declared, max_body_bytes),
            )
        return await call_next(request)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.server.cors_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        detail = _format_validation_errors(list(exc.errors()))
        logger.info("calculate_rejected path=%s error=%s", request.url.path, detail)
        return _error_response(422, "Invalid request body", detail)

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post(
        "/calculate",
        response_model=CalculateResponse,
        responses={422: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def calculate(payload: CalculateRequest, request: Request) -> Any:
        request_id = request.headers.get("X-Request-ID", "-")
        log_event(
            logger,
            "calculate_start",
            request_id=request_id,
            image_chars=len(payload.image),
            variables=len(payload.dict_of_vars),
            variant=payload.prompt_variant,
        )
        try:
            records = await service.calculate(
                image=payload.image,
                dict_of_vars=payload.dict_of_vars,
                prompt_variant=payload.prompt_variant,
            )
        except Exception as exc:
            logger.exception("calculate_failed request_id=%s error=%s", request_id, exc)
            return _error_response(500, FAILURE_MESSAGE, str(exc))

        log_event(logger, "calculate_done", request_id=request_id, records=len(records))
        return {"message": SUCCESS_MESSAGE, "status": "success", "data": records}

    return app
