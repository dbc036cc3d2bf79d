"""CLI/API entrypoint for MathSketch."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

from mathsketch.api import create_app
from mathsketch.service import CalculationService
from mathsketch.tools.images import encode_image_bytes, infer_image_media_type
from mathsketch.utils.config_loader import AppConfig, ConfigError, load_app_config, validate_startup
from mathsketch.utils.logger import configure_logging


def build_parser() -> argparse.ArgumentParser:
    """Builds CLI argument parser for app entrypoints.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(description="MathSketch")
    parser.add_argument("--mode", choices=["cli", "api"], default="api")
    parser.add_argument("--config", type=str, default=None, help="Path of app_config.yml")
    parser.add_argument("--image-path", type=str, default=None, help="Drawing to solve in cli mode")
    parser.add_argument("--variables", type=str, default="{}", help="JSON object of assigned variables")
    parser.add_argument("--variant", type=str, default=None, help="Prompt variant: standard|step_by_step")
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--log-level", type=str, default=None)
    return parser


def parse_variables(raw: str) -> Dict[str, Any]:
    """Parses the `--variables` JSON object.

    Raises:
        ValueError: If the value is not a JSON object.
    """
    try:
        parsed = json.loads(raw or "{}")
    except json.JSONDecodeError as exc:
        raise ValueError("--variables must be a JSON object: {}".format(exc)) from exc
    if not isinstance(parsed, dict):
        raise ValueError("--variables must be a JSON object")
    return parsed


def run_cli(
    config: AppConfig,
    image_path: Optional[str],
    variables: Dict[str, Any],
    prompt_variant: Optional[str] = None,
) -> int:
    """Runs one calculation locally and prints the response envelope.

    Raises:
        ValueError: If no readable image is given.
        ConfigError: If the vision model cannot be used.
    """
    if not image_path:
        raise ValueError("--image-path is required in cli mode")
    path = Path(image_path).expanduser()
    if not path.is_file():
        raise ValueError("Image not found: {}".format(path))

    image = encode_image_bytes(path.read_bytes(), media_type=infer_image_media_type(path.name))
    service = CalculationService.from_config(config)
    validate_startup(config, llm_status=service.vision_client.describe(), require_cors=False)
    records = asyncio.run(service.calculate(image=image, dict_of_vars=variables, prompt_variant=prompt_variant))

    print(
        json.dumps(
            {"message": "Image processed", "status": "success", "data": records},
            ensure_ascii=False,
            indent=2,
        )
    )
    return 0


def run_api(config: AppConfig, host: str, port: int) -> int:
    """Runs FastAPI server using Uvicorn.

    Raises:
        ConfigError: If startup settings are missing.
    """
    import uvicorn

    app = create_app(config=config)
    uvicorn.run(app, host=host, port=port, log_config=None)
    return 0


def main() -> int:
    """Application entrypoint for CLI and API modes.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args()

    try:
        config = load_app_config(args.config)
    except ConfigError as exc:
        parser.error(str(exc))
    configure_logging(args.log_level or config.log_level)

    if args.mode == "api":
        try:
            return run_api(config, args.host or config.server.host, args.port or config.server.port)
        except ConfigError as exc:
            parser.exit(status=2, message="Startup failed: {}\n".format(exc))

    try:
        return run_cli(
            config,
            image_path=args.image_path,
            variables=parse_variables(args.variables),
            prompt_variant=args.variant,
        )
    except ValueError as exc:
        parser.error(str(exc))
    except ConfigError as exc:
        parser.exit(status=2, message="Startup failed: {}\n".format(exc))
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
