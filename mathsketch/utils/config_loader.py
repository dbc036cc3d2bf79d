"""Configuration loaders for YAML-based runtime settings and prompt registry."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[2]
# Shipped as package data, so installed copies find their defaults too.
CONFIG_DIR = Path(__file__).resolve().parents[1] / "configs"
DEFAULT_CONFIG_PATH = CONFIG_DIR / "app_config.yml"
DEFAULT_PROMPTS_PATH = CONFIG_DIR / "prompts.yml"

# 50 MB, drawings are posted as full-canvas data URLs.
DEFAULT_MAX_BODY_BYTES = 52428800


@dataclass
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origin: str = ""
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES


@dataclass
class AppConfig:
    version: str = "1.0.0"
    server: ServerSettings = field(default_factory=ServerSettings)
    llm: Dict[str, Any] = field(default_factory=dict)
    prompts: Dict[str, Any] = field(default_factory=dict)
    logging: Dict[str, Any] = field(default_factory=dict)

    @property
    def log_level(self) -> str:
        return str(self.logging.get("level", "INFO"))

    @property
    def default_prompt_variant(self) -> str:
        return str(self.prompts.get("default_variant", "step_by_step"))

    @property
    def prompts_path(self) -> Path:
        raw = self.prompts.get("path")
        if not raw:
            return DEFAULT_PROMPTS_PATH
        path = Path(str(raw))
        return path if path.is_absolute() else CONFIG_DIR / path


class ConfigError(RuntimeError):
    """Raised when configuration files cannot be loaded or validated."""


def load_environment_variables() -> None:
    """Loads `.env` files from the working directory and project root.

    Values already present in the process environment are never overridden.
    """
    for env_path in (Path.cwd() / ".env", PROJECT_ROOT / ".env"):
        if env_path.exists():
            load_dotenv(dotenv_path=env_path, override=False)


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError("Configuration file not found: {}".format(path))
    with path.open("r", encoding="utf-8") as handle:
        try:
            loaded = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError("Invalid YAML in {}: {}".format(path, exc)) from exc
    if not isinstance(loaded, dict):
        raise ConfigError("Configuration root must be a mapping in {}".format(path))
    return loaded


def load_app_config(path: Optional[str] = None) -> AppConfig:
    """Loads application settings and applies environment overrides.

    Args:
        path: Optional YAML path; defaults to the bundled `app_config.yml`.

    Returns:
        Parsed `AppConfig`.

    Raises:
        ConfigError: If the file is missing, malformed, or holds invalid values.
    """
    load_environment_variables()
    data = _load_yaml(Path(path) if path else DEFAULT_CONFIG_PATH)
    server_data = dict(data.get("server", {}) or {})

    try:
        server = ServerSettings(
            host=str(server_data.get("host", "0.0.0.0")),
            port=int(os.getenv("PORT") or server_data.get("port", 3000)),
            cors_origin=str(os.getenv("CLIENT_URL") or server_data.get("cors_origin") or "").strip(),
            max_body_bytes=int(server_data.get("max_body_bytes", DEFAULT_MAX_BODY_BYTES)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError("Invalid server settings: {}".format(exc)) from exc

    logging_data = dict(data.get("logging", {}) or {})
    if os.getenv("LOG_LEVEL"):
        logging_data["level"] = os.getenv("LOG_LEVEL")

    return AppConfig(
        version=str(data.get("version", "1.0.0")),
        server=server,
        llm=dict(data.get("llm", {}) or {}),
        prompts=dict(data.get("prompts", {}) or {}),
        logging=logging_data,
    )


def validate_startup(
    config: AppConfig,
    llm_status: Optional[Dict[str, Any]] = None,
    require_cors: bool = True,
) -> None:
    """Checks the settings required to serve real traffic.

    Args:
        config: Loaded application config.
        llm_status: Optional `describe()` output of the vision client.
        require_cors: Whether an allowed browser origin is needed; local CLI runs skip it.

    Raises:
        ConfigError: Naming every missing setting at once.
    """
    missing: List[str] = []
    if require_cors and not config.server.cors_origin:
        missing.append("allowed CORS origin (set CLIENT_URL)")
    if llm_status is not None and not llm_status.get("available", False):
        reason = llm_status.get("reason") or "unknown"
        if reason == "missing_api_key":
            api_key_env = llm_status.get("api_key_env") or config.llm.get("api_key_env", "GENERATIVEAI_API_KEY")
            missing.append("vision model API key (set {})".format(api_key_env))
        else:
            missing.append("usable vision model client (reason={})".format(reason))
    if missing:
        raise ConfigError("Missing required configuration: {}".format("; ".join(missing)))


def _resolve_prompt(name: str, prompts: Dict[str, Any], seen: Optional[set] = None) -> Dict[str, str]:
    seen = seen or set()
    if name in seen:
        raise ConfigError("Cyclic prompt inheritance detected at '{}'".format(name))
    seen.add(name)

    registry = prompts.get("registry", {})
    node = registry.get(name)
    if not isinstance(node, dict):
        raise ConfigError("Prompt '{}' not found in registry".format(name))

    base: Dict[str, str] = {}
    parent = node.get("extends")
    if parent:
        base = _resolve_prompt(str(parent), prompts, seen)

    merged = dict(base)
    for key in ("system", "user"):
        if key in node:
            merged[key] = str(node[key])
    return merged


def load_prompts_registry(path: Optional[str] = None) -> Dict[str, Dict[str, str]]:
    """Loads the prompt registry and resolves `extends` inheritance.

    Args:
        path: Optional YAML path; defaults to the bundled `prompts.yml`.

    Returns:
        Mapping of variant name to resolved `system`/`user` templates.
    """
    data = _load_yaml(Path(path) if path else DEFAULT_PROMPTS_PATH)
    registry = data.get("registry", {})
    if not isinstance(registry, dict):
        raise ConfigError("'registry' must be a mapping in prompts configuration")

    resolved: Dict[str, Dict[str, str]] = {}
    for name in registry:
        resolved[name] = _resolve_prompt(str(name), data)
    return resolved
