"""Vision model client used to read hand-drawn math from canvas images."""

from __future__ import annotations

import asyncio
import json
import os
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from langchain_core.messages import HumanMessage, SystemMessage

from mathsketch.tools.images import ImagePayload
from mathsketch.utils.config_loader import load_environment_variables
from mathsketch.utils.logger import get_logger, log_event

try:  # pragma: no cover
    from google import genai
    from google.genai import types as genai_types
except ImportError:  # pragma: no cover
    genai = None  # type: ignore[assignment]
    genai_types = None  # type: ignore[assignment]

try:  # pragma: no cover
    from langchain_nvidia_ai_endpoints import ChatNVIDIA
except ImportError:  # pragma: no cover
    ChatNVIDIA = None  # type: ignore[assignment]


logger = get_logger("mathsketch.llm")

SUPPORTED_PROVIDERS = ("gemini", "nvidia")

_PROVIDER_DEFAULTS: Dict[str, Dict[str, str]] = {
    "gemini": {"model": "gemini-1.5-flash", "fallback_key_env": "GOOGLE_API_KEY"},
    "nvidia": {"model": "meta/llama-3.2-90b-vision-instruct", "fallback_key_env": "NVIDIA_API_KEY"},
}

_TEMPLATE_VAR_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


@dataclass
class VisionRuntimeConfig:
    """Runtime configuration for the vision model client.

    Attributes:
        enabled: Enables or disables the client bootstrap.
        provider: Provider name, one of `SUPPORTED_PROVIDERS`.
        model: Provider model identifier.
        api_key_env: Preferred environment variable for the API key.
        temperature: Sampling temperature.
        top_p: Nucleus sampling parameter.
        max_tokens: Maximum number of output tokens.
        timeout_seconds: Upper bound for one outbound call.
    """

    enabled: bool = True
    provider: str = "gemini"
    model: str = "gemini-1.5-flash"
    api_key_env: str = "GENERATIVEAI_API_KEY"
    temperature: float = 0.2
    top_p: float = 1.0
    max_tokens: int = 4096
    timeout_seconds: float = 30.0


class VisionModelClient:
    """Facade over the external multimodal model.

    One instance is built at startup and injected into the calculation
    service. Failures never propagate: they are logged and reported as an
    empty reply, which callers treat as "nothing recognized".
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Builds a client from runtime config and bootstraps provider access.

        Args:
            config: Optional runtime settings overriding defaults.
        """
        raw = config or {}
        provider = str(raw.get("provider", "gemini")).strip().lower() or "gemini"
        defaults = _PROVIDER_DEFAULTS.get(provider, _PROVIDER_DEFAULTS["gemini"])
        self.config = VisionRuntimeConfig(
            enabled=bool(raw.get("enabled", True)),
            provider=provider,
            model=str(raw.get("model") or defaults["model"]),
            api_key_env=str(raw.get("api_key_env", "GENERATIVEAI_API_KEY")),
            temperature=float(raw.get("temperature", 0.2)),
            top_p=float(raw.get("top_p", 1.0)),
            max_tokens=int(raw.get("max_tokens", 4096)),
            timeout_seconds=max(0.1, float(raw.get("timeout_seconds", 30))),
        )

        self._client: Optional[Any] = None
        self._unavailable_reason: Optional[str] = None
        self._bootstrap()

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def describe(self) -> Dict[str, Any]:
        """Returns diagnostics about provider and key availability.

        Returns:
            A serializable dictionary with provider/runtime metadata.
        """
        api_key_present = any(bool((os.getenv(name) or "").strip()) for name in self._key_candidates())
        return {
            "enabled": self.config.enabled,
            "provider": self.config.provider,
            "model": self.config.model,
            "available": self.is_available,
            "reason": self._unavailable_reason,
            "api_key_env": self.config.api_key_env,
            "api_key_present": api_key_present,
            "timeout_seconds": self.config.timeout_seconds,
        }

    def _bootstrap(self) -> None:
        """Initializes the provider client if runtime preconditions are met."""
        if not self.config.enabled:
            self._unavailable_reason = "disabled_by_config"
            return
        if self.config.provider not in SUPPORTED_PROVIDERS:
            self._unavailable_reason = "unsupported_provider"
            return
        load_environment_variables()

        if self.config.provider == "gemini" and genai is None:
            self._unavailable_reason = "missing_dependency_google_genai"
            return
        if self.config.provider == "nvidia" and ChatNVIDIA is None:
            self._unavailable_reason = "missing_dependency_langchain_nvidia_ai_endpoints"
            return

        api_key = _resolve_api_key(self._key_candidates())
        if not api_key:
            self._unavailable_reason = "missing_api_key"
            return

        if self.config.provider == "gemini":
            self._client = genai.Client(api_key=api_key)
        else:
            self._client = ChatNVIDIA(
                model=self.config.model,
                api_key=api_key,
                temperature=self.config.temperature,
                top_p=self.config.top_p,
                max_completion_tokens=self.config.max_tokens,
            )

    def _key_candidates(self) -> List[str]:
        """Returns key environment names ordered by lookup preference."""
        fallback = _PROVIDER_DEFAULTS.get(self.config.provider, {}).get("fallback_key_env", "")
        return [self.config.api_key_env, fallback]

    async def analyze_image(
        self,
        image: ImagePayload,
        variables: Mapping[str, Any],
        prompt_pack: Dict[str, str],
    ) -> str:
        """Asks the model to read and solve the drawing in `image`.

        Exactly one outbound call is made, bounded by `timeout_seconds`.

        Args:
            image: Decoded canvas payload.
            variables: Caller's variable bindings, substituted into the prompt.
            prompt_pack: `system`/`user` templates for the selected variant.

        Returns:
            Raw model text, or an empty string on any failure.
        """
        if not self.is_available:
            logger.warning(
                "vision_unavailable provider=%s reason=%s",
                self.config.provider,
                self._unavailable_reason,
            )
            return ""

        context = {"variables": dict(variables or {})}
        system_prompt = _render_prompt_template(prompt_pack.get("system", ""), context)
        user_prompt = _render_prompt_template(prompt_pack.get("user", ""), context)

        started_at = time.perf_counter()
        try:
            text = await asyncio.wait_for(
                self._invoke(system_prompt, user_prompt, image),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "vision_timeout provider=%s model=%s timeout_s=%.1f",
                self.config.provider,
                self.config.model,
                self.config.timeout_seconds,
            )
            return ""
        except Exception as exc:
            logger.exception(
                "vision_call_failed provider=%s model=%s error=%s",
                self.config.provider,
                self.config.model,
                exc,
            )
            return ""

        log_event(
            logger,
            "vision_call_done",
            provider=self.config.provider,
            model=self.config.model,
            elapsed_ms=round((time.perf_counter() - started_at) * 1000.0, 1),
            chars=len(text),
        )
        return text

    async def _invoke(self, system_prompt: str, user_prompt: str, image: ImagePayload) -> str:
        assert self._client is not None
        if self.config.provider == "gemini":
            return await asyncio.to_thread(self._generate_gemini, system_prompt, user_prompt, image)

        messages = _build_langchain_messages(system_prompt, user_prompt, image)
        response = await self._client.ainvoke(messages)
        return str(getattr(response, "content", "") or "")

    def _generate_gemini(self, system_prompt: str, user_prompt: str, image: ImagePayload) -> str:
        assert self._client is not None
        response = self._client.models.generate_content(
            model=self.config.model,
            contents=[
                user_prompt,
                genai_types.Part.from_bytes(data=image.to_bytes(), mime_type=image.media_type),
            ],
            config=genai_types.GenerateContentConfig(
                system_instruction=system_prompt,
                temperature=self.config.temperature,
                top_p=self.config.top_p,
                max_output_tokens=self.config.max_tokens,
            ),
        )
        return str(getattr(response, "text", "") or "")


def _render_prompt_template(template: str, context: Mapping[str, Any]) -> str:
    """Replaces `{{name}}` placeholders with context values.

    Non-string values are JSON-encoded with two-space indentation. Unknown
    placeholders are left as they are.
    """

    def _substitute(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key not in context:
            return match.group(0)
        value = context[key]
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, indent=2)

    return _TEMPLATE_VAR_RE.sub(_substitute, template)


def _build_langchain_messages(system_prompt: str, user_prompt: str, image: ImagePayload) -> List[Any]:
    """Builds chat messages with the image attached as a data URL block."""
    human_content: List[Dict[str, Any]] = [
        {"type": "text", "text": user_prompt},
        {"type": "image_url", "image_url": {"url": image.to_data_url()}},
    ]
    return [
        SystemMessage(content=system_prompt),
        HumanMessage(content=human_content),
    ]


def _resolve_api_key(candidates: List[str]) -> Optional[str]:
    """Finds the first non-empty API key among candidate env vars."""
    for name in candidates:
        if not name:
            continue
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None
