"""Calculation service: canvas image in, solution records out."""

from __future__ import annotations

import time
from typing import Any, Dict, List, Mapping, Optional

from mathsketch.llm import VisionModelClient
from mathsketch.service.records import SolutionRecord, record_summary
from mathsketch.tools.images import parse_image_data_url
from mathsketch.tools.recovery import parse_solution_text
from mathsketch.utils.config_loader import AppConfig, ConfigError, load_prompts_registry
from mathsketch.utils.logger import get_logger, log_event


class CalculationService:
    """Orchestrates the vision model call and reply recovery.

    Holds no per-request state: variable bindings are supplied by the caller
    on every call, so one instance safely serves concurrent requests.
    """

    def __init__(
        self,
        vision_client: VisionModelClient,
        prompts: Dict[str, Dict[str, str]],
        default_variant: str = "step_by_step",
    ) -> None:
        """Initializes the service with its collaborators.

        Args:
            vision_client: Client used for the outbound model call.
            prompts: Resolved prompt registry keyed by variant name.
            default_variant: Variant used when callers do not pick one.

        Raises:
            ConfigError: If `default_variant` is not in the registry.
        """
        if default_variant not in prompts:
            raise ConfigError("Default prompt variant '{}' not found in registry".format(default_variant))
        self.logger = get_logger("mathsketch.service")
        self.vision_client = vision_client
        self.prompts = prompts
        self.default_variant = default_variant

    @classmethod
    def from_config(cls, config: AppConfig) -> "CalculationService":
        """Builds the service and its vision client from application config."""
        prompts = load_prompts_registry(str(config.prompts_path))
        return cls(
            vision_client=VisionModelClient(config=config.llm),
            prompts=prompts,
            default_variant=config.default_prompt_variant,
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "llm": self.vision_client.describe(),
            "prompt_variants": sorted(self.prompts),
            "default_variant": self.default_variant,
        }

    def _prompt_pack(self, prompt_variant: Optional[str]) -> Dict[str, str]:
        if prompt_variant and prompt_variant in self.prompts:
            return self.prompts[prompt_variant]
        if prompt_variant:
            self.logger.warning(
                "prompt_variant_unknown requested=%s using=%s",
                prompt_variant,
                self.default_variant,
            )
        return self.prompts[self.default_variant]

    async def calculate(
        self,
        image: str,
        dict_of_vars: Optional[Mapping[str, Any]] = None,
        prompt_variant: Optional[str] = None,
    ) -> List[SolutionRecord]:
        """Reads the drawing in `image` and returns its solutions.

        Args:
            image: Data URL (or bare base64) exported from the canvas.
            dict_of_vars: Caller's variable bindings.
            prompt_variant: Optional prompt registry entry to use.

        Returns:
            Ordered, fully normalized records. Empty when the model could not
            be reached or returned nothing.
        """
        started = time.perf_counter()
        payload = parse_image_data_url(image)
        text = await self.vision_client.analyze_image(
            image=payload,
            variables=dict(dict_of_vars or {}),
            prompt_pack=self._prompt_pack(prompt_variant),
        )
        if not text:
            log_event(self.logger, "calculation_empty", reason="no_model_text", media_type=payload.media_type)
            return []

        records = parse_solution_text(text)
        summary = record_summary(records)
        log_event(
            self.logger,
            "calculation_done",
            records=summary["count"],
            assignments=summary["assignments"],
            fallback=summary["fallback"],
            elapsed_ms=round((time.perf_counter() - started) * 1000.0, 1),
        )
        return records
