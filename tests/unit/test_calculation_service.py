import unittest

from mathsketch.service.calculation import CalculationService
from mathsketch.service.records import DEFAULT_METHOD, FALLBACK_METHOD
from mathsketch.utils.config_loader import ConfigError
from tests.mocks.mock_llm_responses import SIMPLE_PYTHON_QUOTED, STEP_BY_STEP, UNRECOVERABLE

_PROMPTS = {
    "standard": {"system": "std-system {{variables}}", "user": "std-user"},
    "step_by_step": {"system": "steps-system {{variables}}", "user": "steps-user"},
}


class _FakeVisionClient:
    def __init__(self, reply: str = "") -> None:
        self.reply = reply
        self.calls = []

    async def analyze_image(self, image, variables, prompt_pack):  # noqa: ANN001, ANN201 - test double
        self.calls.append({"image": image, "variables": variables, "prompt_pack": prompt_pack})
        return self.reply

    def describe(self):  # noqa: ANN201 - test double
        return {"provider": "fake", "available": True}


class CalculationServiceTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_returns_normalized_records(self) -> None:
        fake = _FakeVisionClient(SIMPLE_PYTHON_QUOTED)
        service = CalculationService(fake, _PROMPTS)

        records = await service.calculate("data:image/png;base64,aGVsbG8=", {"x": 4})

        self.assertEqual(records[0]["expr"], "2 + 3 * 4")
        self.assertEqual(records[0]["result"], 14)
        self.assertEqual(records[0]["method"], DEFAULT_METHOD)
        self.assertEqual(fake.calls[0]["variables"], {"x": 4})

    async def test_strips_data_url_prefix(self) -> None:
        fake = _FakeVisionClient("[]")
        service = CalculationService(fake, _PROMPTS)

        await service.calculate("data:image/jpeg;base64,aGVsbG8=", {})

        image = fake.calls[0]["image"]
        self.assertEqual(image.data, "aGVsbG8=")
        self.assertEqual(image.media_type, "image/jpeg")

    async def test_empty_model_text_yields_empty_list(self) -> None:
        service = CalculationService(_FakeVisionClient(""), _PROMPTS)
        self.assertEqual(await service.calculate("data:image/png;base64,aGVsbG8=", {}), [])

    async def test_unparseable_reply_yields_fallback_record(self) -> None:
        service = CalculationService(_FakeVisionClient(UNRECOVERABLE), _PROMPTS)
        records = await service.calculate("aGVsbG8=", None)
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["method"], FALLBACK_METHOD)

    async def test_prompt_variant_selection(self) -> None:
        fake = _FakeVisionClient(STEP_BY_STEP)
        service = CalculationService(fake, _PROMPTS, default_variant="step_by_step")

        await service.calculate("aGVsbG8=", {})
        await service.calculate("aGVsbG8=", {}, prompt_variant="standard")
        await service.calculate("aGVsbG8=", {}, prompt_variant="unknown")

        used = [call["prompt_pack"]["user"] for call in fake.calls]
        self.assertEqual(used, ["steps-user", "std-user", "steps-user"])

    async def test_calls_are_independent(self) -> None:
        fake = _FakeVisionClient('[{"expr": "x", "result": 4, "assign": true}]')
        service = CalculationService(fake, _PROMPTS)

        await service.calculate("aGVsbG8=", {"a": 1})
        await service.calculate("aGVsbG8=", {})

        self.assertEqual(fake.calls[1]["variables"], {})

    def test_unknown_default_variant_is_rejected(self) -> None:
        with self.assertRaises(ConfigError):
            CalculationService(_FakeVisionClient(), _PROMPTS, default_variant="missing")

    def test_describe_lists_variants(self) -> None:
        service = CalculationService(_FakeVisionClient(), _PROMPTS)
        meta = service.describe()
        self.assertEqual(meta["prompt_variants"], ["standard", "step_by_step"])
        self.assertEqual(meta["llm"]["provider"], "fake")


if __name__ == "__main__":
    unittest.main()
