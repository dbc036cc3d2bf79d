import unittest

from fastapi.testclient import TestClient

from mathsketch.api.server import create_app
from mathsketch.service.records import fallback_record, normalize_record
from mathsketch.utils.config_loader import AppConfig, ConfigError, ServerSettings

_ORIGIN = "http://localhost:5173"
_IMAGE = "data:image/png;base64,aGVsbG8="


class _FakeService:
    def __init__(self, records=None, error=None) -> None:  # noqa: ANN001 - test double
        self.records = records if records is not None else []
        self.error = error
        self.calls = []

    async def calculate(self, image, dict_of_vars=None, prompt_variant=None):  # noqa: ANN001, ANN201 - test double
        self.calls.append({"image": image, "dict_of_vars": dict_of_vars, "prompt_variant": prompt_variant})
        if self.error is not None:
            raise self.error
        return self.records


def _config(**server_overrides) -> AppConfig:  # noqa: ANN003 - test helper
    settings = {"cors_origin": _ORIGIN}
    settings.update(server_overrides)
    return AppConfig(server=ServerSettings(**settings))


class APIServerTestCase(unittest.TestCase):
    def test_health(self) -> None:
        client = TestClient(create_app(config=_config(), service=_FakeService()))
        response = client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_calculate_success_envelope(self) -> None:
        records = [
            normalize_record({"expr": "x", "result": 4, "assign": True}),
            normalize_record({"expr": "x + 1", "result": 5}),
        ]
        service = _FakeService(records=records)
        client = TestClient(create_app(config=_config(), service=service))

        response = client.post(
            "/calculate",
            json={"image": _IMAGE, "dict_of_vars": {"y": 5}, "prompt_variant": "standard"},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["message"], "Image processed")
        self.assertEqual(body["status"], "success")
        self.assertEqual([item["expr"] for item in body["data"]], ["x", "x + 1"])
        self.assertTrue(body["data"][0]["assign"])
        self.assertEqual(body["data"][0]["steps"], [])
        self.assertEqual(service.calls[0]["dict_of_vars"], {"y": 5})
        self.assertEqual(service.calls[0]["prompt_variant"], "standard")

    def test_calculate_without_variables_defaults_to_empty_map(self) -> None:
        service = _FakeService()
        client = TestClient(create_app(config=_config(), service=service))

        response = client.post("/calculate", json={"image": _IMAGE})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"], [])
        self.assertEqual(service.calls[0]["dict_of_vars"], {})

    def test_fallback_record_is_returned_with_success(self) -> None:
        client = TestClient(create_app(config=_config(), service=_FakeService(records=[fallback_record()])))
        body = client.post("/calculate", json={"image": _IMAGE}).json()
        self.assertEqual(body["status"], "success")
        self.assertEqual(body["data"][0]["method"], "error_recovery")

    def test_service_failure_returns_error_envelope(self) -> None:
        client = TestClient(create_app(config=_config(), service=_FakeService(error=RuntimeError("boom"))))

        response = client.post("/calculate", json={"image": _IMAGE})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(
            response.json(),
            {"message": "Error processing image", "status": "error", "error": "boom"},
        )

    def test_missing_image_is_rejected(self) -> None:
        service = _FakeService()
        client = TestClient(create_app(config=_config(), service=service))

        response = client.post("/calculate", json={"dict_of_vars": {}})

        self.assertEqual(response.status_code, 422)
        body = response.json()
        self.assertEqual(body["status"], "error")
        self.assertIn("image", body["error"])
        self.assertEqual(service.calls, [])

    def test_oversized_body_is_rejected(self) -> None:
        service = _FakeService()
        client = TestClient(create_app(config=_config(max_body_bytes=64), service=service))

        response = client.post("/calculate", json={"image": "data:image/png;base64," + "A" * 200})

        self.assertEqual(response.status_code, 413)
        self.assertEqual(response.json()["status"], "error")
        self.assertEqual(service.calls, [])

    def test_cors_allows_configured_origin(self) -> None:
        client = TestClient(create_app(config=_config(), service=_FakeService()))

        response = client.post("/calculate", json={"image": _IMAGE}, headers={"Origin": _ORIGIN})

        self.assertEqual(response.headers.get("access-control-allow-origin"), _ORIGIN)
        self.assertEqual(response.headers.get("access-control-allow-credentials"), "true")

    def test_cors_ignores_other_origins(self) -> None:
        client = TestClient(create_app(config=_config(), service=_FakeService()))

        response = client.post("/calculate", json={"image": _IMAGE}, headers={"Origin": "http://evil.example"})

        self.assertIsNone(response.headers.get("access-control-allow-origin"))

    def test_cors_preflight(self) -> None:
        client = TestClient(create_app(config=_config(), service=_FakeService()))

        response = client.options(
            "/calculate",
            headers={"Origin": _ORIGIN, "Access-Control-Request-Method": "POST"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers.get("access-control-allow-origin"), _ORIGIN)

    def test_missing_cors_origin_fails_startup(self) -> None:
        with self.assertRaises(ConfigError) as ctx:
            create_app(config=AppConfig(), service=_FakeService())
        self.assertIn("CLIENT_URL", str(ctx.exception))

    def test_unusable_vision_client_fails_startup(self) -> None:
        config = _config()
        config.llm = {"enabled": False}
        with self.assertRaises(ConfigError) as ctx:
            create_app(config=config)
        self.assertIn("disabled_by_config", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
