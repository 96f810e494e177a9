import base64
import json
from pathlib import Path

import pytest

from chromasort.vision import ClassificationClient
from chromasort.vision_providers.base import VisionProvider


class FakeProvider(VisionProvider):
    """Answers keyed by the image bytes; an Exception answer is raised."""

    name = "fake"

    def __init__(self, answers=None, default=None):
        self.answers = answers or {}
        self.default = default
        self.requests = []

    def send_request(self, payload: dict, timeout: int) -> str:
        self.requests.append(payload)
        data = base64.b64decode(payload["image"]["data"])
        answer = self.answers.get(data, self.default)
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, dict):
            return json.dumps(answer)
        return answer

    def check_connection(self) -> bool:
        return True


@pytest.fixture
def make_image(tmp_path):
    def _make(relative: str, content: bytes = b"img") -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    return _make


@pytest.fixture
def make_client():
    def _make(answers=None, default=None) -> ClassificationClient:
        return ClassificationClient(FakeProvider(answers, default), model="fake-model", timeout=5)

    return _make


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for var in ("API_KEY", "GEMINI_API_KEY", "CHROMASORT_API_PROVIDER",
                "CHROMASORT_API_ENDPOINT", "CHROMASORT_MODEL", "CHROMASORT_MAX_WORKERS"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("chromasort.config.CONFIG_FILE_PATH", tmp_path / "home.chromasort.conf")
