from __future__ import annotations
import requests
from .base import VisionProvider


class OllamaProvider(VisionProvider):
    """
    Local Ollama server, /api/chat with images attached to the message.
    """

    name = "ollama"

    def __init__(self, endpoint: str):
        self.endpoint = endpoint

    def build_request(self, payload: dict) -> dict:
        message = {"role": "user", "content": payload.get("prompt", "")}
        image = payload.get("image")
        if image:
            message["images"] = [image["data"]]

        return {
            "model": payload.get("model"),
            "messages": [message],
            "stream": False,
            # Ollama accepts a full JSON schema for structured output
            "format": payload.get("schema") or "json",
        }

    def send_request(self, payload: dict, timeout: int) -> str:
        response = requests.post(self.endpoint, json=self.build_request(payload), timeout=timeout)
        response.raise_for_status()
        # {"message": {"role": "assistant", "content": "..."}}
        result = response.json()
        message = result.get("message") if isinstance(result, dict) else None
        if not isinstance(message, dict):
            raise ValueError("response carries no message object")
        return message.get("content") or ""

    def check_connection(self) -> bool:
        """Lists local models; the chat path is swapped for /api/tags."""
        server = self.endpoint.rsplit("/api/", 1)[0]
        return self.ping(f"{server}/api/tags")
