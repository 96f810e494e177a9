from __future__ import annotations
from typing import Optional
import requests
from .base import VisionProvider


class OpenAICompatProvider(VisionProvider):
    """
    Any chat-completions server that takes image_url parts
    (OpenAI, llama.cpp, vLLM, LocalAI).
    """

    name = "openai"

    def __init__(self, endpoint: str, api_key: Optional[str] = None):
        self.endpoint = endpoint
        self.api_key = api_key

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def build_request(self, payload: dict) -> dict:
        content = [{"type": "text", "text": payload.get("prompt", "")}]
        image = payload.get("image")
        if image:
            data_url = f"data:{image['mime_type']};base64,{image['data']}"
            content.append({"type": "image_url", "image_url": {"url": data_url}})

        body = {
            "model": payload.get("model"),
            "messages": [{"role": "user", "content": content}],
            "stream": False,
        }
        schema = payload.get("schema")
        if schema:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "image_analysis", "schema": schema},
            }
        return body

    def send_request(self, payload: dict, timeout: int) -> str:
        response = requests.post(self.endpoint, headers=self._headers(), json=self.build_request(payload), timeout=timeout)
        response.raise_for_status()
        # {"choices": [{"message": {"content": "..."}}]}
        result = response.json()
        if not isinstance(result, dict):
            raise ValueError(f"expected a JSON object, got {type(result).__name__}")
        choices = result.get("choices") or []
        if not choices:
            return ""
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise ValueError("first choice carries no message object")
        return message.get("content") or ""

    def check_connection(self) -> bool:
        """/v1/models when the server has it, otherwise any non-5xx answer from the root."""
        server = self.endpoint.split("/v1/", 1)[0]
        return (
            self.ping(f"{server}/v1/models", headers=self._headers())
            or self.ping(server, accept_below=500)
        )
