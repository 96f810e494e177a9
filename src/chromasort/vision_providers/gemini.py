from __future__ import annotations
import requests
from .base import VisionProvider


def _to_gemini_schema(schema: dict) -> dict:
    """Gemini spells JSON schema types in upper case (OBJECT, ARRAY, STRING)."""
    converted = {}
    for key, value in schema.items():
        if key == "type" and isinstance(value, str):
            converted[key] = value.upper()
        elif key == "properties" and isinstance(value, dict):
            converted[key] = {name: _to_gemini_schema(sub) for name, sub in value.items()}
        elif key == "items" and isinstance(value, dict):
            converted[key] = _to_gemini_schema(value)
        elif key in ("description", "required"):
            converted[key] = value
    return converted


class GeminiProvider(VisionProvider):
    """
    Google Gemini generateContent provider (REST, API-key auth).
    """

    name = "gemini"

    def __init__(self, api_key: str, endpoint: str):
        self.api_key = api_key
        self.endpoint = endpoint.rstrip("/")

    def _headers(self) -> dict:
        return {"Content-Type": "application/json", "x-goog-api-key": self.api_key}

    def build_request(self, payload: dict) -> dict:
        """Translate the neutral payload into a generateContent body."""
        parts = []
        image = payload.get("image")
        if image:
            parts.append({
                "inlineData": {"mimeType": image["mime_type"], "data": image["data"]}
            })
        parts.append({"text": payload.get("prompt", "")})

        body = {"contents": [{"parts": parts}]}
        schema = payload.get("schema")
        if schema:
            body["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": _to_gemini_schema(schema),
            }
        return body

    def send_request(self, payload: dict, timeout: int) -> str:
        """
        Sends a request to models/{model}:generateContent.
        """
        url = f"{self.endpoint}/models/{payload.get('model')}:generateContent"
        response = requests.post(url, headers=self._headers(), json=self.build_request(payload), timeout=timeout)
        response.raise_for_status()
        result = response.json()
        if not isinstance(result, dict):
            raise ValueError(f"expected a JSON object, got {type(result).__name__}")

        # Gemini format: {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}
        # A blocked candidate has no content at all and reads as an empty answer.
        candidates = result.get("candidates") or []
        if not candidates:
            return ""
        candidate = candidates[0]
        content = candidate.get("content") if isinstance(candidate, dict) else None
        if content is None:
            return ""
        if not isinstance(content, dict):
            raise ValueError("candidate content is not an object")
        parts = content.get("parts") or []
        return "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))

    def check_connection(self) -> bool:
        """Listing models needs a valid key, so this checks both key and endpoint."""
        return self.ping(f"{self.endpoint}/models", headers=self._headers())
