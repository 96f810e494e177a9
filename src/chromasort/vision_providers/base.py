from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Optional

import requests

PING_TIMEOUT = 3


class VisionProvider(ABC):
    """
    A backend that answers one image + prompt with raw model text.

    Payloads are provider-neutral dicts:
        {"model": str, "prompt": str,
         "image": {"data": <base64 str>, "mime_type": str},
         "schema": <JSON schema dict>}
    Each provider translates this into its own wire format.
    """

    name = "base"

    @abstractmethod
    def send_request(self, payload: dict, timeout: int) -> str:
        """
        POST one classification request.

        Returns:
            The model's text ("" when it answered nothing)

        Raises:
            requests.RequestException: transport or HTTP status failure
        """

    @abstractmethod
    def check_connection(self) -> bool:
        """True when the service answers a cheap read-only request."""

    @staticmethod
    def ping(url: str, headers: Optional[dict] = None, accept_below: int = 300) -> bool:
        """GET url and compare the status code; network errors count as unreachable."""
        try:
            return requests.get(url, headers=headers, timeout=PING_TIMEOUT).status_code < accept_below
        except requests.RequestException:
            return False
