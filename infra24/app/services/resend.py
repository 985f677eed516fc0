from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from infra24.app.core import config as _config
from infra24.app.core.errors import EmailDeliveryError


@dataclass(frozen=True)
class ResendConfig:
    api_key: str
    base_url: str = "https://api.resend.com"
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls) -> "ResendConfig":
        settings = _config.settings
        return cls(
            api_key=settings.RESEND_API_KEY,
            base_url=settings.RESEND_API_URL,
            timeout_seconds=settings.RESEND_TIMEOUT_SECONDS,
        )


class ResendClient:
    """Minimal client for the Resend transactional email API."""

    def __init__(self, config: Optional[ResendConfig] = None,
                 transport: Optional[httpx.BaseTransport] = None) -> None:
        self._config = config or ResendConfig.from_settings()
        self._client = httpx.Client(
            transport=transport,
            base_url=self._config.base_url.rstrip("/"),
            timeout=self._config.timeout_seconds,
            headers={"Authorization": f"Bearer {self._config.api_key}"},
        )

    def close(self) -> None:
        self._client.close()

    def send(
        self,
        *,
        from_email: str,
        to: List[str],
        subject: str,
        html: str,
        text: Optional[str] = None,
        tags: Optional[List[Dict[str, str]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> str:
        """Send one message and return the Resend message id."""
        if not self._config.api_key:
            raise EmailDeliveryError("RESEND_API_KEY is not configured")
        payload: Dict[str, Any] = {
            "from": from_email,
            "to": to,
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text
        if tags:
            payload["tags"] = tags
        if headers:
            payload["headers"] = headers

        try:
            resp = self._client.post("/emails", json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise EmailDeliveryError(
                f"Resend rejected the message ({e.response.status_code}): {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Resend request failed: {e}") from e

        data = resp.json()
        message_id = data.get("id") if isinstance(data, dict) else None
        if not message_id:
            raise EmailDeliveryError("Resend response did not include a message id")
        return message_id
