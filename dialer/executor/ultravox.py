"""Ultravox calling provider client."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from dialer.config import config
from dialer.exceptions import CallProviderError
from dialer.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class CallResponse:
    call_id: str
    status: str


class UltravoxClient:
    """Places outbound calls. Any transport or HTTP error surfaces as CallProviderError."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url or config.ULTRAVOX_API_URL
        self.api_key = api_key if api_key is not None else config.ULTRAVOX_API_KEY
        self.timeout_s = timeout_s if timeout_s is not None else config.ULTRAVOX_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout_s,
            transport=self.transport,
        )

    def initiate_call(
        self,
        phone_number: str,
        script: str,
        variables: Dict[str, str],
        callback_url: str,
        voice: str,
        language: str,
        first_message: str,
    ) -> CallResponse:
        payload = {
            "phoneNumber": phone_number,
            "script": script,
            "scriptVariables": variables,
            "callbackUrl": callback_url,
            "voiceType": voice,
            "language": language,
            "firstMessage": first_message,
            "telnyxConfig": {"fromNumber": config.CALLER_FROM_NUMBER},
        }
        try:
            with self._client() as client:
                resp = client.post("/api/calls", json=payload)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            body = None
            if isinstance(e, httpx.HTTPStatusError):
                body = e.response.text[:500]
            logger.error("provider_call_failed", error=str(e), response=body)
            raise CallProviderError(f"Ultravox call failed: {e}") from e

        call = CallResponse(call_id=str(data.get("callId", "")), status=str(data.get("status", "")))
        logger.info("provider_call_initiated", call_id=call.call_id, status=call.status)
        return call
