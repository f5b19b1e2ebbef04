"""
Realtime credential provider.

Fetches a short-lived realtime credential from the survey API so that no
long-lived provider key ever reaches the agent process. The credential is
opaque: it is handed to the transport unmodified and never logged.
"""

from __future__ import annotations

import time

import aiohttp

from logging_setup import get_logger, Component

from .errors import CredentialError

logger = get_logger(Component.VOICE_AGENT)


class RealtimeCredentialProvider:
    """POSTs to the credential endpoint and returns the credential value."""

    def __init__(self, url: str, timeout_seconds: float = 10.0):
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def fetch(self) -> str:
        """
        Mint one credential.

        Raises CredentialError on a non-2xx response, a network error or a
        response without a "value" string. No retries.
        """
        start_ts = time.time()
        try:
            async with aiohttp.ClientSession() as s:
                async with s.post(
                    self.url,
                    json={},
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as resp:
                    if not 200 <= resp.status < 300:
                        raise CredentialError(
                            f"Credential endpoint returned HTTP {resp.status}"
                        )
                    data = await resp.json()
        except (aiohttp.ClientError, ValueError) as e:
            logger.warning(
                "Realtime credential request failed",
                endpoint=self.url,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int((time.time() - start_ts) * 1000),
            )
            raise CredentialError(f"Credential endpoint unreachable: {type(e).__name__}") from e

        value = data.get("value") if isinstance(data, dict) else None
        if not isinstance(value, str) or not value:
            raise CredentialError("Credential endpoint returned no credential")

        logger.info(
            "Realtime credential issued",
            endpoint=self.url,
            expires_at=data.get("expires_at"),
            latency_ms=int((time.time() - start_ts) * 1000),
        )
        return value
