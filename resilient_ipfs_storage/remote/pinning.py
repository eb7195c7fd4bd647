"""
Best-effort pinning to a secondary service (Pinata pinByHash).

Pin failures are logged and reported as ``False``; they never raise.
"""

from __future__ import annotations

import logging
import time

import aiohttp

from ..config import PinningConfig

logger = logging.getLogger(__name__)

PIN_NAME_PREFIX = "resilient-ipfs"


class PinningService:
    """Pins CIDs on a remote pinning service using opaque API credentials."""

    def __init__(self, config: PinningConfig, timeout: float = 10.0):
        self.config = config
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return self.config.usable

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "pinata_api_key": self.config.api_key or "",
            "pinata_secret_api_key": self.config.secret_key or "",
        }

    async def pin(self, cid: str) -> bool:
        """Pin a CID. Returns True on success, False on any failure."""
        if not self.enabled:
            if self.config.enabled:
                logger.warning("Pinning enabled but credentials are not configured")
            return False

        body = {
            "hashToPin": cid,
            "pinataMetadata": {"name": f"{PIN_NAME_PREFIX}-{int(time.time() * 1000)}"},
        }
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as session:
                async with session.post(self.config.url, json=body, headers=self._headers()) as response:
                    if response.status >= 400:
                        logger.warning(f"Pinning failed for {cid}: HTTP {response.status}")
                        return False
        except Exception as e:
            logger.warning(f"Pinning failed for {cid}: {e}")
            return False

        logger.debug(f"Pinned {cid} on secondary service")
        return True
