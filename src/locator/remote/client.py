from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import aiohttp
import structlog

from locator.errors import RemoteLookupError
from locator.utils.time import utc_now_s
from locator.utils.types import LookupResponse

log = structlog.get_logger("remote")


@dataclass(slots=True)
class HttpLookupConfig:
    base_url: str
    bearer_token: Optional[str] = None
    key_param: str = "screen_name"
    value_field: str = "location"
    reset_header: str = "x-rate-limit-reset"    # epoch seconds
    timeout_s: float = 10.0
    user_agent: str = "profile-locator/0.1"


class HttpLookupClient:
    """
    Looks a key up over HTTP:  GET {base_url}?{key_param}={key}

      200 -> value from JSON body[value_field] (missing/blank -> None)
      404 -> None (nothing known about this key)
      429 -> throttled, reset_at from the reset header (or now if absent)
      else / network error -> RemoteLookupError

    No retries here: pacing and backoff belong to the dispatch queue.
    """
    def __init__(self, cfg: HttpLookupConfig, clock: Callable[[], float] = utc_now_s):
        self.cfg = cfg
        self._clock = clock
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            headers = {"User-Agent": self.cfg.user_agent, "Accept": "application/json"}
            if self.cfg.bearer_token:
                headers["Authorization"] = f"Bearer {self.cfg.bearer_token}"
            self._session = aiohttp.ClientSession(timeout=timeout, headers=headers)

    async def stop(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def request(self, key: str) -> LookupResponse:
        if self._session is None:
            await self.start()
        assert self._session is not None
        params = {self.cfg.key_param: key}
        try:
            async with self._session.get(self.cfg.base_url, params=params) as resp:
                if resp.status == 200:
                    return LookupResponse(value=await self._extract(resp, key))
                if resp.status == 404:
                    return LookupResponse(value=None)
                if resp.status == 429:
                    reset_at = self._reset_at(resp)
                    log.warning("remote_throttled", key=key, reset_at=reset_at)
                    return LookupResponse(value=None, throttled=True, reset_at=reset_at)
                detail = await _maybe_text(resp)
                log.warning("remote_bad_status", key=key, status=resp.status, body=detail[:200])
                raise RemoteLookupError(f"lookup {key!r} failed with HTTP {resp.status}", status=resp.status)
        except aiohttp.ClientError as e:
            log.warning("remote_network_error", key=key, err=str(e))
            raise RemoteLookupError(f"lookup {key!r} failed: {e}") from e

    async def _extract(self, resp: aiohttp.ClientResponse, key: str) -> Optional[str]:
        try:
            data = await resp.json(content_type=None)
        except ValueError as e:
            raise RemoteLookupError(f"lookup {key!r} returned malformed JSON: {e}", status=resp.status) from e
        if not isinstance(data, dict):
            return None
        value = data.get(self.cfg.value_field)
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    def _reset_at(self, resp: aiohttp.ClientResponse) -> float:
        raw = resp.headers.get(self.cfg.reset_header)
        try:
            return float(raw) if raw else self._clock()
        except ValueError:
            return self._clock()


async def _maybe_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except Exception:
        return "<no body>"
