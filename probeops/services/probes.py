"""Probe requests forwarded to the backend, which runs them."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from probeops.domain.models import ProbeRecord
from probeops.logging import logger
from probeops.services.api import ApiClient
from probeops.services.exceptions import RateLimitExceeded
from probeops.services.rate_limit import RateLimitCache
from probeops.services.shapes import extract_list

DNS_RECORD_TYPES = frozenset({"A", "AAAA", "CNAME", "MX", "NS", "TXT", "SOA", "PTR"})


class ProbeService:
    def __init__(self, api: ApiClient, rate_limits: RateLimitCache | None = None) -> None:
        self._api = api
        self._rate_limits = rate_limits

    async def ping(self, host: str) -> Any:
        return await self._run("ping", {"host": _required(host, "host")})

    async def traceroute(self, host: str) -> Any:
        return await self._run("traceroute", {"host": _required(host, "host")})

    async def dns(self, domain: str, record_type: str = "A") -> Any:
        record_type = record_type.strip().upper()
        if record_type not in DNS_RECORD_TYPES:
            raise ValueError(f"Unsupported DNS record type: {record_type}")
        return await self._run("dns", {"domain": _required(domain, "domain"), "recordType": record_type})

    async def whois(self, domain: str) -> Any:
        return await self._run("whois", {"domain": _required(domain, "domain")})

    async def history(self, limit: int | None = None) -> list[ProbeRecord]:
        params = {"limit": limit} if limit else None
        payload = await self._api.get("/probes/history", params=params)
        records: list[ProbeRecord] = []
        for item in extract_list("probe history", payload, "probes"):
            try:
                records.append(ProbeRecord.model_validate(item))
            except ValidationError:
                logger.warning("probe_history_entry_skipped")
        return records

    async def _run(self, probe_type: str, body: dict[str, str]) -> Any:
        self._check_quota(probe_type)
        result = await self._api.post(f"/probes/{probe_type}", json=body)
        logger.info("probe_requested", probe_type=probe_type)
        if self._rate_limits is not None:
            self._rate_limits.request_refresh()
        return result

    def _check_quota(self, probe_type: str) -> None:
        snapshot = self._rate_limits.snapshot if self._rate_limits is not None else None
        if snapshot is None or snapshot.is_fallback:
            return
        if snapshot.daily.remaining <= 0:
            raise RateLimitExceeded(f"Daily limit reached: {snapshot.daily.used}/{snapshot.daily.limit}.")
        if snapshot.monthly.remaining <= 0:
            raise RateLimitExceeded(
                f"Monthly limit reached: {snapshot.monthly.used}/{snapshot.monthly.limit}."
            )
        logger.debug("probe_quota_ok", probe_type=probe_type, daily_remaining=snapshot.daily.remaining)


def _required(value: str, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError(f"{field} must not be empty.")
    return value


__all__ = ["DNS_RECORD_TYPES", "ProbeService"]
