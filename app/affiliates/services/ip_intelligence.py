"""
IP reputation lookups with a database-backed cache.

The fraud scorer asks one question per referred payment: is the client IP
a Tor exit, proxy, VPN or datacenter address, and how risky is it?

Lookup order:
    1. A fresh IpIntelCacheEntry for the salted IP hash (expired rows are
       deleted on the way)
    2. Private, loopback and unparseable addresses: local heuristic, never
       sent to the provider
    3. The provider (IPQualityScore-compatible JSON API) under the circuit
       breaker, or the local heuristic when no API key is configured, the
       circuit is open or the provider fails

Every answer from steps 2 and 3 is upserted; a failed write is logged and
the lookup still returns its answer. Only the IP hash is persisted, never
the address.

Usage:
    from affiliates.services.ip_intelligence import default_ip_intelligence

    reputation = default_ip_intelligence().lookup("8.8.8.8")
    if reputation.is_tor:
        ...
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

import httpx
from asgiref.sync import async_to_sync, sync_to_async
from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from affiliates.choices import IpIntelProvider
from affiliates.exceptions import IpIntelligenceError
from affiliates.models import IpIntelCacheEntry
from core.circuit_breaker import CircuitBreaker, CircuitOpenError
from core.helpers import hash_ip
from core.services import BaseService

if TYPE_CHECKING:
    from typing import Any

# Hosting ranges flagged by the heuristic (GCP, Azure, Cloudflare,
# DigitalOcean, Linode, AWS)
DATACENTER_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "34.64.0.0/10",
        "35.192.0.0/12",
        "13.64.0.0/11",
        "104.16.0.0/13",
        "138.68.0.0/16",
        "159.65.0.0/16",
        "45.33.0.0/17",
        "3.0.0.0/9",
    )
)

HEURISTIC_DATACENTER_RISK = 50


def ip_intel_circuit_breaker() -> CircuitBreaker:
    """Shared breaker guarding the IP reputation provider."""
    return CircuitBreaker.from_settings("ip-intel", prefix="IP_INTEL_CIRCUIT")


def default_ip_intelligence() -> IpIntelligenceCache:
    """IP intelligence cache configured from settings."""
    return IpIntelligenceCache()


@dataclass(frozen=True)
class IpReputation:
    """
    Reputation of one IP address.

    Attributes:
        ip_hash: Salted SHA-256 of the address
        risk_score: 0-100, higher is riskier
        provider: IpIntelProvider value that produced the answer
        cached: True if served from IpIntelCacheEntry
    """

    ip_hash: str
    is_proxy: bool = False
    is_vpn: bool = False
    is_tor: bool = False
    is_datacenter: bool = False
    is_bot: bool = False
    risk_score: int = 0
    fraud_score: int = 0
    country_code: str = ""
    isp: str = ""
    provider: str = IpIntelProvider.HEURISTIC
    cached: bool = False

    @classmethod
    def from_entry(cls, entry: IpIntelCacheEntry) -> IpReputation:
        return cls(
            ip_hash=entry.ip_hash,
            is_proxy=entry.is_proxy,
            is_vpn=entry.is_vpn,
            is_tor=entry.is_tor,
            is_datacenter=entry.is_datacenter,
            is_bot=entry.is_bot,
            risk_score=entry.risk_score,
            fraud_score=entry.fraud_score,
            country_code=entry.country_code,
            isp=entry.isp,
            provider=entry.provider,
            cached=True,
        )

    def as_evidence(self) -> dict[str, Any]:
        """Facts recorded on a fraud alert."""
        return {
            "ip_hash": self.ip_hash,
            "is_proxy": self.is_proxy,
            "is_vpn": self.is_vpn,
            "is_tor": self.is_tor,
            "is_datacenter": self.is_datacenter,
            "risk_score": self.risk_score,
            "fraud_score": self.fraud_score,
            "provider": self.provider,
        }


class IpIntelligenceCache(BaseService):
    """
    Cached IP reputation lookups.

    Every collaborator can be injected; unset values come from settings.

    Args:
        api_key: Provider API key; empty means heuristic only
        api_url: URL template with ``{key}`` and ``{ip}`` placeholders
        timeout: Provider request timeout in seconds
        ttl_hours: Lifetime of cached entries
        breaker: Circuit breaker guarding the provider
        transport: httpx transport, for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        ttl_hours: int | None = None,
        breaker: CircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = settings.IP_INTEL_API_KEY if api_key is None else api_key
        self.api_url = api_url or settings.IP_INTEL_API_URL
        self.timeout = timeout or settings.IP_INTEL_TIMEOUT_SECONDS
        self.ttl = timedelta(hours=ttl_hours or settings.IP_INTEL_CACHE_TTL_HOURS)
        self.breaker = breaker or ip_intel_circuit_breaker()
        self.transport = transport

    def lookup(self, ip: str) -> IpReputation:
        """Synchronous entry point for callers outside an event loop."""
        return async_to_sync(self.alookup)(ip)

    async def alookup(self, ip: str) -> IpReputation:
        """
        Reputation of an IP address.

        Never raises for provider or storage failures; the heuristic answers
        instead.

        Args:
            ip: IPv4 or IPv6 address as received

        Returns:
            IpReputation
        """
        logger = self.get_logger()
        ip_hash = hash_ip(ip)

        entry = await IpIntelCacheEntry.objects.filter(ip_hash=ip_hash).afirst()
        if entry is not None:
            if not entry.is_expired:
                return IpReputation.from_entry(entry)
            await IpIntelCacheEntry.objects.filter(
                pk=entry.pk, expires_at__lte=timezone.now()
            ).adelete()

        address = _parse_ip(ip)
        if address is None or not address.is_global or not self.api_key:
            # Non-global addresses are never sent to the provider
            reputation = heuristic_reputation(ip_hash, address)
        else:
            try:
                with self.breaker.call():
                    data = await self._fetch(ip)
                reputation = provider_reputation(ip_hash, data)
            except (CircuitOpenError, IpIntelligenceError) as e:
                logger.warning(
                    f"IP reputation provider unavailable, using heuristic: {e.error_code}",
                    extra={"ip_hash": ip_hash, "error_code": e.error_code},
                )
                reputation = heuristic_reputation(ip_hash, address)

        await sync_to_async(self._store)(reputation)
        return reputation

    @classmethod
    def purge_expired(cls) -> int:
        """Delete expired cache rows. Returns the number deleted."""
        deleted, _ = IpIntelCacheEntry.objects.filter(
            expires_at__lte=timezone.now()
        ).delete()
        return deleted

    # =========================================================================
    # Internals
    # =========================================================================

    async def _fetch(self, ip: str) -> dict[str, Any]:
        url = self.api_url.format(key=self.api_key, ip=ip)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.get(url, params={"strictness": 1})
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise IpIntelligenceError(
                "IP reputation provider timed out",
                error_code="IP_INTEL_TIMEOUT",
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise IpIntelligenceError(
                f"IP reputation provider request failed: {e}",
                details={"error": str(e)},
            ) from e

        if not isinstance(data, dict) or data.get("success") is False:
            message = data.get("message") if isinstance(data, dict) else None
            raise IpIntelligenceError(
                f"IP reputation provider rejected the lookup: {message}",
                error_code="IP_INTEL_REJECTED",
            )
        return data

    def _store(self, reputation: IpReputation) -> None:
        try:
            with transaction.atomic():
                IpIntelCacheEntry.objects.update_or_create(
                    ip_hash=reputation.ip_hash,
                    defaults={
                        "is_proxy": reputation.is_proxy,
                        "is_vpn": reputation.is_vpn,
                        "is_tor": reputation.is_tor,
                        "is_datacenter": reputation.is_datacenter,
                        "is_bot": reputation.is_bot,
                        "risk_score": reputation.risk_score,
                        "fraud_score": reputation.fraud_score,
                        "country_code": reputation.country_code,
                        "isp": reputation.isp,
                        "provider": reputation.provider,
                        "expires_at": timezone.now() + self.ttl,
                    },
                )
        except DatabaseError as e:
            self.get_logger().warning(
                f"Failed to cache IP reputation: {e}",
                extra={"ip_hash": reputation.ip_hash},
            )


# =============================================================================
# Result builders
# =============================================================================


def _parse_ip(ip: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(ip.strip())
    except ValueError:
        return None


def heuristic_reputation(
    ip_hash: str,
    address: ipaddress.IPv4Address | ipaddress.IPv6Address | None,
) -> IpReputation:
    """
    Local answer used without a provider.

    Known hosting ranges are flagged as datacenter with a moderate risk
    score; everything else is clean.
    """
    if address is not None and any(address in net for net in DATACENTER_NETWORKS):
        return IpReputation(
            ip_hash=ip_hash,
            is_datacenter=True,
            risk_score=HEURISTIC_DATACENTER_RISK,
            fraud_score=HEURISTIC_DATACENTER_RISK,
        )
    return IpReputation(ip_hash=ip_hash)


def provider_reputation(ip_hash: str, data: dict[str, Any]) -> IpReputation:
    """Map an IPQualityScore-style response to an IpReputation."""
    fraud_score = _clamp(data.get("fraud_score", 0))
    connection_type = str(data.get("connection_type") or "").lower()
    return IpReputation(
        ip_hash=ip_hash,
        is_proxy=bool(data.get("proxy")),
        is_vpn=bool(data.get("vpn") or data.get("active_vpn")),
        is_tor=bool(data.get("tor") or data.get("active_tor")),
        is_datacenter=connection_type == "data center",
        is_bot=bool(data.get("bot_status") or data.get("is_crawler")),
        risk_score=fraud_score,
        fraud_score=fraud_score,
        country_code=str(data.get("country_code") or "")[:2],
        isp=str(data.get("ISP") or data.get("isp") or "")[:255],
        provider=IpIntelProvider.IPQUALITYSCORE,
    )


def _clamp(value: Any) -> int:
    try:
        return max(0, min(100, int(value)))
    except (TypeError, ValueError):
        return 0
