"""
Live DNS resolution checks for externally managed domains
Confirms whether a hostname already resolves to the hosting platform
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import dns.exception
import dns.resolver

from services.dns_reconciler import HOSTING_DNS_SUFFIX, normalize_hostname

logger = logging.getLogger(__name__)


@dataclass
class DnsCheckResult:
    name: str
    cname_records: List[str] = field(default_factory=list)
    a_records: List[str] = field(default_factory=list)
    points_to_hosting: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'cname_records': self.cname_records,
            'a_records': self.a_records,
            'points_to_hosting': self.points_to_hosting,
            'error': self.error,
        }


def _lookup(resolver: dns.resolver.Resolver, name: str, record_type: str) -> List[str]:
    try:
        answers = resolver.resolve(name, record_type)
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
        return []
    return [normalize_hostname(rdata.to_text()) for rdata in answers]


def _resolve(name: str, targets: List[str], timeout: float) -> DnsCheckResult:
    resolver = dns.resolver.Resolver()
    resolver.timeout = timeout
    resolver.lifetime = timeout

    result = DnsCheckResult(name=name)
    try:
        result.cname_records = _lookup(resolver, name, 'CNAME')
        if not result.cname_records:
            result.a_records = _lookup(resolver, name, 'A')
    except dns.resolver.Timeout:
        logger.warning(f"⏰ DNS resolution for {name} timed out after {timeout}s")
        result.error = f"DNS resolution timed out after {timeout}s"
        return result
    except dns.exception.DNSException as e:
        logger.warning(f"❌ DNS resolution for {name} failed: {e}")
        result.error = str(e)
        return result

    wanted = {normalize_hostname(target) for target in targets}
    for value in result.cname_records + result.a_records:
        if value in wanted or HOSTING_DNS_SUFFIX in value:
            result.points_to_hosting = True
            break
    return result


async def check_domain_dns(name: str, targets: Iterable[str], timeout: float = 5.0) -> DnsCheckResult:
    """Resolve CNAME (then A) for a hostname and compare against hosting targets"""
    result = await asyncio.to_thread(_resolve, normalize_hostname(name), list(targets), timeout)
    logger.debug(f"🔍 DNS check {name}: cname={result.cname_records} a={result.a_records} "
                 f"hosting={result.points_to_hosting}")
    return result
