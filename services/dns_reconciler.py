"""
DNS reconciliation for hosted domains
Converges apex and www records toward the hosting platform targets without duplicating records
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from deployment_config import DeploymentConfig, get_deployment_config
from services.errors import ErrorKind

logger = logging.getLogger(__name__)

WEB_RECORD_TYPES = ('A', 'AAAA', 'CNAME')
HOSTING_DNS_SUFFIX = 'vercel-dns.com'

STATUS_CREATED = 'created'
STATUS_SKIPPED = 'skipped'
STATUS_WARNING = 'warning'
STATUS_FAILED = 'failed'

# Rejections that no other record type can get around
NON_RECOVERABLE_KINDS = (ErrorKind.AUTH, ErrorKind.RATE_LIMITED)


@dataclass
class DnsOutcome:
    status: str
    record: str
    message: str

    @property
    def level(self) -> str:
        return 'info' if self.status in (STATUS_CREATED, STATUS_SKIPPED) else 'warning'

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class RecordStrategy:
    record_type: str
    content: Callable[[DeploymentConfig], str]
    applies: Callable[[Optional[ErrorKind]], bool]


APEX_STRATEGIES = (
    RecordStrategy('CNAME', lambda config: config.hosting_cname_target, lambda rejected: True),
    RecordStrategy('A', lambda config: config.hosting_apex_ip,
                   lambda rejected: rejected not in NON_RECOVERABLE_KINDS),
)

WWW_STRATEGIES = (
    RecordStrategy('CNAME', lambda config: config.hosting_cname_target, lambda rejected: True),
)


def normalize_hostname(value: Optional[str]) -> str:
    return (value or '').strip().lower().rstrip('.')


def is_hosting_target(content: Optional[str], config: DeploymentConfig) -> bool:
    """True when a record's content already points at the hosting platform"""
    value = normalize_hostname(content)
    if not value:
        return False
    if value in {normalize_hostname(target) for target in config.hosting_targets}:
        return True
    return value == HOSTING_DNS_SUFFIX or value.endswith('.' + HOSTING_DNS_SUFFIX)


def required_records(domain_name: str, config: DeploymentConfig) -> List[Dict[str, str]]:
    """Records an operator must set for an externally managed domain"""
    return [
        {'type': 'A', 'name': domain_name, 'value': config.hosting_apex_ip},
        {'type': 'CNAME', 'name': f"www.{domain_name}", 'value': config.hosting_cname_target},
    ]


class DNSReconciler:
    """Idempotently ensures apex and www records point at the hosting platform"""

    def __init__(self, dns, config: Optional[DeploymentConfig] = None,
                 logger: Optional[logging.Logger] = None):
        self.dns = dns
        self.config = config or get_deployment_config()
        self.logger = logger or logging.getLogger(__name__)

    async def reconcile(self, domain: Dict) -> List[DnsOutcome]:
        """Reconcile a domain record according to who manages its DNS"""
        name = domain['name']
        if domain.get('dns_management') == 'external':
            wanted = ', '.join(f"{r['type']} {r['name']} -> {r['value']}" for r in required_records(name, self.config))
            return [DnsOutcome(
                STATUS_SKIPPED, name,
                f"DNS for {name} is managed externally; required records: {wanted}"
            )]
        zone_id = domain.get('zone_id')
        if not zone_id:
            return [DnsOutcome(STATUS_WARNING, name, f"No DNS zone found for {name}; DNS records not reconciled")]
        return await self.ensure(name, zone_id)

    async def ensure(self, domain_name: str, zone_id: str) -> List[DnsOutcome]:
        """Ensure apex and www records exist in the zone; never raises"""
        apex = normalize_hostname(domain_name)
        try:
            records = await self.dns.list_dns_records(zone_id)
        except Exception as e:
            self.logger.warning(f"⚠️ Could not list DNS records for {apex} in zone {zone_id}: {e}")
            return [DnsOutcome(STATUS_FAILED, apex, f"Failed to list DNS records for {apex}: {e}")]

        outcomes: List[DnsOutcome] = []
        for host, strategies in ((apex, APEX_STRATEGIES), (f"www.{apex}", WWW_STRATEGIES)):
            existing = [
                record for record in records
                if normalize_hostname(record.get('name')) == host
                and (record.get('type') or '').upper() in WEB_RECORD_TYPES
            ]
            matching = [record for record in existing if is_hosting_target(record.get('content'), self.config)]

            if matching:
                outcomes.append(self._existing_outcome(host, matching[0]))
                continue

            for record in existing:
                if record.get('proxied'):
                    outcomes.append(self._proxied_warning(host, record))
            outcomes.extend(await self._apply(zone_id, host, strategies))

        for outcome in outcomes:
            self.logger.log(logging.INFO if outcome.level == 'info' else logging.WARNING, f"DNS {outcome}")
        return outcomes

    def _existing_outcome(self, host: str, record: Dict) -> DnsOutcome:
        if record.get('proxied'):
            return self._proxied_warning(host, record)
        return DnsOutcome(
            STATUS_SKIPPED, host,
            f"{record.get('type')} record for {host} already points to {record.get('content')}"
        )

    @staticmethod
    def _proxied_warning(host: str, record: Dict) -> DnsOutcome:
        return DnsOutcome(
            STATUS_WARNING, host,
            f"{record.get('type')} record for {host} -> {record.get('content')} is proxied; left as-is, "
            f"but proxying may break certificate issuance under strict TLS (Full strict) mode"
        )

    async def _apply(self, zone_id: str, host: str, strategies: Sequence[RecordStrategy]) -> List[DnsOutcome]:
        outcomes: List[DnsOutcome] = []
        rejected: Optional[ErrorKind] = None

        for index, strategy in enumerate(strategies):
            if index > 0 and not strategy.applies(rejected):
                break
            content = strategy.content(self.config)
            result = await self._create(zone_id, strategy.record_type, host, content)
            if result.get('success'):
                outcomes.append(DnsOutcome(
                    STATUS_CREATED, host, f"Created {strategy.record_type} record {host} -> {content}"
                ))
                return outcomes

            rejected = result.get('error_kind') or ErrorKind.UNKNOWN
            reason = '; '.join(error.get('message', str(error)) for error in result.get('errors') or []) or 'unknown error'
            following = strategies[index + 1] if index + 1 < len(strategies) else None
            if following is not None and following.applies(rejected):
                outcomes.append(DnsOutcome(
                    STATUS_WARNING, host,
                    f"{strategy.record_type} record {host} -> {content} rejected ({reason}); "
                    f"falling back to {following.record_type} record"
                ))
            else:
                outcomes.append(DnsOutcome(
                    STATUS_FAILED, host,
                    f"Failed to create {strategy.record_type} record {host} -> {content}: {reason}"
                ))
        return outcomes

    async def _create(self, zone_id: str, record_type: str, host: str, content: str) -> Dict:
        try:
            return await self.dns.create_dns_record(
                zone_id, record_type, host, content, ttl=self.config.dns_record_ttl, proxied=False
            )
        except Exception as e:
            return {'success': False, 'errors': [{'message': str(e)}],
                    'error_kind': getattr(e, 'kind', ErrorKind.UNKNOWN)}
