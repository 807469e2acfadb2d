"""
Domain provisioning
Creates domain records (with a DNS zone for provider-managed domains) and refreshes verification state
"""

import logging
import re
from typing import Any, Dict, Optional

import idna

from deployment_config import DeploymentConfig, get_deployment_config
from services.dns_diagnostics import check_domain_dns
from services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DOMAIN_PATTERN = re.compile(
    r'^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z0-9][a-z0-9-]{0,61}[a-z0-9]$'
)
DNS_MANAGEMENT_MODES = ('provider', 'external')


def normalize_domain_name(name: Optional[str]) -> str:
    return (name or '').strip().lower().rstrip('.')


def validate_domain_name(name: Optional[str]) -> str:
    """Normalize and validate a hostname, raising ValidationError when it is malformed"""
    normalized = normalize_domain_name(name)
    if not normalized:
        raise ValidationError("Domain name is required")

    # Unicode names are stored in their punycode form
    try:
        normalized = idna.encode(normalized, uts46=True).decode('ascii')
    except (idna.IDNAError, UnicodeError) as e:
        raise ValidationError(f"Invalid internationalized domain name: {e}") from e

    if len(normalized) > 253 or not DOMAIN_PATTERN.match(normalized):
        raise ValidationError(f"Invalid domain name format: {normalized}")
    return normalized


class DomainProvisioner:
    def __init__(self, store, dns, zone_resolver, config: Optional[DeploymentConfig] = None,
                 orchestrator=None, logger: Optional[logging.Logger] = None):
        self.store = store
        self.dns = dns
        self.zone_resolver = zone_resolver
        self.config = config or get_deployment_config()
        self.orchestrator = orchestrator
        self.logger = logger or logging.getLogger(__name__)

    async def create_domain(self, name: str, dns_management: str = 'provider',
                            auto_deploy: bool = False) -> Dict[str, Any]:
        """
        Create a domain record

        Provider-managed domains get a DNS zone first; an existing zone is adopted.
        Externally managed domains record the CNAME target the operator must configure.
        """
        name = validate_domain_name(name)
        if dns_management not in DNS_MANAGEMENT_MODES:
            raise ValidationError(f"dns_management must be one of: {', '.join(DNS_MANAGEMENT_MODES)}")
        if await self.store.get_domain_by_name(name):
            raise ValidationError("Domain already exists in database")

        if dns_management == 'provider':
            zone = await self.zone_resolver.register_zone(name)
            domain = await self.store.create_domain(
                name,
                dns_management='provider',
                zone_id=zone['zone_id'],
                zone_status=zone['status'],
                nameservers=zone['nameservers'],
                verification_status=zone['status'],
            )
            self.logger.info(f"✅ Domain {name} created with zone {zone['zone_id']}")
        else:
            domain = await self.store.create_domain(
                name,
                dns_management='external',
                target_cname=self.config.hosting_cname_target,
                verification_status='pending',
            )
            self.logger.info(f"✅ Externally managed domain {name} created, CNAME target "
                             f"{self.config.hosting_cname_target}")

        result: Dict[str, Any] = {'domain': domain, 'nameservers': domain.get('nameservers') or []}
        if auto_deploy and self.orchestrator is not None:
            result['deployment'] = await self.orchestrator.start(domain['id'])
        return result

    async def refresh_verification(self, domain_id: str) -> Dict[str, Any]:
        """Re-check whether a domain is live on our DNS (zone active) or pointed at hosting"""
        domain = await self.store.get_domain(domain_id)
        if not domain:
            raise NotFoundError(f"Domain {domain_id} not found")
        name = domain['name']

        if domain.get('dns_management') == 'external':
            check = await check_domain_dns(name, self.config.hosting_targets)
            verified = check.points_to_hosting
            status = 'verified' if verified else 'pending'
            await self.store.update_domain(domain_id, verification_status=status)
            details = check.to_dict()
        else:
            zone_id = await self.zone_resolver.resolve_zone_id(domain)
            if not zone_id:
                raise NotFoundError(f"No DNS zone found for {name}")
            zone = await self.dns.get_zone_info(zone_id)
            status = zone.get('status') or 'pending'
            verified = status == 'active'
            await self.store.update_domain(domain_id, zone_status=status, verification_status=status,
                                           nameservers=zone.get('name_servers') or domain.get('nameservers') or [])
            details = {'zone_id': zone_id, 'nameservers': zone.get('name_servers') or []}

        self.logger.info(f"🔍 Verification for {name}: {status}")
        return {'domain_id': domain_id, 'verification_status': status, 'verified': verified, 'details': details}
