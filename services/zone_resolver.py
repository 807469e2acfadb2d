"""Zone id resolution and zone registration for provider-managed domains"""

import logging
from typing import Dict, Optional

from services.errors import ErrorKind, ExternalServiceError, PersistenceError

logger = logging.getLogger(__name__)


class ZoneResolver:
    def __init__(self, dns, store, logger: Optional[logging.Logger] = None):
        self.dns = dns
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

    async def resolve_zone_id(self, domain: Dict) -> Optional[str]:
        """
        Return the zone id for a domain record

        A stored zone id is trusted as-is. Otherwise the provider is queried by name and a
        hit is written back to the domain so later calls skip the lookup.
        """
        stored = domain.get('zone_id')
        if stored:
            return stored

        name = domain['name']
        try:
            zone_id = await self.dns.find_zone_id(name)
        except ExternalServiceError as e:
            self.logger.warning(f"⚠️ Zone lookup failed for {name}: {e}")
            return None
        if not zone_id:
            self.logger.warning(f"⚠️ No DNS zone found for {name}")
            return None

        domain['zone_id'] = zone_id
        try:
            await self.store.update_domain(domain['id'], zone_id=zone_id)
            self.logger.info(f"✅ Zone {zone_id} resolved and saved for {name}")
        except PersistenceError as e:
            self.logger.warning(f"⚠️ Resolved zone {zone_id} for {name} but could not save it: {e}")
        return zone_id

    async def register_zone(self, domain_name: str) -> Dict:
        """Create the zone, or adopt the existing one when the provider reports it already exists"""
        try:
            zone = await self.dns.create_zone(domain_name)
        except ExternalServiceError as e:
            if e.kind != ErrorKind.ALREADY_EXISTS:
                raise
            self.logger.info(f"Zone for {domain_name} already exists, looking it up")
            zone = await self.dns.get_zone_by_name(domain_name)
            if not zone:
                raise ExternalServiceError(
                    f"Zone for {domain_name} reported as existing but not found", e.service,
                    ErrorKind.NOT_FOUND
                ) from e

        return {
            'zone_id': zone.get('id'),
            'nameservers': zone.get('name_servers') or [],
            'status': zone.get('status') or 'pending',
        }
