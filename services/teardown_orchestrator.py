"""
Teardown orchestrator
Unwinds hosting, DNS, edge worker and blob resources before deleting the database record.
Every step except the final record delete is best-effort: failures are logged and reported
in the result flags, and the remaining steps still run.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from deployment_config import DeploymentConfig, get_deployment_config
from services.dns_reconciler import WEB_RECORD_TYPES, is_hosting_target, normalize_hostname
from services.errors import NotFoundError, PersistenceError, ValidationError

logger = logging.getLogger(__name__)

TARGET_DOMAIN = 'domain'
TARGET_LANDING_PAGE = 'landing_page'
TARGET_LANDING_PAGE_WITH_DOMAIN = 'landing_page_with_domain'


@dataclass
class TeardownResult:
    target_type: str
    target_id: str
    hosting_deregistered: bool = False
    dns_records_deleted: bool = False
    worker_deleted: bool = False
    screenshots_deleted: bool = False
    project_deleted: bool = False
    record_deleted: bool = False
    domain_deleted: bool = False
    domain_result: Optional['TeardownResult'] = None
    messages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TeardownOrchestrator:
    def __init__(self, store, registrar, dns, blobs, config: Optional[DeploymentConfig] = None,
                 logger: Optional[logging.Logger] = None):
        self.store = store
        self.registrar = registrar
        self.dns = dns
        self.blobs = blobs
        self.config = config or get_deployment_config()
        self.logger = logger or logging.getLogger(__name__)

    async def delete(self, target_id: str, target_type: str = TARGET_DOMAIN, **options) -> TeardownResult:
        if not target_id or not str(target_id).strip():
            raise ValidationError("target id is required")
        if target_type == TARGET_DOMAIN:
            return await self.delete_domain(target_id, **options)
        if target_type == TARGET_LANDING_PAGE:
            return await self.delete_landing_page(target_id)
        if target_type == TARGET_LANDING_PAGE_WITH_DOMAIN:
            return await self.delete_landing_page_with_domain(target_id)
        raise ValidationError(f"Unknown teardown target type: {target_type}")

    async def delete_domain(self, domain_id: str, delete_zone: bool = False) -> TeardownResult:
        domain = await self.store.get_domain(domain_id)
        if not domain:
            raise NotFoundError(f"Domain {domain_id} not found")
        dependents = await self.store.count_landing_pages(domain_id)
        if dependents:
            raise ValidationError(f"Domain has {dependents} landing page(s). Delete them first.")

        name = domain['name']
        result = TeardownResult(TARGET_DOMAIN, domain_id)
        self.logger.info(f"🗑️ Tearing down domain {name}")

        result.hosting_deregistered = await self._deregister(
            result, name, domain.get('hosting_project_id'), include_www=True
        )
        if result.hosting_deregistered:
            result.project_deleted = await self._remove_empty_project(result, domain.get('hosting_project_id'))

        zone_id = domain.get('zone_id')
        if zone_id:
            result.dns_records_deleted = await self._delete_records(
                result, zone_id, [name, f"www.{name}"], hosting_only=True
            )
            if delete_zone:
                if await self.dns.delete_zone(zone_id):
                    result.messages.append(f"Deleted DNS zone {zone_id}")
                else:
                    result.messages.append(f"Failed to delete DNS zone {zone_id}")
        else:
            self._note(result, f"No DNS zone recorded for {name}; DNS records left untouched", logging.WARNING)

        # Domains carry no worker or blob artifacts of their own
        result.worker_deleted = True
        result.screenshots_deleted = True

        try:
            await self.store.delete_domain(domain_id)
        except Exception as e:
            self.logger.error(f"❌ Failed to delete domain record {name}: {e}")
            raise PersistenceError(f"Failed to delete domain record {name}: {e}") from e
        result.record_deleted = True
        result.domain_deleted = True
        self._note(result, f"Deleted domain record {name}")
        return result

    async def delete_landing_page(self, landing_page_id: str) -> TeardownResult:
        page = await self.store.get_landing_page(landing_page_id)
        if not page:
            raise NotFoundError(f"Landing page {landing_page_id} not found")

        result = TeardownResult(TARGET_LANDING_PAGE, landing_page_id)
        domain = await self.store.get_domain(page['domain_id'])
        zone_id = domain.get('zone_id') if domain else None

        if domain:
            fqdn = f"{page['subdomain']}.{domain['name']}"
            self.logger.info(f"🗑️ Tearing down landing page {fqdn}")
            result.hosting_deregistered = await self._deregister(result, fqdn, None, include_www=False)
            if zone_id:
                result.dns_records_deleted = await self._delete_records(result, zone_id, [fqdn], hosting_only=False)
            else:
                self._note(result, f"No DNS zone recorded for {domain['name']}; DNS records for {fqdn} left untouched",
                           logging.WARNING)
        else:
            self._note(result, f"Domain {page['domain_id']} not found; skipping hosting and DNS cleanup",
                       logging.WARNING)

        script_name = page.get('worker_script_name')
        if script_name:
            try:
                worker = await self.dns.delete_worker_and_routes(script_name, zone_id)
                result.worker_deleted = bool(worker.get('worker_deleted'))
                self._note(result, f"Worker {script_name}: deleted={result.worker_deleted}, "
                                   f"routes removed={worker.get('routes_deleted', 0)}")
                for error in worker.get('errors') or []:
                    self._note(result, error, logging.WARNING)
            except Exception as e:
                self._note(result, f"Worker cleanup failed for {script_name}: {e}", logging.WARNING)
        else:
            result.worker_deleted = True

        screenshots = [page.get('desktop_screenshot_url'), page.get('mobile_screenshot_url')]
        try:
            result.screenshots_deleted = await self.blobs.delete_blobs(screenshots)
            if not result.screenshots_deleted:
                self._note(result, "Screenshot deletion failed", logging.WARNING)
        except Exception as e:
            self._note(result, f"Screenshot deletion failed: {e}", logging.WARNING)

        try:
            await self.store.delete_landing_page(landing_page_id)
        except Exception as e:
            self.logger.error(f"❌ Failed to delete landing page record {landing_page_id}: {e}")
            raise PersistenceError(f"Failed to delete landing page record {landing_page_id}: {e}") from e
        result.record_deleted = True
        self._note(result, f"Deleted landing page record {landing_page_id}")
        return result

    async def delete_landing_page_with_domain(self, landing_page_id: str) -> TeardownResult:
        """Delete a landing page and then its domain, refusing when the domain serves other pages"""
        page = await self.store.get_landing_page(landing_page_id)
        if not page:
            raise NotFoundError(f"Landing page {landing_page_id} not found")
        domain_id = page['domain_id']
        if not await self.store.get_domain(domain_id):
            raise NotFoundError(f"Domain {domain_id} not found")
        others = await self.store.count_landing_pages(domain_id, exclude_id=landing_page_id)
        if others:
            raise ValidationError(f"Domain has {others} other landing page(s). Delete them first.")

        result = await self.delete_landing_page(landing_page_id)
        result.target_type = TARGET_LANDING_PAGE_WITH_DOMAIN
        result.domain_result = await self.delete_domain(domain_id)
        result.domain_deleted = result.domain_result.record_deleted
        return result

    def _note(self, result: TeardownResult, message: str, level: int = logging.INFO) -> None:
        result.messages.append(message)
        self.logger.log(level, message)

    async def _deregister(self, result: TeardownResult, hostname: str, project_id: Optional[str],
                          include_www: bool) -> bool:
        try:
            outcome = await self.registrar.deregister(hostname, project_id, include_www=include_www)
        except Exception as e:
            self._note(result, f"Hosting deregistration failed for {hostname}: {e}", logging.WARNING)
            return False
        if outcome.get('success'):
            self._note(result, f"Removed {', '.join(outcome.get('removed') or [hostname])} from hosting")
            return True
        self._note(result, f"Hosting deregistration failed for {hostname}: {'; '.join(outcome.get('errors') or [])}",
                   logging.WARNING)
        return False

    async def _remove_empty_project(self, result: TeardownResult, project_id: Optional[str]) -> bool:
        try:
            deleted = await self.registrar.remove_project_if_empty(project_id)
        except Exception as e:
            self._note(result, f"Hosting project cleanup failed for {project_id}: {e}", logging.WARNING)
            return False
        if deleted:
            self._note(result, f"Deleted empty hosting project {project_id}")
        return deleted

    async def _delete_records(self, result: TeardownResult, zone_id: str, hosts: Iterable[str],
                              hosting_only: bool) -> bool:
        wanted = {normalize_hostname(host) for host in hosts}
        try:
            records = await self.dns.list_dns_records(zone_id)
        except Exception as e:
            self._note(result, f"Could not list DNS records in zone {zone_id}: {e}", logging.WARNING)
            return False

        targets = [
            record for record in records
            if normalize_hostname(record.get('name')) in wanted
            and (record.get('type') or '').upper() in WEB_RECORD_TYPES
            and (not hosting_only or is_hosting_target(record.get('content'), self.config))
        ]
        all_deleted = True
        for record in targets:
            try:
                deleted = await self.dns.delete_dns_record(zone_id, record['id'])
            except Exception as e:
                self.logger.warning(f"⚠️ DNS record {record['id']} deletion raised: {e}")
                deleted = False
            if deleted:
                self._note(result, f"Deleted {record.get('type')} record {record.get('name')}")
            else:
                all_deleted = False
                self._note(result, f"Failed to delete {record.get('type')} record {record.get('name')}", logging.WARNING)
        if not targets:
            self._note(result, f"No matching DNS records for {', '.join(sorted(wanted))}")
        return all_deleted
