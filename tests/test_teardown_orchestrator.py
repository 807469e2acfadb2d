"""
Teardown Orchestration Tests
Best-effort cleanup of hosting, DNS, workers and screenshots before record deletion
"""

import pytest

from conftest import LandingPageFactory
from fakes import FakeHostingPlatform
from services.errors import NotFoundError, PersistenceError, ValidationError
from services.hosting_registrar import HostingRegistrar
from services.teardown_orchestrator import TeardownOrchestrator


def build_teardown(store, dns, hosting, blobs, config):
    return TeardownOrchestrator(store, HostingRegistrar(hosting, config), dns, blobs, config)


@pytest.mark.asyncio
class TestDomainTeardown:
    """Test domain deletion"""

    async def test_hosting_failure_does_not_block_cleanup(self, store, dns, blobs, config, provider_domain):
        """Test a failing hosting call is reported while DNS cleanup and deletion still happen"""
        hosting = FakeHostingPlatform()
        hosting.fail_on['delete_domain'] = RuntimeError("hosting API unreachable")
        zone_id = provider_domain['zone_id']
        dns.add_record(zone_id, 'CNAME', provider_domain['name'], 'cname.vercel-dns.com')
        dns.add_record(zone_id, 'CNAME', f"www.{provider_domain['name']}", 'cname.vercel-dns.com')
        mail = dns.add_record(zone_id, 'MX', provider_domain['name'], 'mail.example.net')
        teardown = build_teardown(store, dns, hosting, blobs, config)

        result = await teardown.delete(provider_domain['id'], 'domain')

        assert result.hosting_deregistered is False
        assert result.dns_records_deleted is True
        assert result.record_deleted is True
        assert result.domain_deleted is True
        assert provider_domain['id'] not in store.domains
        assert dns.records[zone_id] == [mail]
        assert any('hosting API unreachable' in m for m in result.messages)

    async def test_only_hosting_records_are_removed(self, store, dns, blobs, config, provider_domain):
        """Test records pointing elsewhere survive domain teardown"""
        zone_id = provider_domain['zone_id']
        dns.add_record(zone_id, 'A', provider_domain['name'], '76.76.21.21')
        other = dns.add_record(zone_id, 'A', f"www.{provider_domain['name']}", '203.0.113.9')
        teardown = build_teardown(store, dns, FakeHostingPlatform(), blobs, config)

        result = await teardown.delete_domain(provider_domain['id'])

        assert result.hosting_deregistered is True
        assert dns.records[zone_id] == [other]

    async def test_empty_hosting_project_is_deleted(self, store, dns, blobs, config, provider_domain):
        """Test the per-domain hosting project is removed once its domains are detached"""
        name = provider_domain['name']
        hosting = FakeHostingPlatform()
        hosting.projects[name] = {'id': 'prj_site', 'name': name}
        hosting.domains.update({name: 'prj_site', f"www.{name}": 'prj_site'})
        store.domains[provider_domain['id']]['hosting_project_id'] = 'prj_site'
        teardown = build_teardown(store, dns, hosting, blobs, config)

        result = await teardown.delete_domain(provider_domain['id'])

        assert result.project_deleted is True
        assert hosting.projects == {}
        assert "Deleted empty hosting project prj_site" in result.messages

    async def test_shared_and_default_projects_are_kept(self, store, dns, blobs, config):
        """Test projects with other domains, and the default project, survive teardown"""
        hosting = FakeHostingPlatform()
        hosting.projects['shared'] = {'id': 'prj_shared', 'name': 'shared'}
        hosting.domains['other.com'] = 'prj_shared'
        shared = store.add_domain({'name': 'shared.com', 'hosting_project_id': 'prj_shared'})
        default = store.add_domain({'name': 'default.com', 'hosting_project_id': 'prj_default'})
        teardown = build_teardown(store, dns, hosting, blobs, config)

        first = await teardown.delete_domain(shared['id'])
        second = await teardown.delete_domain(default['id'])

        assert first.project_deleted is False
        assert second.project_deleted is False
        assert 'shared' in hosting.projects
        assert first.record_deleted is True and second.record_deleted is True

    async def test_project_cleanup_failure_is_reported(self, store, dns, blobs, config, provider_domain):
        """Test a failing project lookup is noted without blocking record deletion"""
        hosting = FakeHostingPlatform()
        hosting.fail_on['get_project_domains'] = RuntimeError("hosting API unreachable")
        store.domains[provider_domain['id']]['hosting_project_id'] = 'prj_site'
        teardown = build_teardown(store, dns, hosting, blobs, config)

        result = await teardown.delete_domain(provider_domain['id'])

        assert result.project_deleted is False
        assert result.record_deleted is True
        assert any('project cleanup failed' in m for m in result.messages)

    async def test_refuses_domain_with_landing_pages(self, store, dns, blobs, config, provider_domain):
        """Test a domain with dependents is refused before any side effect"""
        store.add_landing_page(LandingPageFactory(domain_id=provider_domain['id']))
        store.add_landing_page(LandingPageFactory(domain_id=provider_domain['id']))
        hosting = FakeHostingPlatform()
        teardown = build_teardown(store, dns, hosting, blobs, config)

        with pytest.raises(ValidationError, match="Domain has 2 landing page"):
            await teardown.delete(provider_domain['id'], 'domain')

        assert provider_domain['id'] in store.domains
        assert hosting.deleted_domains == []

    async def test_record_delete_failure_raises(self, store, dns, blobs, config, provider_domain):
        """Test a failing final delete surfaces as PersistenceError"""
        store.fail_on['delete_domain'] = RuntimeError("connection reset")
        teardown = build_teardown(store, dns, FakeHostingPlatform(), blobs, config)

        with pytest.raises(PersistenceError):
            await teardown.delete_domain(provider_domain['id'])

    async def test_missing_zone_is_reported(self, store, dns, blobs, config):
        """Test a domain without a zone skips DNS cleanup with a warning message"""
        domain = store.add_domain({'name': 'nozone.com'})
        teardown = build_teardown(store, dns, FakeHostingPlatform(), blobs, config)

        result = await teardown.delete_domain(domain['id'])

        assert result.dns_records_deleted is False
        assert result.record_deleted is True
        assert any('No DNS zone' in m for m in result.messages)

    async def test_delete_zone_option(self, store, dns, blobs, config, provider_domain):
        """Test the zone itself is removed when requested"""
        teardown = build_teardown(store, dns, FakeHostingPlatform(), blobs, config)

        await teardown.delete(provider_domain['id'], 'domain', delete_zone=True)

        assert provider_domain['name'] not in dns.zones

    async def test_unknown_targets(self, store, dns, blobs, config):
        """Test unknown ids and target types are rejected"""
        teardown = build_teardown(store, dns, FakeHostingPlatform(), blobs, config)

        with pytest.raises(NotFoundError):
            await teardown.delete('missing', 'domain')
        with pytest.raises(ValidationError):
            await teardown.delete('anything', 'mailbox')
        with pytest.raises(ValidationError):
            await teardown.delete('', 'domain')


@pytest.mark.asyncio
class TestLandingPageTeardown:
    """Test landing page deletion"""

    async def test_full_cleanup(self, store, dns, blobs, config, provider_domain):
        """Test hosting, DNS, worker and screenshots are cleaned before the record goes"""
        page = store.add_landing_page(LandingPageFactory(domain_id=provider_domain['id']))
        fqdn = f"{page['subdomain']}.{provider_domain['name']}"
        dns.add_record(provider_domain['zone_id'], 'CNAME', fqdn, 'worker.example.net')
        hosting = FakeHostingPlatform()
        teardown = build_teardown(store, dns, hosting, blobs, config)

        result = await teardown.delete(page['id'], 'landing_page')

        assert result.hosting_deregistered is True
        assert result.dns_records_deleted is True
        assert result.worker_deleted is True
        assert result.screenshots_deleted is True
        assert result.record_deleted is True
        assert hosting.deleted_domains == [fqdn]
        assert dns.records[provider_domain['zone_id']] == []
        assert dns.deleted_workers == [page['worker_script_name']]
        blobs.delete_blobs.assert_awaited_once_with(
            [page['desktop_screenshot_url'], page['mobile_screenshot_url']]
        )
        assert page['id'] not in store.landing_pages
        assert provider_domain['id'] in store.domains

    async def test_screenshot_failure_is_flagged(self, store, dns, blobs, config, provider_domain):
        """Test a blob failure is reported and the record is still deleted"""
        page = store.add_landing_page(LandingPageFactory(domain_id=provider_domain['id'], worker_script_name=None))
        blobs.delete_blobs.return_value = False
        teardown = build_teardown(store, dns, FakeHostingPlatform(), blobs, config)

        result = await teardown.delete_landing_page(page['id'])

        assert result.screenshots_deleted is False
        assert result.worker_deleted is True
        assert result.record_deleted is True

    async def test_with_domain_refuses_when_other_pages_exist(self, store, dns, blobs, config, provider_domain):
        """Test the combined teardown refuses when the domain serves other pages"""
        page = store.add_landing_page(LandingPageFactory(domain_id=provider_domain['id']))
        store.add_landing_page(LandingPageFactory(domain_id=provider_domain['id']))
        teardown = build_teardown(store, dns, FakeHostingPlatform(), blobs, config)

        with pytest.raises(ValidationError, match="other landing page"):
            await teardown.delete(page['id'], 'landing_page_with_domain')

        assert page['id'] in store.landing_pages
        blobs.delete_blobs.assert_not_awaited()

    async def test_with_domain_deletes_both(self, store, dns, blobs, config, provider_domain):
        """Test the combined teardown removes the page and then its domain"""
        page = store.add_landing_page(LandingPageFactory(domain_id=provider_domain['id']))
        teardown = build_teardown(store, dns, FakeHostingPlatform(), blobs, config)

        result = await teardown.delete(page['id'], 'landing_page_with_domain')

        assert result.record_deleted is True
        assert result.domain_deleted is True
        assert result.domain_result.record_deleted is True
        assert store.landing_pages == {}
        assert provider_domain['id'] not in store.domains
        assert result.to_dict()['domain_result']['target_type'] == 'domain'
