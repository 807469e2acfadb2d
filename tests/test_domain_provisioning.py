"""
Domain Provisioning Tests
Name validation, zone registration and verification refresh
"""

import pytest
from unittest.mock import AsyncMock, patch

from services.dns_diagnostics import DnsCheckResult
from services.domain_provisioning import DomainProvisioner, validate_domain_name
from services.errors import NotFoundError, ValidationError
from services.zone_resolver import ZoneResolver


def build_provisioner(store, dns, config, orchestrator=None):
    return DomainProvisioner(store, dns, ZoneResolver(dns, store), config, orchestrator=orchestrator)


class TestDomainNameValidation:
    """Test hostname validation"""

    @pytest.mark.parametrize("raw,expected", [
        ('Example.COM', 'example.com'),
        ('  shop.example.co.uk. ', 'shop.example.co.uk'),
        ('my-site.io', 'my-site.io'),
        ('bücher.de', 'xn--bcher-kva.de'),
    ])
    def test_valid_names(self, raw, expected):
        """Test valid names are normalized"""
        assert validate_domain_name(raw) == expected

    @pytest.mark.parametrize("raw", ['', None, 'localhost', '-bad.com', 'bad-.com', 'spaces in.com', 'a..com'])
    def test_invalid_names(self, raw):
        """Test malformed names are rejected"""
        with pytest.raises(ValidationError):
            validate_domain_name(raw)


@pytest.mark.asyncio
class TestDomainProvisioner:
    """Test domain creation"""

    async def test_provider_domain_gets_zone(self, store, dns, config):
        """Test a provider-managed domain is created with its new zone"""
        result = await build_provisioner(store, dns, config).create_domain('Fresh.com')

        domain = result['domain']
        assert domain['name'] == 'fresh.com'
        assert domain['zone_id'] == 'zone-fresh.com'
        assert domain['dns_management'] == 'provider'
        assert result['nameservers'] == ['ada.ns.cloudflare.com', 'bob.ns.cloudflare.com']
        assert 'deployment' not in result

    async def test_existing_zone_is_adopted(self, store, dns, config):
        """Test a zone that already exists at the provider is reused"""
        dns.add_zone('taken.com', zone_id='zone-taken')

        result = await build_provisioner(store, dns, config).create_domain('taken.com')

        assert result['domain']['zone_id'] == 'zone-taken'
        assert result['domain']['zone_status'] == 'active'

    async def test_external_domain_records_target(self, store, dns, config):
        """Test externally managed domains store the CNAME target and skip zone creation"""
        result = await build_provisioner(store, dns, config).create_domain('ext.com', dns_management='external')

        assert result['domain']['target_cname'] == 'cname.vercel-dns.com'
        assert result['domain']['verification_status'] == 'pending'
        assert 'ext.com' not in dns.zones

    async def test_duplicates_and_bad_modes_rejected(self, store, dns, config):
        """Test duplicate names and unknown DNS modes are rejected"""
        provisioner = build_provisioner(store, dns, config)
        await provisioner.create_domain('dup.com')

        with pytest.raises(ValidationError, match="already exists"):
            await provisioner.create_domain('DUP.com')
        with pytest.raises(ValidationError):
            await provisioner.create_domain('new.com', dns_management='manual')

    async def test_auto_deploy_starts_deployment(self, store, dns, config):
        """Test auto_deploy hands the new domain to the orchestrator"""
        orchestrator = AsyncMock()
        orchestrator.start = AsyncMock(return_value={'started': True, 'deployment_id': 'dep-1'})

        result = await build_provisioner(store, dns, config, orchestrator).create_domain('auto.com', auto_deploy=True)

        orchestrator.start.assert_awaited_once_with(result['domain']['id'])
        assert result['deployment']['started'] is True


@pytest.mark.asyncio
class TestVerificationRefresh:
    """Test verification state refresh"""

    async def test_external_domain_verified_by_lookup(self, store, dns, config):
        """Test an external domain pointing at hosting becomes verified"""
        domain = store.add_domain({'name': 'ext.com', 'dns_management': 'external'})
        check = DnsCheckResult(name='ext.com', a_records=['76.76.21.21'], points_to_hosting=True)

        with patch('services.domain_provisioning.check_domain_dns', AsyncMock(return_value=check)) as mock_check:
            result = await build_provisioner(store, dns, config).refresh_verification(domain['id'])

        mock_check.assert_awaited_once()
        assert result['verified'] is True
        assert store.domains[domain['id']]['verification_status'] == 'verified'

    async def test_external_domain_pending(self, store, dns, config):
        """Test an external domain not yet pointed at hosting stays pending"""
        domain = store.add_domain({'name': 'ext.com', 'dns_management': 'external'})
        check = DnsCheckResult(name='ext.com', a_records=['192.0.2.1'])

        with patch('services.domain_provisioning.check_domain_dns', AsyncMock(return_value=check)):
            result = await build_provisioner(store, dns, config).refresh_verification(domain['id'])

        assert result['verification_status'] == 'pending'

    async def test_provider_domain_uses_zone_status(self, store, dns, config, provider_domain):
        """Test provider-managed domains mirror the zone status"""
        result = await build_provisioner(store, dns, config).refresh_verification(provider_domain['id'])

        assert result['verified'] is True
        assert store.domains[provider_domain['id']]['zone_status'] == 'active'

    async def test_unknown_domain(self, store, dns, config):
        """Test refreshing an unknown domain raises NotFoundError"""
        with pytest.raises(NotFoundError):
            await build_provisioner(store, dns, config).refresh_verification('missing')
