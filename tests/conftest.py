"""
Shared test fixtures and configuration for the LaunchBay test suite
Provides in-memory collaborators, configuration and record factories
"""

import os
import logging

import factory
import pytest
from factory.declarations import LazyFunction, Sequence
from factory.faker import Faker
from unittest.mock import AsyncMock

from deployment_config import DeploymentConfig, reset_deployment_config
from fakes import FakeDNSProvider, FakeHostingPlatform, InMemoryDomainStore

# Configure test logging
logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)

# Test environment configuration
test_env_vars = {
    'TEST_MODE': '1',  # CRITICAL: Prevent live credential usage during tests
    'CLOUDFLARE_API_TOKEN': 'test_cloudflare_token',
    'VERCEL_TOKEN': 'test_vercel_token',
    'VERCEL_PROJECT_ID': 'prj_default',
    'DEPLOY_MONITOR_INTERVAL': '0.01',
    'DEPLOY_MONITOR_MAX_DURATION': '1',
}
for key, value in test_env_vars.items():
    os.environ[key] = str(value)


@pytest.fixture(autouse=True)
def fresh_config():
    """Every test sees configuration re-read from the test environment"""
    reset_deployment_config()
    yield
    reset_deployment_config()


# Test data factories
class DomainRecordFactory(factory.Factory):  # type: ignore[misc]
    """Factory for creating test domain records"""
    class Meta:  # type: ignore[misc]
        model = dict

    id = Sequence(lambda n: f"domain-{n}")
    name = Sequence(lambda n: f"site{n}.example.com")
    dns_management = 'provider'
    zone_id = LazyFunction(lambda: None)
    deployment_status = 'not_deployed'
    is_active = True


class LandingPageFactory(factory.Factory):  # type: ignore[misc]
    """Factory for creating test landing page records"""
    class Meta:  # type: ignore[misc]
        model = dict

    id = Sequence(lambda n: f"page-{n}")
    subdomain = Sequence(lambda n: f"offer{n}")
    worker_script_name = Sequence(lambda n: f"landing-worker-{n}")
    desktop_screenshot_url = Faker('url')
    mobile_screenshot_url = Faker('url')


@pytest.fixture
def config():
    """Deployment configuration with fast monitor timings"""
    return DeploymentConfig(
        cloudflare_api_token='test_cloudflare_token',
        cloudflare_account_id='acc_test',
        vercel_token='test_vercel_token',
        vercel_project_id='prj_default',
        blob_read_write_token='test_blob_token',
        monitor_interval_seconds=0.001,
        monitor_max_duration_seconds=0.5,
        bulk_max_items=50,
        job_poll_interval_seconds=0.05,
    )


@pytest.fixture
def store():
    """In-memory domain, deployment, landing page and job store"""
    return InMemoryDomainStore()


@pytest.fixture
def dns():
    """Fake DNS provider"""
    return FakeDNSProvider()


@pytest.fixture
def hosting():
    """Fake hosting platform whose deployments become READY on first poll"""
    return FakeHostingPlatform(states=['READY'])


@pytest.fixture
def blobs():
    """Mock blob storage client"""
    mock_blobs = AsyncMock()
    mock_blobs.delete_blobs = AsyncMock(return_value=True)
    return mock_blobs


@pytest.fixture
def provider_domain(store, dns):
    """Provider-managed domain with an active zone"""
    record = DomainRecordFactory()
    zone = dns.add_zone(record['name'])
    record['zone_id'] = zone['id']
    return store.add_domain(record)
