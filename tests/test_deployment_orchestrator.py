"""
Deployment Orchestration Tests
End-to-end pipeline runs, concurrent start rejection and failure reporting
"""

import asyncio

import pytest

from fakes import FakeHostingPlatform
from services.deployment_jobs import DeploymentJobQueue
from services.deployment_monitor import DeploymentMonitor
from services.deployment_orchestrator import IN_PROGRESS_REASON, DeploymentOrchestrator
from services.dns_reconciler import DNSReconciler
from services.errors import ErrorKind, ExternalServiceError, NotFoundError, PersistenceError, ValidationError
from services.hosting_registrar import HostingRegistrar
from services.zone_resolver import ZoneResolver


def build_orchestrator(store, dns, hosting, config):
    return DeploymentOrchestrator(
        store,
        HostingRegistrar(hosting, config),
        DNSReconciler(dns, config),
        DeploymentMonitor(hosting, store, config),
        zone_resolver=ZoneResolver(dns, store),
        job_queue=DeploymentJobQueue(store, config=config),
    )


@pytest.mark.asyncio
class TestDeploymentOrchestrator:
    """Test the deployment pipeline against in-memory collaborators"""

    async def test_fresh_domain_deploys(self, store, dns, config, provider_domain):
        """Test a fresh provider-managed domain ends deployed with DNS records and logs"""
        hosting = FakeHostingPlatform(states=['BUILDING', 'READY'])
        orchestrator = build_orchestrator(store, dns, hosting, config)

        outcome = await orchestrator.start(provider_domain['id'])
        assert outcome['started'] is True
        assert store.domains[provider_domain['id']]['deployment_status'] == 'deploying'

        await orchestrator.job_queue.drain()

        domain = store.domains[provider_domain['id']]
        assert domain['deployment_status'] == 'deployed'
        assert domain['deployment_url'] == f"https://{domain['name']}"
        assert domain['hosting_project_id']
        assert domain['verification_status'] == 'verified'

        deployment = store.deployments[outcome['deployment_id']]
        assert deployment['status'] == 'deployed'
        assert deployment['deployment_handle'] == hosting.deployments[0]['id']
        assert len(deployment['logs']) >= 3
        assert deployment['logs'][0]['message'] == f"Starting deployment for {domain['name']}"

        hosts = sorted(r['name'] for r in dns.records[domain['zone_id']])
        assert hosts == [domain['name'], f"www.{domain['name']}"]
        assert set(hosting.domains) == {domain['name'], f"www.{domain['name']}"}

    async def test_second_start_is_rejected(self, store, dns, config, provider_domain):
        """Test a start while deploying returns started=False and creates no row"""
        hosting = FakeHostingPlatform(states=['BUILDING', 'READY'])
        orchestrator = build_orchestrator(store, dns, hosting, config)

        first = await orchestrator.start(provider_domain['id'])
        second = await orchestrator.start(provider_domain['id'])

        assert first['started'] is True
        assert second == {'started': False, 'reason': IN_PROGRESS_REASON, 'domain_id': provider_domain['id']}
        assert len(store.deployments_for(provider_domain['id'])) == 1
        await orchestrator.job_queue.drain()

    async def test_concurrent_starts_create_one_attempt(self, store, dns, config, provider_domain):
        """Test racing starts produce exactly one deployment"""
        orchestrator = build_orchestrator(store, dns, FakeHostingPlatform(), config)

        results = await asyncio.gather(*(orchestrator.start(provider_domain['id']) for _ in range(5)))
        await orchestrator.job_queue.drain()

        assert sum(1 for r in results if r['started']) == 1
        assert len(store.deployments_for(provider_domain['id'])) == 1

    async def test_redeploy_after_completion(self, store, dns, config, provider_domain):
        """Test a finished domain can be deployed again and history is kept"""
        orchestrator = build_orchestrator(store, dns, FakeHostingPlatform(), config)

        await orchestrator.start(provider_domain['id'])
        await orchestrator.job_queue.drain()
        again = await orchestrator.start(provider_domain['id'])
        await orchestrator.job_queue.drain()

        assert again['started'] is True
        history = await orchestrator.list_deployments(provider_domain['id'])
        assert len(history) == 2
        assert history[0]['id'] == again['deployment_id']
        assert all(item['status'] == 'deployed' for item in history)

    async def test_redeploy_after_failed_final_write(self, store, dns, config, provider_domain):
        """Test a lost terminal deployment write does not lock the domain out of redeploying"""
        orchestrator = build_orchestrator(store, dns, FakeHostingPlatform(), config)
        update_deployment = store.update_deployment
        failures = []

        async def flaky_update(deployment_id, **fields):
            if fields.get('status') == 'deployed' and not failures:
                failures.append(deployment_id)
                raise PersistenceError("connection reset")
            return await update_deployment(deployment_id, **fields)

        store.update_deployment = flaky_update

        first = await orchestrator.start(provider_domain['id'])
        await orchestrator.job_queue.drain()

        assert failures == [first['deployment_id']]
        assert store.domains[provider_domain['id']]['deployment_status'] == 'deployed'

        again = await orchestrator.start(provider_domain['id'])
        await orchestrator.job_queue.drain()

        assert again['started'] is True
        assert store.deployments[again['deployment_id']]['status'] == 'deployed'

    async def test_registration_failure_marks_failed(self, store, dns, config, provider_domain):
        """Test a hosting registration failure ends in failed with an error log"""
        hosting = FakeHostingPlatform()
        hosting.fail_on['create_deployment'] = ExternalServiceError(
            "Create deployment (files) failed: quota exceeded", 'vercel', ErrorKind.INVALID_REQUEST
        )
        orchestrator = build_orchestrator(store, dns, hosting, config)

        outcome = await orchestrator.start(provider_domain['id'])
        await orchestrator.job_queue.drain()

        assert store.domains[provider_domain['id']]['deployment_status'] == 'failed'
        deployment = store.deployments[outcome['deployment_id']]
        assert deployment['status'] == 'failed'
        assert deployment['logs'][-1]['level'] == 'error'
        assert 'quota exceeded' in deployment['logs'][-1]['message']
        assert store.jobs[outcome['deployment_id']]['status'] == 'completed'

    async def test_dns_failure_is_not_fatal(self, store, dns, config, provider_domain):
        """Test DNS problems are logged as warnings and the deployment still completes"""
        dns.list_error = ExternalServiceError("List DNS records failed: 500", 'cloudflare', ErrorKind.UNAVAILABLE)
        orchestrator = build_orchestrator(store, dns, FakeHostingPlatform(), config)

        outcome = await orchestrator.start(provider_domain['id'])
        await orchestrator.job_queue.drain()

        deployment = store.deployments[outcome['deployment_id']]
        assert deployment['status'] == 'deployed'
        assert any(log['level'] == 'warning' and 'DNS' in log['message'] for log in deployment['logs'])

    async def test_zone_resolved_when_missing(self, store, dns, config):
        """Test a domain without a stored zone id gets it resolved and saved"""
        domain = store.add_domain({'name': 'late-zone.com'})
        zone = dns.add_zone('late-zone.com')
        orchestrator = build_orchestrator(store, dns, FakeHostingPlatform(), config)

        await orchestrator.start(domain['id'])
        await orchestrator.job_queue.drain()

        assert store.domains[domain['id']]['zone_id'] == zone['id']
        assert len(dns.records[zone['id']]) == 2

    async def test_status_reports_latest_logs(self, store, dns, config, provider_domain):
        """Test status() returns the domain state with the latest attempt's logs"""
        orchestrator = build_orchestrator(store, dns, FakeHostingPlatform(), config)

        outcome = await orchestrator.start(provider_domain['id'])
        await orchestrator.job_queue.drain()
        status = await orchestrator.status(provider_domain['id'])

        assert status['status'] == 'deployed'
        assert status['deployment_id'] == outcome['deployment_id']
        assert status['logs']

    async def test_missing_and_unknown_ids(self, store, dns, config):
        """Test empty ids are rejected and unknown domains raise NotFoundError"""
        orchestrator = build_orchestrator(store, dns, FakeHostingPlatform(), config)

        with pytest.raises(ValidationError):
            await orchestrator.start('')
        with pytest.raises(ValidationError):
            await orchestrator.start(None)
        with pytest.raises(NotFoundError):
            await orchestrator.start('no-such-domain')
        with pytest.raises(NotFoundError):
            await orchestrator.status('no-such-domain')
        assert store.deployments == {}

    async def test_resume_monitors_existing_handle(self, store, dns, config, provider_domain):
        """Test a deploying attempt with a handle is monitored without re-registering"""
        hosting = FakeHostingPlatform(states=['READY'])
        orchestrator = build_orchestrator(store, dns, hosting, config)
        deployment = await store.create_deployment(provider_domain, 'deploying')
        await store.update_deployment(deployment['id'], deployment_handle='dpl_existing')
        await store.update_domain(provider_domain['id'], deployment_status='deploying')

        await orchestrator.run_pipeline(deployment['id'])

        assert hosting.deployments == []
        assert store.deployments[deployment['id']]['status'] == 'deployed'
        assert store.domains[provider_domain['id']]['deployment_status'] == 'deployed'
