"""
Deployment orchestrator
Drives a domain from a bare name to a monitored hosting deployment across DNS, hosting and storage
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from services.deployment_jobs import DeploymentJobQueue
from services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

IN_PROGRESS_REASON = "deployment already in progress"
TERMINAL_STATUSES = ('deployed', 'failed')


class DeploymentOrchestrator:
    """
    Top-level deployment coordinator

    start() flips persisted state and returns immediately; run_pipeline() is the job
    handler that registers the domain with hosting, reconciles DNS and monitors the
    deployment to a terminal status. Pipeline failures are only visible through status().
    """

    def __init__(self, store, registrar, reconciler, monitor, zone_resolver=None,
                 job_queue: Optional[DeploymentJobQueue] = None,
                 logger: Optional[logging.Logger] = None):
        self.store = store
        self.registrar = registrar
        self.reconciler = reconciler
        self.monitor = monitor
        self.zone_resolver = zone_resolver
        self.logger = logger or logging.getLogger(__name__)
        self.job_queue = job_queue or DeploymentJobQueue(store, logger=self.logger)
        self.job_queue.bind(self.run_pipeline)

    @staticmethod
    def _require_id(value: Any, label: str) -> str:
        if value is None or not str(value).strip():
            raise ValidationError(f"{label} is required")
        return str(value).strip()

    async def start(self, domain_id: str) -> Dict[str, Any]:
        """
        Start a deployment for a domain without waiting for it

        Returns {'started': True, 'domain_id', 'deployment_id'} or, when a deployment is
        already running, {'started': False, 'reason': 'deployment already in progress'}.
        """
        domain_id = self._require_id(domain_id, 'domain_id')
        domain = await self.store.get_domain(domain_id)
        if not domain:
            raise NotFoundError(f"Domain {domain_id} not found")

        if domain.get('deployment_status') == 'deploying' or \
                not await self.store.claim_domain_for_deployment(domain_id):
            self.logger.info(f"⏳ Deployment for {domain['name']} already in progress, not starting another")
            return {'started': False, 'reason': IN_PROGRESS_REASON, 'domain_id': domain_id}

        try:
            deployment = await self.store.create_deployment(domain, 'pending')
        except Exception:
            await self._safe_update_domain(domain_id, deployment_status=domain.get('deployment_status') or 'not_deployed')
            raise
        await self._log(deployment['id'], f"Starting deployment for {domain['name']}")

        try:
            await self.job_queue.enqueue(deployment['id'], domain_id)
        except Exception as e:
            await self._fail(deployment['id'], domain_id, f"Could not queue deployment job: {e}")
            raise

        self.logger.info(f"🚀 Deployment {deployment['id']} started for {domain['name']}")
        return {'started': True, 'domain_id': domain_id, 'deployment_id': deployment['id']}

    async def run_pipeline(self, deployment_id: str) -> None:
        """Run one deployment attempt to a terminal status; never raises"""
        domain_id: Optional[str] = None
        try:
            deployment = await self.store.get_deployment(deployment_id)
            if not deployment:
                self.logger.error(f"❌ Deployment {deployment_id} not found, nothing to run")
                return
            domain_id = deployment['domain_id']
            await self._run(deployment)
        except Exception as e:
            self.logger.exception(f"❌ Deployment pipeline {deployment_id} crashed")
            await self._fail(deployment_id, domain_id, f"Deployment pipeline error: {e}")

    async def _run(self, deployment: Dict) -> None:
        deployment_id = deployment['id']
        if deployment['status'] in TERMINAL_STATUSES:
            self.logger.info(f"Deployment {deployment_id} already {deployment['status']}, skipping")
            return

        domain = await self.store.get_domain(deployment['domain_id'])
        if not domain:
            await self._fail(deployment_id, None, f"Domain {deployment['domain_id']} no longer exists")
            return
        name = domain['name']

        if deployment['status'] == 'deploying' and deployment.get('deployment_handle'):
            await self._log(deployment_id, f"Resuming monitoring of deployment {deployment['deployment_handle']}")
            await self.monitor.run(deployment['deployment_handle'], deployment_id, domain_id=domain['id'])
            return

        await self.store.update_deployment(deployment_id, status='deploying')
        await self._log(deployment_id, f"Registering {name} with hosting platform")

        try:
            registration = await self.registrar.register(name, domain.get('hosting_project_id'))
        except Exception as e:
            await self._fail(deployment_id, domain['id'], f"Hosting registration failed: {e}")
            return

        await self._safe_update_deployment(
            deployment_id,
            deployment_handle=registration.deployment_id,
            hosting_project_id=registration.project_id,
            deployment_url=registration.deployment_url,
        )
        await self._safe_update_domain(
            domain['id'],
            hosting_project_id=registration.project_id,
            deployment_url=registration.deployment_url,
        )
        domain['hosting_project_id'] = registration.project_id
        await self._log(
            deployment_id,
            f"Hosting deployment {registration.deployment_id} created in project {registration.project_id}"
            + (" (domain already attached)" if registration.already_configured else "")
        )

        await self._reconcile_dns(deployment_id, domain)
        await self._refresh_verification(deployment_id, domain)

        await self.monitor.run(registration.deployment_id, deployment_id, domain_id=domain['id'])

    async def _reconcile_dns(self, deployment_id: str, domain: Dict) -> None:
        try:
            if self.zone_resolver is not None and domain.get('dns_management') != 'external':
                await self.zone_resolver.resolve_zone_id(domain)
            outcomes = await self.reconciler.reconcile(domain)
        except Exception as e:
            await self._log(deployment_id, f"DNS reconciliation error: {e}", 'warning')
            return
        for outcome in outcomes:
            await self._log(deployment_id, f"DNS: {outcome}", outcome.level)

    async def _refresh_verification(self, deployment_id: str, domain: Dict) -> None:
        try:
            status = await self.registrar.status(domain['name'], domain.get('hosting_project_id'))
        except Exception as e:
            await self._log(deployment_id, f"Could not read hosting verification status: {e}", 'warning')
            return
        verification = 'verified' if status.get('verified') else 'pending'
        await self._safe_update_domain(domain['id'], verification_status=verification)
        if verification == 'verified':
            await self._log(deployment_id, f"Hosting platform reports {domain['name']} as verified")
        else:
            await self._log(deployment_id,
                            f"Hosting platform verification pending for {domain['name']}", 'warning')

    async def _log(self, deployment_id: str, message: str, level: str = 'info') -> None:
        try:
            await self.store.append_log(deployment_id, message, level)
        except Exception as e:
            self.logger.error(f"❌ Could not append deployment log for {deployment_id}: {e}")

    async def _safe_update_deployment(self, deployment_id: str, **fields) -> None:
        try:
            await self.store.update_deployment(deployment_id, **fields)
        except Exception as e:
            self.logger.error(f"❌ Could not update deployment {deployment_id}: {e}")

    async def _safe_update_domain(self, domain_id: str, **fields) -> None:
        try:
            await self.store.update_domain(domain_id, **fields)
        except Exception as e:
            self.logger.error(f"❌ Could not update domain {domain_id}: {e}")

    async def _fail(self, deployment_id: str, domain_id: Optional[str], message: str) -> None:
        self.logger.error(f"❌ Deployment {deployment_id} failed: {message}")
        await self._log(deployment_id, message, 'error')
        await self._safe_update_deployment(deployment_id, status='failed',
                                           completed_at=datetime.now(timezone.utc))
        if domain_id:
            await self._safe_update_domain(domain_id, deployment_status='failed')

    async def status(self, domain_id: str) -> Dict[str, Any]:
        """Current deployment state of a domain with the logs of its latest attempt"""
        domain_id = self._require_id(domain_id, 'domain_id')
        domain = await self.store.get_domain(domain_id)
        if not domain:
            raise NotFoundError(f"Domain {domain_id} not found")
        latest = await self.store.get_latest_deployment(domain_id)
        return {
            'domain_id': domain_id,
            'name': domain['name'],
            'status': domain.get('deployment_status') or 'not_deployed',
            'verification_status': domain.get('verification_status'),
            'deployment_url': domain.get('deployment_url'),
            'hosting_project_id': domain.get('hosting_project_id'),
            'last_deployed_at': domain.get('last_deployed_at'),
            'deployment_id': latest['id'] if latest else None,
            'logs': list(latest.get('logs') or []) if latest else [],
        }

    async def list_deployments(self, domain_id: str) -> List[Dict[str, Any]]:
        """Deployment attempts for a domain, newest first"""
        domain_id = self._require_id(domain_id, 'domain_id')
        if not await self.store.get_domain(domain_id):
            raise NotFoundError(f"Domain {domain_id} not found")
        deployments = await self.store.list_deployments(domain_id)
        summary = []
        for deployment in deployments:
            logs = deployment.get('logs') or []
            summary.append({
                'id': deployment['id'],
                'deployment_handle': deployment.get('deployment_handle'),
                'status': deployment['status'],
                'started_at': deployment.get('started_at'),
                'completed_at': deployment.get('completed_at'),
                'last_log_message': logs[-1]['message'] if logs else None,
            })
        return summary
