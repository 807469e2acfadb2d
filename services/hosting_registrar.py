"""
Hosting registration for provisioned domains
Attaches apex and www to a hosting project and creates the first production deployment
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from deployment_config import DeploymentConfig, get_deployment_config
from services.errors import ErrorKind, ExternalServiceError
from services.vercel import DEPLOY_STRATEGY_FILES, DEPLOY_STRATEGY_GIT

logger = logging.getLogger(__name__)


@dataclass
class HostingRegistration:
    deployment_id: str
    project_id: str
    urls: List[str] = field(default_factory=list)
    deployment_url: Optional[str] = None
    ready_state: Optional[str] = None
    strategy: Optional[str] = None
    configuration_dns_records: List[Dict[str, Any]] = field(default_factory=list)
    already_configured: bool = False


@dataclass(frozen=True)
class DeployStrategy:
    name: str
    condition: Callable[[DeploymentConfig], bool]


# Attempted in order until one succeeds
DEPLOY_POLICY = (
    DeployStrategy(DEPLOY_STRATEGY_GIT, lambda config: bool(config.vercel_git_repo)),
    DeployStrategy(DEPLOY_STRATEGY_FILES, lambda config: True),
)


class HostingRegistrar:
    """Registers domains with the hosting platform and reports their registration state"""

    def __init__(self, hosting, config: Optional[DeploymentConfig] = None,
                 policy=DEPLOY_POLICY, logger: Optional[logging.Logger] = None):
        self.hosting = hosting
        self.config = config or get_deployment_config()
        self.policy = tuple(policy)
        self.logger = logger or logging.getLogger(__name__)

    async def _find_or_create_project(self, name: str) -> Dict:
        project = await self.hosting.find_project_by_name(name)
        if project:
            self.logger.info(f"Using existing hosting project {project.get('id')} for {name}")
            return project
        return await self.hosting.create_project(name)

    async def _attach(self, project_id: str, hostname: str) -> Dict:
        return await self.hosting.add_domain_to_project(project_id, hostname)

    async def _deploy(self, project_id: str, name: str) -> Dict:
        last_error: Optional[ExternalServiceError] = None
        for strategy in self.policy:
            if not strategy.condition(self.config):
                continue
            try:
                deployment = await self.hosting.create_deployment(project_id, name, strategy=strategy.name)
                deployment['_strategy'] = strategy.name
                return deployment
            except ExternalServiceError as e:
                self.logger.warning(f"⚠️ Deployment strategy '{strategy.name}' failed for {name}: {e}")
                last_error = e
        if last_error is not None:
            raise last_error
        raise ExternalServiceError(f"No deployment strategy applicable for {name}", 'vercel',
                                   ErrorKind.INVALID_REQUEST)

    async def register(self, name: str, project_id: Optional[str] = None) -> HostingRegistration:
        """
        Register a domain with the hosting platform

        Finds or creates the project, attaches apex and www, then creates a production
        deployment. Raises ExternalServiceError when the domain cannot be attached or
        deployed.
        """
        name = name.strip().lower()
        if project_id:
            project = {'id': project_id}
        else:
            project = await self._find_or_create_project(name)
        project_id = project.get('id')
        if not project_id:
            raise ExternalServiceError(f"Hosting project for {name} has no id", 'vercel')

        already_configured = False
        try:
            attached = await self._attach(project_id, name)
            already_configured = bool(attached.get('alreadyAttached'))
        except ExternalServiceError as e:
            owner = e.details.get('project_id')
            if e.kind != ErrorKind.IN_USE_BY_OTHER_PROJECT or not owner:
                raise
            self.logger.info(f"🔄 {name} already belongs to hosting project {owner}, switching to it")
            project_id = owner
            already_configured = True

        try:
            await self._attach(project_id, f"www.{name}")
        except ExternalServiceError as e:
            self.logger.warning(f"⚠️ Could not attach www.{name} to project {project_id}: {e}")

        deployment = await self._deploy(project_id, name)

        configuration_records: List[Dict[str, Any]] = []
        try:
            status = await self.hosting.get_domain_status(name, project_id)
            configuration_records = status.get('configurationDnsRecords') or []
        except ExternalServiceError as e:
            self.logger.warning(f"⚠️ Could not read hosting configuration records for {name}: {e}")

        urls = [f"https://{name}", f"https://www.{name}"]
        if deployment.get('url'):
            urls.append(f"https://{deployment['url']}")

        self.logger.info(f"✅ {name} registered with hosting project {project_id}, deployment {deployment['id']}")
        return HostingRegistration(
            deployment_id=deployment['id'],
            project_id=project_id,
            urls=urls,
            deployment_url=f"https://{name}",
            ready_state=deployment.get('readyState'),
            strategy=deployment.get('_strategy'),
            configuration_dns_records=configuration_records,
            already_configured=already_configured,
        )

    async def status(self, name: str, project_id: Optional[str] = None) -> Dict:
        """Current registration/verification state: {exists, verified, configurationDnsRecords}"""
        return await self.hosting.get_domain_status(name.strip().lower(), project_id)

    async def deregister(self, name: str, project_id: Optional[str] = None,
                         include_www: bool = True) -> Dict:
        """Remove a hostname (and optionally its www alias) from the hosting project"""
        result = await self.hosting.delete_domain(name, project_id)
        removed = [name] if result.get('success') else []
        errors = [] if result.get('success') else [f"{name}: {result.get('error')}"]

        if include_www:
            www = await self.hosting.delete_domain(f"www.{name}", project_id)
            if www.get('success'):
                removed.append(f"www.{name}")
            else:
                self.logger.warning(f"⚠️ Could not remove www.{name} from hosting: {www.get('error')}")

        return {'success': bool(result.get('success')), 'removed': removed, 'errors': errors}

    async def remove_project_if_empty(self, project_id: Optional[str]) -> bool:
        """
        Delete a per-domain hosting project once no domains remain on it

        The default project is never deleted. Returns True only when the project was removed.
        """
        if not project_id or project_id == self.config.vercel_project_id:
            return False
        remaining = await self.hosting.get_project_domains(project_id)
        if remaining:
            self.logger.info(f"Hosting project {project_id} still has {len(remaining)} domain(s), keeping it")
            return False
        deleted = await self.hosting.delete_project(project_id)
        if deleted:
            self.logger.info(f"🗑️ Deleted empty hosting project {project_id}")
        return deleted
