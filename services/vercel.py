"""
Vercel hosting platform API integration
Handles projects, domain attachment, deployments and domain verification state
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from deployment_config import DeploymentConfig, get_deployment_config
from services.errors import ErrorKind, ExternalServiceError, classify_vercel_error

logger = logging.getLogger(__name__)

SERVICE_NAME = 'vercel'

DEPLOY_STRATEGY_GIT = 'git'
DEPLOY_STRATEGY_FILES = 'files'


def _redirect_files(domain_name: str, main_app_url: str) -> List[Dict[str, str]]:
    """Minimal Next.js project that forwards every path to the main application"""
    package_json = {
        'name': f"domain-{domain_name.replace('.', '-')}",
        'version': '1.0.0',
        'private': True,
        'scripts': {'dev': 'next dev', 'build': 'next build', 'start': 'next start'},
        'dependencies': {'next': '^13.4.0', 'react': '^18.2.0', 'react-dom': '^18.2.0'},
    }
    next_config = (
        f"const mainAppUrl = process.env.MAIN_APP_URL || '{main_app_url}';\n\n"
        "module.exports = {\n"
        "  reactStrictMode: true,\n"
        "  async rewrites() {\n"
        "    return [{ source: '/:path*', destination: `${mainAppUrl}/:path*` }];\n"
        "  }\n"
        "};\n"
    )
    index_page = (
        f"export default function Home() {{\n  return <div>Loading {domain_name} content...</div>;\n}}\n\n"
        "export async function getServerSideProps() {\n"
        f"  const mainAppUrl = process.env.MAIN_APP_URL || '{main_app_url}';\n"
        "  return { redirect: { destination: `${mainAppUrl}/`, permanent: false } };\n"
        "}\n"
    )
    return [
        {'file': 'package.json', 'data': json.dumps(package_json), 'encoding': 'utf-8'},
        {'file': 'next.config.js', 'data': next_config, 'encoding': 'utf-8'},
        {'file': 'pages/index.js', 'data': index_page, 'encoding': 'utf-8'},
    ]


class VercelService:
    """Vercel REST API client"""
    _client: Optional[httpx.AsyncClient] = None

    def __init__(self, config: Optional[DeploymentConfig] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.config = config or get_deployment_config()
        self._injected_client = client
        self.base_url = "https://api.vercel.com"
        self.team_id = self.config.vercel_team_id
        self.default_project_id = self.config.vercel_project_id
        self.headers = {
            'Authorization': f'Bearer {self.config.vercel_token or ""}',
            'Content-Type': 'application/json',
            'User-Agent': 'LaunchBay/1.0'
        }

    @classmethod
    async def get_client(cls) -> httpx.AsyncClient:
        """Get or create persistent HTTP client with connection pooling"""
        if cls._client is None or cls._client.is_closed:
            limits = httpx.Limits(
                max_keepalive_connections=10,
                max_connections=50,
                keepalive_expiry=30
            )
            timeout = httpx.Timeout(connect=5.0, read=30.0, write=30.0, pool=5.0)
            cls._client = httpx.AsyncClient(limits=limits, timeout=timeout)
        return cls._client

    @classmethod
    async def close_client(cls):
        if cls._client and not cls._client.is_closed:
            await cls._client.aclose()
            cls._client = None

    def _params(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if self.team_id:
            params['teamId'] = self.team_id
        if extra:
            params.update(extra)
        return params

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                       json_body: Optional[Dict[str, Any]] = None) -> Tuple[int, Dict[str, Any]]:
        if not self.config.vercel_configured():
            raise ExternalServiceError("Vercel API token not set", SERVICE_NAME, ErrorKind.AUTH)

        client = self._injected_client or await self.get_client()
        try:
            response = await client.request(
                method, f"{self.base_url}{path}", headers=self.headers,
                params=self._params(params), json=json_body
            )
        except httpx.HTTPError as e:
            logger.error(f"❌ Vercel {method} {path} transport error: {e}")
            raise ExternalServiceError(
                f"Vercel request failed: {e.__class__.__name__}: {e}", SERVICE_NAME, ErrorKind.UNAVAILABLE
            ) from e

        if response.status_code == 204 or not response.content:
            return response.status_code, {}
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {'result': data}
        return response.status_code, data

    def _error(self, action: str, status_code: int, data: Dict[str, Any]) -> ExternalServiceError:
        error = data.get('error') or {}
        kind = classify_vercel_error(error, status_code)
        message = error.get('message') or f'HTTP {status_code} error'
        logger.error(f"❌ Vercel {action} failed ({kind.value}): {message}")
        return ExternalServiceError(
            f"{action} failed: {message}", SERVICE_NAME, kind, code=error.get('code'),
            status_code=status_code, details={'error': error}
        )

    async def find_project_by_name(self, project_name: str) -> Optional[Dict]:
        status_code, data = await self._request('GET', f"/v9/projects/{project_name}")
        if status_code == 404:
            return None
        if status_code >= 400:
            raise self._error('Project lookup', status_code, data)
        return data

    async def get_project(self, project_id: str) -> Dict:
        status_code, data = await self._request('GET', f"/v9/projects/{project_id}")
        if status_code >= 400:
            raise self._error('Project fetch', status_code, data)
        return data

    async def create_project(self, project_name: str, framework: str = 'nextjs') -> Dict:
        """Create a project; an existing project with the same name is returned instead"""
        body = {
            'name': project_name,
            'framework': framework,
            'environmentVariables': [{
                'key': 'DOMAIN_NAME',
                'value': project_name,
                'type': 'plain',
                'target': ['production', 'preview', 'development'],
            }],
        }
        status_code, data = await self._request('POST', "/v9/projects", json_body=body)
        if status_code < 400:
            logger.info(f"✅ Vercel project created: {project_name} ({data.get('id')})")
            return data

        error = self._error('Project creation', status_code, data)
        if error.code == 'project_name_already_exists':
            existing = await self.find_project_by_name(project_name)
            if existing:
                logger.info(f"Vercel project {project_name} already exists ({existing.get('id')})")
                return existing
        raise error

    async def get_project_domains(self, project_id: str) -> List[Dict]:
        status_code, data = await self._request('GET', f"/v9/projects/{project_id}/domains")
        if status_code >= 400:
            raise self._error('List project domains', status_code, data)
        return data.get('domains') or []

    async def add_domain_to_project(self, project_id: str, domain_name: str) -> Dict:
        """
        Attach a domain to a project

        Returns the attached domain payload with `alreadyAttached` set when the domain was
        already on this project. A domain owned by another project raises
        ExternalServiceError(IN_USE_BY_OTHER_PROJECT) with `details['project_id']`.
        """
        status_code, data = await self._request(
            'POST', f"/v9/projects/{project_id}/domains", json_body={'name': domain_name}
        )
        if status_code < 400:
            logger.info(f"✅ Domain {domain_name} attached to Vercel project {project_id}")
            return data

        error = data.get('error') or {}
        kind = classify_vercel_error(error, status_code)
        if kind in (ErrorKind.IN_USE_BY_OTHER_PROJECT, ErrorKind.ALREADY_EXISTS):
            owner = error.get('projectId') or (error.get('domain') or {}).get('projectId')
            if owner is None or owner == project_id:
                logger.info(f"Domain {domain_name} already attached to project {project_id}")
                return {'name': domain_name, 'projectId': project_id, 'alreadyAttached': True,
                        'kind': ErrorKind.IN_USE_BY_PROJECT.value}
            raise ExternalServiceError(
                f"Domain {domain_name} is in use by project {owner}", SERVICE_NAME,
                ErrorKind.IN_USE_BY_OTHER_PROJECT, code=error.get('code'), status_code=status_code,
                details={'project_id': owner, 'error': error}
            )
        raise self._error(f'Attach domain {domain_name}', status_code, data)

    async def create_deployment(self, project_id: str, domain_name: str,
                                strategy: str = DEPLOY_STRATEGY_FILES) -> Dict:
        """Create a production deployment from the configured git repository or inline files"""
        body: Dict[str, Any] = {'name': domain_name, 'target': 'production', 'project': project_id}
        main_app_url = self.config.main_app_url or f"https://{domain_name}"

        if strategy == DEPLOY_STRATEGY_GIT:
            repo = self.config.vercel_git_repo
            if not repo or '/' not in repo:
                raise ExternalServiceError(
                    "Git deployment requires VERCEL_GIT_REPO as owner/name", SERVICE_NAME,
                    ErrorKind.INVALID_REQUEST
                )
            org, repo_name = repo.split('/', 1)
            body['gitSource'] = {'type': 'github', 'org': org, 'repo': repo_name,
                                 'ref': self.config.vercel_git_ref}
        elif strategy == DEPLOY_STRATEGY_FILES:
            body['files'] = _redirect_files(domain_name, main_app_url)
            body['projectSettings'] = {
                'framework': 'nextjs',
                'devCommand': 'next dev',
                'buildCommand': 'next build',
                'outputDirectory': '.next',
            }
            body['env'] = {'DOMAIN_NAME': domain_name, 'MAIN_APP_URL': main_app_url}
        else:
            raise ValueError(f"Unknown deployment strategy: {strategy}")

        status_code, data = await self._request(
            'POST', "/v13/deployments", params={'projectId': project_id}, json_body=body
        )
        if status_code >= 400 or not data.get('id'):
            raise self._error(f'Create deployment ({strategy})', status_code, data)
        logger.info(f"🚀 Vercel deployment created for {domain_name}: {data['id']} via {strategy}")
        return data

    async def get_deployment_status(self, deployment_id: str) -> Dict:
        status_code, data = await self._request('GET', f"/v13/deployments/{deployment_id}")
        if status_code >= 400:
            raise self._error('Deployment status', status_code, data)
        data.setdefault('readyState', data.get('state'))
        return data

    async def get_domain_status(self, domain_name: str, project_id: Optional[str] = None) -> Dict:
        """Report whether the domain is attached and verified on the project"""
        project_id = project_id or self.default_project_id
        if not project_id:
            raise ExternalServiceError("No Vercel project id for domain status", SERVICE_NAME,
                                       ErrorKind.INVALID_REQUEST)
        status_code, data = await self._request('GET', f"/v9/projects/{project_id}/domains/{domain_name}")
        if status_code == 404:
            return {'exists': False, 'verified': False, 'configurationDnsRecords': []}
        if status_code >= 400:
            raise self._error('Domain status', status_code, data)

        records = [
            {'type': item.get('type'), 'domain': item.get('domain'), 'value': item.get('value')}
            for item in data.get('verification') or []
        ]
        return {'exists': True, 'verified': bool(data.get('verified')), 'configurationDnsRecords': records}

    async def verify_domain(self, domain_name: str, project_id: str) -> Dict:
        status_code, data = await self._request(
            'POST', f"/v9/projects/{project_id}/domains/{domain_name}/verify"
        )
        if status_code >= 400:
            raise self._error(f'Verify domain {domain_name}', status_code, data)
        return data

    async def delete_domain(self, domain_name: str, project_id: Optional[str] = None) -> Dict:
        """Remove a domain from a project; a domain that is already gone counts as removed"""
        project_id = project_id or self.default_project_id
        if not project_id:
            return {'success': False, 'error': 'No Vercel project id for domain removal'}
        try:
            status_code, data = await self._request(
                'DELETE', f"/v9/projects/{project_id}/domains/{domain_name}"
            )
        except ExternalServiceError as e:
            return {'success': False, 'error': str(e), 'error_kind': e.kind}

        if status_code < 400:
            logger.info(f"✅ Domain {domain_name} removed from Vercel project {project_id}")
            return {'success': True}
        if status_code == 404:
            logger.info(f"Domain {domain_name} not attached to Vercel project {project_id}")
            return {'success': True, 'not_found': True}
        error = data.get('error') or {}
        logger.warning(f"⚠️ Vercel domain removal failed for {domain_name}: {error}")
        return {'success': False, 'error': error.get('message') or f'HTTP {status_code} error',
                'error_kind': classify_vercel_error(error, status_code)}

    async def delete_project(self, project_id: str) -> bool:
        """Delete a project; a project that is already gone counts as deleted"""
        try:
            status_code, data = await self._request('DELETE', f"/v9/projects/{project_id}")
        except ExternalServiceError as e:
            logger.warning(f"⚠️ Vercel project deletion failed for {project_id}: {e}")
            return False

        if status_code < 400 or status_code == 404:
            logger.info(f"✅ Vercel project {project_id} deleted")
            return True
        logger.warning(f"⚠️ Vercel project deletion failed for {project_id}: {data.get('error')}")
        return False
