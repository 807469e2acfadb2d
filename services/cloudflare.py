"""
Cloudflare DNS management API integration
Handles zone lookup and creation, DNS record management and edge worker cleanup
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from deployment_config import DeploymentConfig, get_deployment_config
from services.errors import (
    ErrorKind, ExternalServiceError, classify_cloudflare_errors, first_error_message,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = 'cloudflare'


class CloudflareService:
    """Cloudflare API service for DNS management"""
    _client: Optional[httpx.AsyncClient] = None

    def __init__(self, config: Optional[DeploymentConfig] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.config = config or get_deployment_config()
        self._injected_client = client
        self.base_url = "https://api.cloudflare.com/client/v4"
        self.account_id = self.config.cloudflare_account_id

        self.headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'User-Agent': 'LaunchBay/1.0'
        }
        if self.config.cloudflare_api_token:
            self.headers['Authorization'] = f'Bearer {self.config.cloudflare_api_token}'
        elif self.config.cloudflare_email and self.config.cloudflare_api_key:
            self.headers['X-Auth-Email'] = self.config.cloudflare_email
            self.headers['X-Auth-Key'] = self.config.cloudflare_api_key

    @classmethod
    async def get_client(cls) -> httpx.AsyncClient:
        """Get or create persistent HTTP client with connection pooling"""
        if cls._client is None or cls._client.is_closed:
            limits = httpx.Limits(
                max_keepalive_connections=20,
                max_connections=100,
                keepalive_expiry=30
            )
            timeout = httpx.Timeout(connect=3.0, read=10.0, write=5.0, pool=5.0)
            cls._client = httpx.AsyncClient(limits=limits, timeout=timeout)
        return cls._client

    @classmethod
    async def close_client(cls):
        """Close HTTP client for clean shutdown"""
        if cls._client and not cls._client.is_closed:
            await cls._client.aclose()
            cls._client = None

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                       json: Optional[Dict[str, Any]] = None) -> Tuple[int, Dict[str, Any]]:
        client = self._injected_client or await self.get_client()
        try:
            response = await client.request(
                method, f"{self.base_url}{path}", headers=self.headers, params=params, json=json
            )
        except httpx.HTTPError as e:
            logger.error(f"❌ Cloudflare {method} {path} transport error: {e}")
            raise ExternalServiceError(
                f"Cloudflare request failed: {e.__class__.__name__}: {e}",
                SERVICE_NAME, ErrorKind.UNAVAILABLE
            ) from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        return response.status_code, data

    def _error(self, action: str, status_code: int, data: Dict[str, Any]) -> ExternalServiceError:
        errors = data.get('errors') or []
        kind = classify_cloudflare_errors(errors, status_code)
        code = errors[0].get('code') if errors else None
        message = first_error_message(errors, f'HTTP {status_code} error')
        logger.error(f"❌ Cloudflare {action} failed ({kind.value}): {message}")
        return ExternalServiceError(
            f"{action} failed: {message}", SERVICE_NAME, kind, code=code, status_code=status_code,
            details={'errors': errors}
        )

    @staticmethod
    def _ok(status_code: int, data: Dict[str, Any]) -> bool:
        return status_code == 200 and bool(data.get('success'))

    async def list_dns_records(self, zone_id: str, name: Optional[str] = None,
                               record_type: Optional[str] = None) -> List[Dict]:
        """List DNS records for a zone, following pagination"""
        params: Dict[str, Any] = {'per_page': 100, 'page': 1}
        if name:
            params['name'] = name
        if record_type:
            params['type'] = record_type.upper()

        records: List[Dict] = []
        while True:
            status_code, data = await self._request('GET', f"/zones/{zone_id}/dns_records", params=params)
            if not self._ok(status_code, data):
                raise self._error('List DNS records', status_code, data)
            records.extend(data.get('result') or [])
            total_pages = (data.get('result_info') or {}).get('total_pages') or 1
            if params['page'] >= total_pages:
                break
            params['page'] += 1
        return records

    async def create_dns_record(self, zone_id: str, record_type: str, name: str, content: str,
                                ttl: int = 1, proxied: bool = False) -> Dict:
        """Create a new DNS record, reporting failure in the returned dict"""
        record_data = {
            'type': record_type.upper(),
            'name': name,
            'content': content,
            'ttl': ttl,
            'proxied': proxied
        }
        try:
            status_code, data = await self._request('POST', f"/zones/{zone_id}/dns_records", json=record_data)
        except ExternalServiceError as e:
            return {'success': False, 'errors': [{'message': str(e)}], 'error_kind': e.kind}

        if self._ok(status_code, data):
            logger.info(f"✅ DNS record created: {record_type.upper()} {name} -> {content}")
            return {'success': True, 'result': data.get('result', {})}

        errors = data.get('errors') or [{'message': f'HTTP {status_code} error'}]
        kind = classify_cloudflare_errors(errors, status_code)
        logger.warning(f"⚠️ DNS record creation failed for {record_type.upper()} {name}: {errors}")
        return {'success': False, 'errors': errors, 'error_kind': kind}

    async def delete_dns_record(self, zone_id: str, record_id: str) -> bool:
        """Delete a DNS record"""
        try:
            status_code, data = await self._request('DELETE', f"/zones/{zone_id}/dns_records/{record_id}")
        except ExternalServiceError:
            return False
        if self._ok(status_code, data):
            logger.info(f"✅ DNS record deleted: {record_id}")
            return True
        logger.warning(f"⚠️ DNS record deletion failed for {record_id}: {data.get('errors')}")
        return False

    async def get_zone_by_name(self, domain_name: str) -> Optional[Dict]:
        """Get zone by domain name"""
        status_code, data = await self._request('GET', "/zones", params={'name': domain_name})
        if not self._ok(status_code, data):
            raise self._error('Zone lookup', status_code, data)
        zones = data.get('result') or []
        return zones[0] if zones else None

    async def find_zone_id(self, domain_name: str) -> Optional[str]:
        zone = await self.get_zone_by_name(domain_name)
        return zone.get('id') if zone else None

    async def create_zone(self, domain_name: str) -> Dict:
        """Create a new DNS zone; an existing zone surfaces as ErrorKind.ALREADY_EXISTS"""
        payload: Dict[str, Any] = {'name': domain_name, 'type': 'full'}
        if self.account_id:
            payload['account'] = {'id': self.account_id}

        logger.info(f"🌐 Creating Cloudflare zone for: {domain_name}")
        status_code, data = await self._request('POST', "/zones", json=payload)
        if not self._ok(status_code, data):
            raise self._error('Zone creation', status_code, data)

        zone = data.get('result') or {}
        logger.info(f"✅ Cloudflare zone created: {domain_name} ({zone.get('id')})")
        return zone

    async def get_zone_info(self, zone_id: str) -> Dict:
        status_code, data = await self._request('GET', f"/zones/{zone_id}")
        if not self._ok(status_code, data):
            raise self._error('Zone info', status_code, data)
        return data.get('result') or {}

    async def delete_zone(self, zone_id: str) -> bool:
        try:
            status_code, data = await self._request('DELETE', f"/zones/{zone_id}")
        except ExternalServiceError:
            return False
        if self._ok(status_code, data):
            logger.info(f"✅ Cloudflare zone deleted: {zone_id}")
            return True
        logger.warning(f"⚠️ Cloudflare zone deletion failed for {zone_id}: {data.get('errors')}")
        return False

    async def list_worker_routes(self, zone_id: str) -> List[Dict]:
        status_code, data = await self._request('GET', f"/zones/{zone_id}/workers/routes")
        if not self._ok(status_code, data):
            raise self._error('List worker routes', status_code, data)
        return data.get('result') or []

    async def delete_worker_route(self, zone_id: str, route_id: str) -> bool:
        try:
            status_code, data = await self._request('DELETE', f"/zones/{zone_id}/workers/routes/{route_id}")
        except ExternalServiceError:
            return False
        if self._ok(status_code, data):
            logger.info(f"✅ Worker route deleted: {route_id}")
            return True
        logger.warning(f"⚠️ Worker route deletion failed for {route_id}: {data.get('errors')}")
        return False

    async def delete_worker_script(self, script_name: str) -> bool:
        """Delete an edge worker script; a script that no longer exists counts as deleted"""
        if not self.account_id:
            logger.warning(f"⚠️ CLOUDFLARE_ACCOUNT_ID not configured, cannot delete worker {script_name}")
            return False
        try:
            status_code, data = await self._request(
                'DELETE', f"/accounts/{self.account_id}/workers/scripts/{script_name}"
            )
        except ExternalServiceError:
            return False
        if self._ok(status_code, data):
            logger.info(f"✅ Worker script deleted: {script_name}")
            return True
        if classify_cloudflare_errors(data.get('errors'), status_code) == ErrorKind.NOT_FOUND:
            logger.info(f"Worker script {script_name} already absent")
            return True
        logger.warning(f"⚠️ Worker script deletion failed for {script_name}: {data.get('errors')}")
        return False

    async def delete_worker_and_routes(self, script_name: str, zone_id: Optional[str]) -> Dict[str, Any]:
        """Delete every route bound to a worker script, then the script itself"""
        result: Dict[str, Any] = {'worker_deleted': False, 'routes_deleted': 0, 'errors': []}

        if zone_id:
            try:
                routes = await self.list_worker_routes(zone_id)
            except ExternalServiceError as e:
                routes = []
                result['errors'].append(str(e))
            for route in routes:
                if route.get('script') != script_name:
                    continue
                if await self.delete_worker_route(zone_id, route['id']):
                    result['routes_deleted'] += 1
                else:
                    result['errors'].append(f"Failed to delete route {route.get('pattern', route['id'])}")

        result['worker_deleted'] = await self.delete_worker_script(script_name)
        if not result['worker_deleted']:
            result['errors'].append(f"Failed to delete worker script {script_name}")
        return result
