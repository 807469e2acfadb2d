"""
Deployment configuration for LaunchBay
Provider credentials, hosting targets and orchestration timings loaded once from the environment
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CNAME_TARGET = 'cname.vercel-dns.com'
DEFAULT_APEX_IP = '76.76.21.21'
DEFAULT_EXTRA_APEX_IPS = ('76.76.21.98', '76.76.21.142', '76.76.21.164')


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid integer for {name}={raw!r}, using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid number for {name}={raw!r}, using default {default}")
        return default


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value or default


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(item.strip() for item in raw.split(',') if item.strip())


@dataclass
class DeploymentConfig:
    """Explicit configuration injected into every provider client and orchestrator"""

    database_url: Optional[str] = None

    cloudflare_api_token: Optional[str] = None
    cloudflare_email: Optional[str] = None
    cloudflare_api_key: Optional[str] = None
    cloudflare_account_id: Optional[str] = None

    vercel_token: Optional[str] = None
    vercel_team_id: Optional[str] = None
    vercel_project_id: Optional[str] = None
    vercel_git_repo: Optional[str] = None
    vercel_git_ref: str = 'main'
    main_app_url: Optional[str] = None

    blob_read_write_token: Optional[str] = None

    hosting_cname_target: str = DEFAULT_CNAME_TARGET
    hosting_apex_ip: str = DEFAULT_APEX_IP
    hosting_extra_apex_ips: Tuple[str, ...] = DEFAULT_EXTRA_APEX_IPS
    dns_record_ttl: int = 1

    monitor_interval_seconds: float = 10.0
    monitor_max_duration_seconds: float = 900.0
    bulk_max_items: int = 50
    job_poll_interval_seconds: float = 300.0

    @classmethod
    def from_env(cls) -> 'DeploymentConfig':
        config = cls(
            database_url=_env_str('DATABASE_URL'),
            cloudflare_api_token=_env_str('CLOUDFLARE_API_TOKEN'),
            cloudflare_email=_env_str('CLOUDFLARE_EMAIL'),
            cloudflare_api_key=_env_str('CLOUDFLARE_API_KEY'),
            cloudflare_account_id=_env_str('CLOUDFLARE_ACCOUNT_ID'),
            vercel_token=_env_str('VERCEL_TOKEN'),
            vercel_team_id=_env_str('VERCEL_TEAM_ID'),
            vercel_project_id=_env_str('VERCEL_PROJECT_ID'),
            vercel_git_repo=_env_str('VERCEL_GIT_REPO'),
            vercel_git_ref=_env_str('VERCEL_GIT_REF', 'main') or 'main',
            main_app_url=_env_str('MAIN_APP_URL'),
            blob_read_write_token=_env_str('BLOB_READ_WRITE_TOKEN'),
            hosting_cname_target=_env_str('HOSTING_CNAME_TARGET', DEFAULT_CNAME_TARGET) or DEFAULT_CNAME_TARGET,
            hosting_apex_ip=_env_str('HOSTING_APEX_IP', DEFAULT_APEX_IP) or DEFAULT_APEX_IP,
            hosting_extra_apex_ips=_env_list('HOSTING_APEX_IPS', DEFAULT_EXTRA_APEX_IPS),
            dns_record_ttl=_env_int('DNS_RECORD_TTL', 1),
            monitor_interval_seconds=_env_float('DEPLOY_MONITOR_INTERVAL', 10.0),
            monitor_max_duration_seconds=_env_float('DEPLOY_MONITOR_MAX_DURATION', 900.0),
            bulk_max_items=_env_int('BULK_MAX_ITEMS', 50),
            job_poll_interval_seconds=_env_float('JOB_POLL_INTERVAL', 300.0),
        )
        logger.debug(f"🔧 Deployment configuration loaded: {config.get_config_info()}")
        return config

    @property
    def hosting_ips(self) -> List[str]:
        """Every published anycast IP of the hosting platform, primary first"""
        ips = [self.hosting_apex_ip]
        ips.extend(ip for ip in self.hosting_extra_apex_ips if ip != self.hosting_apex_ip)
        return ips

    @property
    def hosting_targets(self) -> List[str]:
        return [self.hosting_cname_target.lower()] + self.hosting_ips

    def cloudflare_configured(self) -> bool:
        return bool(self.cloudflare_api_token or (self.cloudflare_email and self.cloudflare_api_key))

    def vercel_configured(self) -> bool:
        return bool(self.vercel_token)

    def get_config_info(self) -> Dict[str, Any]:
        """Configuration summary safe for logging, secrets reported only as set/unset"""
        return {
            'database_configured': bool(self.database_url),
            'cloudflare_configured': self.cloudflare_configured(),
            'cloudflare_account_configured': bool(self.cloudflare_account_id),
            'vercel_configured': self.vercel_configured(),
            'vercel_team_id': self.vercel_team_id,
            'vercel_git_repo': self.vercel_git_repo,
            'blob_configured': bool(self.blob_read_write_token),
            'hosting_cname_target': self.hosting_cname_target,
            'hosting_apex_ip': self.hosting_apex_ip,
            'dns_record_ttl': self.dns_record_ttl,
            'monitor_interval_seconds': self.monitor_interval_seconds,
            'monitor_max_duration_seconds': self.monitor_max_duration_seconds,
            'bulk_max_items': self.bulk_max_items,
        }


_config: Optional[DeploymentConfig] = None


def get_deployment_config() -> DeploymentConfig:
    """Process-wide configuration, loaded on first use"""
    global _config
    if _config is None:
        _config = DeploymentConfig.from_env()
    return _config


def reset_deployment_config() -> None:
    """Drop the cached configuration so the next call re-reads the environment"""
    global _config
    _config = None
