"""
Deployment monitor
Polls a hosting-platform deployment until it reaches a terminal state or its maximum duration elapses
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional

from deployment_config import DeploymentConfig, get_deployment_config
from services.errors import DeploymentTimeoutError

logger = logging.getLogger(__name__)

NON_TERMINAL_STATES = ('BUILDING', 'QUEUED', 'INITIALIZING')
SUCCESS_STATES = ('READY',)
FAILURE_STATES = ('ERROR', 'CANCELED')


class DeploymentMonitor:
    """One run() call per deployment attempt; not cancellable once started"""

    def __init__(self, hosting, store, config: Optional[DeploymentConfig] = None,
                 interval: Optional[float] = None, max_duration: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 logger: Optional[logging.Logger] = None):
        config = config or get_deployment_config()
        self.hosting = hosting
        self.store = store
        self.interval = interval if interval is not None else config.monitor_interval_seconds
        self.max_duration = max_duration if max_duration is not None else config.monitor_max_duration_seconds
        self.clock = clock
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    async def run(self, deployment_handle: str, deployment_record_id: str,
                  interval: Optional[float] = None, max_duration: Optional[float] = None,
                  domain_id: Optional[str] = None) -> str:
        """
        Drive a deployment attempt to a terminal status

        Returns the final DomainDeployment status, 'deployed' or 'failed'. Transient poll
        failures are logged and retried on the next interval.
        """
        interval = self.interval if interval is None else interval
        max_duration = self.max_duration if max_duration is None else max_duration
        started = self.clock()
        last_state: Optional[str] = None

        self.logger.info(f"🔄 Monitoring deployment {deployment_handle} "
                         f"(every {interval}s, up to {max_duration}s)")

        while True:
            await self.sleep(interval)
            elapsed = self.clock() - started

            try:
                status = await self.hosting.get_deployment_status(deployment_handle)
            except Exception as e:
                await self._log(deployment_record_id,
                                f"Deployment status check failed after {elapsed:.1f}s: {e}; will retry",
                                'warning')
            else:
                state = str(status.get('readyState') or status.get('state') or 'UNKNOWN').upper()
                last_state = state
                known = state in NON_TERMINAL_STATES + SUCCESS_STATES + FAILURE_STATES
                await self._log(deployment_record_id,
                                f"Deployment state: {state} ({elapsed:.1f}s elapsed)",
                                'info' if known else 'warning')

                if state in SUCCESS_STATES:
                    await self._finish(deployment_record_id, 'deployed',
                                       f"Deployment {deployment_handle} is ready", 'info', domain_id)
                    return 'deployed'
                if state in FAILURE_STATES:
                    await self._finish(deployment_record_id, 'failed',
                                       f"Deployment {deployment_handle} failed with state {state}", 'error', domain_id)
                    return 'failed'

            elapsed = self.clock() - started
            if elapsed >= max_duration:
                timeout = DeploymentTimeoutError(elapsed, last_state)
                self.logger.warning(f"⏰ {timeout} for deployment {deployment_handle}")
                await self._finish(deployment_record_id, 'failed', str(timeout), 'error', domain_id)
                return 'failed'

    async def _log(self, deployment_record_id: str, message: str, level: str) -> None:
        try:
            await self.store.append_log(deployment_record_id, message, level)
        except Exception as e:
            self.logger.error(f"❌ Could not append deployment log for {deployment_record_id}: {e}")

    async def _finish(self, deployment_record_id: str, status: str, message: str, level: str,
                      domain_id: Optional[str] = None) -> None:
        now = datetime.now(timezone.utc)
        await self._log(deployment_record_id, message, level)

        deployment: Dict = {}
        try:
            deployment = await self.store.get_deployment(deployment_record_id) or {}
        except Exception as e:
            self.logger.error(f"❌ Could not read deployment {deployment_record_id}: {e}")
        domain_id = domain_id or deployment.get('domain_id')

        # Domain status is written even when the deployment write fails
        try:
            await self.store.update_deployment(deployment_record_id, status=status, completed_at=now)
        except Exception as e:
            self.logger.error(f"❌ Could not set deployment {deployment_record_id} to {status}: {e}")

        if not domain_id:
            self.logger.error(f"❌ No domain known for deployment {deployment_record_id}, domain status not updated")
            return
        domain_fields = {'deployment_status': status}
        if status == 'deployed':
            domain_fields['last_deployed_at'] = now
        try:
            await self.store.update_domain(domain_id, **domain_fields)
        except Exception as e:
            self.logger.error(f"❌ Could not set domain {domain_id} to {status}: {e}")

        name = deployment.get('domain_name') or domain_id
        if status == 'deployed':
            self.logger.info(f"✅ {name} deployed")
        else:
            self.logger.warning(f"❌ {name} deployment failed: {message}")
