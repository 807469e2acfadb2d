"""
Bulk batch runner
Runs one operation per id sequentially, isolating failures so one bad item never aborts the batch
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from deployment_config import DeploymentConfig, get_deployment_config
from services.errors import ValidationError

logger = logging.getLogger(__name__)

ItemOperation = Callable[[str], Awaitable[Any]]


@dataclass
class BatchResult:
    success: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)
    summary: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {'success': list(self.success), 'failed': list(self.failed), 'summary': self.summary}


def failure_reason(error: BaseException) -> str:
    return str(error) or error.__class__.__name__


class BulkBatchRunner:
    def __init__(self, max_items: Optional[int] = None, config: Optional[DeploymentConfig] = None,
                 logger: Optional[logging.Logger] = None):
        if max_items is None:
            max_items = (config or get_deployment_config()).bulk_max_items
        self.max_items = max_items
        self.logger = logger or logging.getLogger(__name__)

    async def run_batch(self, ids: Sequence[str], op: ItemOperation, label: str = 'items') -> BatchResult:
        """
        Apply `op` to every id in order

        The whole batch is rejected up front when it is empty or larger than max_items.
        Each item's exception is captured as {'id', 'reason'} in `failed`.
        """
        if not isinstance(ids, (list, tuple)) or not ids:
            raise ValidationError(f"A non-empty list of {label} is required")
        if len(ids) > self.max_items:
            raise ValidationError(f"Maximum {self.max_items} {label} can be processed at once")

        result = BatchResult()
        self.logger.info(f"📦 Bulk run over {len(ids)} {label}")
        for item_id in ids:
            try:
                await op(item_id)
            except Exception as e:
                reason = failure_reason(e)
                self.logger.warning(f"⚠️ Bulk item {item_id} failed: {reason}")
                result.failed.append({'id': item_id, 'reason': reason})
            else:
                result.success.append(item_id)

        result.summary = (f"Processed {len(ids)} {label}. "
                          f"{len(result.success)} succeeded, {len(result.failed)} failed.")
        self.logger.info(f"✅ {result.summary}")
        return result


def deploy_op(orchestrator) -> ItemOperation:
    """Start a deployment per domain id; a rejected start counts as a failure"""

    async def _deploy(domain_id: str) -> Dict[str, Any]:
        outcome = await orchestrator.start(domain_id)
        if not outcome.get('started'):
            raise ValidationError(outcome.get('reason') or 'deployment not started')
        return outcome

    return _deploy


def teardown_op(teardown, target_type: str = 'domain', **options) -> ItemOperation:
    """Tear down each target; options such as delete_zone are passed to every delete"""

    async def _teardown(target_id: str):
        return await teardown.delete(target_id, target_type, **options)

    return _teardown


def create_domain_op(provisioner, dns_management: str = 'provider', auto_deploy: bool = False) -> ItemOperation:
    async def _create(name: str) -> Dict[str, Any]:
        return await provisioner.create_domain(name, dns_management=dns_management, auto_deploy=auto_deploy)

    return _create
