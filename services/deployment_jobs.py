"""
Durable deployment job queue

Jobs are persisted rows keyed by DomainDeployment.id, so a pipeline interrupted by a process
restart is picked up again by resume(). Enqueued jobs are dispatched in-process right away;
run_forever() is the safety net that wakes on a signal or after a fallback poll interval.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from deployment_config import DeploymentConfig, get_deployment_config

logger = logging.getLogger(__name__)

JobHandler = Callable[[str], Awaitable[None]]


class DeploymentJobQueue:
    def __init__(self, store, handler: Optional[JobHandler] = None,
                 config: Optional[DeploymentConfig] = None,
                 logger: Optional[logging.Logger] = None):
        config = config or get_deployment_config()
        self.store = store
        self.handler = handler
        self.poll_interval = config.job_poll_interval_seconds
        self.logger = logger or logging.getLogger(__name__)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._event = asyncio.Event()

    def bind(self, handler: JobHandler) -> None:
        """Set the coroutine that runs one job"""
        self.handler = handler

    def signal(self) -> None:
        self._event.set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def enqueue(self, deployment_id: str, domain_id: str) -> None:
        """Persist a job and dispatch it without waiting for it to finish"""
        await self.store.enqueue_job(deployment_id, domain_id)
        self.logger.info(f"📥 Deployment job queued: {deployment_id}")
        self._dispatch(deployment_id)
        self.signal()

    def _dispatch(self, deployment_id: str) -> None:
        if deployment_id in self._tasks:
            return
        task = asyncio.create_task(self._run_job(deployment_id))
        self._tasks[deployment_id] = task
        task.add_done_callback(lambda _task: self._tasks.pop(deployment_id, None))

    async def _run_job(self, deployment_id: str) -> None:
        if self.handler is None:
            self.logger.error(f"❌ No handler bound, deployment job {deployment_id} left queued")
            return
        try:
            claimed = await self.store.claim_job(deployment_id)
        except Exception as e:
            self.logger.error(f"❌ Could not claim deployment job {deployment_id}: {e}")
            return
        if not claimed:
            self.logger.debug(f"Deployment job {deployment_id} already claimed")
            return

        try:
            await self.handler(deployment_id)
        except Exception as e:
            self.logger.error(f"❌ Deployment job {deployment_id} failed: {e}")
            await self._finish(deployment_id, 'failed', str(e) or e.__class__.__name__)
            return
        await self._finish(deployment_id, 'completed')

    async def _finish(self, deployment_id: str, status: str, error: Optional[str] = None) -> None:
        try:
            await self.store.finish_job(deployment_id, status, error)
        except Exception as e:
            self.logger.error(f"❌ Could not mark deployment job {deployment_id} {status}: {e}")

    async def dispatch_pending(self, limit: int = 50) -> int:
        """Dispatch every queued job that is not already running in this process"""
        jobs = await self.store.list_queued_jobs(limit)
        for job in jobs:
            self._dispatch(job['deployment_id'])
        return len(jobs)

    async def resume(self) -> int:
        """Requeue jobs orphaned by a previous process and dispatch everything queued"""
        requeued = await self.store.requeue_stale_jobs()
        if requeued:
            self.logger.info(f"🔄 Requeued {requeued} interrupted deployment job(s)")
        dispatched = await self.dispatch_pending()
        if dispatched:
            self.logger.info(f"🚀 Resumed {dispatched} deployment job(s)")
        return dispatched

    async def run_forever(self, poll_interval: Optional[float] = None) -> None:
        """Wake on signal or fallback timeout and dispatch queued jobs until cancelled"""
        poll_interval = poll_interval or self.poll_interval
        self.logger.info(f"Deployment job processor started (fallback: {poll_interval}s)")

        while True:
            try:
                try:
                    await asyncio.wait_for(self._event.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    self.logger.debug("Deployment job processor woke on fallback timeout")
                self._event.clear()

                dispatched = await self.dispatch_pending()
                if dispatched:
                    self.logger.debug(f"Deployment job processor dispatched {dispatched} job(s)")
            except asyncio.CancelledError:
                self.logger.info("Deployment job processor shutting down")
                raise
            except Exception as e:
                self.logger.error(f"❌ Deployment job processor error: {e}")
                await asyncio.sleep(10)

    async def drain(self) -> None:
        """Wait until every in-flight job in this process has finished"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel in-flight jobs; their rows stay `running` and are requeued by the next resume()"""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            self.logger.info(f"🛑 Stopped {len(tasks)} in-flight deployment job(s)")
