#!/usr/bin/env python3
"""
LaunchBay deployment worker
Resumes interrupted deployment jobs and processes new ones until stopped
"""

import sys
import asyncio
import signal
import logging
from dataclasses import dataclass
from typing import Optional

from utils.logging_setup import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

from database import DomainRecordStore, close_connection_pool, init_database
from deployment_config import DeploymentConfig, get_deployment_config
from services.blob_storage import BlobStorageService
from services.bulk_runner import BulkBatchRunner
from services.cloudflare import CloudflareService
from services.deployment_jobs import DeploymentJobQueue
from services.deployment_monitor import DeploymentMonitor
from services.deployment_orchestrator import DeploymentOrchestrator
from services.dns_reconciler import DNSReconciler
from services.domain_provisioning import DomainProvisioner
from services.hosting_registrar import HostingRegistrar
from services.teardown_orchestrator import TeardownOrchestrator
from services.vercel import VercelService
from services.zone_resolver import ZoneResolver


@dataclass
class Services:
    store: DomainRecordStore
    job_queue: DeploymentJobQueue
    orchestrator: DeploymentOrchestrator
    teardown: TeardownOrchestrator
    provisioner: DomainProvisioner
    bulk: BulkBatchRunner


def build_services(config: Optional[DeploymentConfig] = None) -> Services:
    """Wire every collaborator from one configuration object"""
    config = config or get_deployment_config()
    store = DomainRecordStore()
    dns = CloudflareService(config)
    hosting = VercelService(config)

    registrar = HostingRegistrar(hosting, config)
    zone_resolver = ZoneResolver(dns, store)
    job_queue = DeploymentJobQueue(store, config=config)
    orchestrator = DeploymentOrchestrator(
        store,
        registrar,
        DNSReconciler(dns, config),
        DeploymentMonitor(hosting, store, config),
        zone_resolver=zone_resolver,
        job_queue=job_queue,
    )
    return Services(
        store=store,
        job_queue=job_queue,
        orchestrator=orchestrator,
        teardown=TeardownOrchestrator(store, registrar, dns, BlobStorageService(config), config),
        provisioner=DomainProvisioner(store, dns, zone_resolver, config, orchestrator=orchestrator),
        bulk=BulkBatchRunner(config=config),
    )


async def shutdown(services: Services) -> None:
    try:
        await services.job_queue.stop()
    finally:
        await CloudflareService.close_client()
        await VercelService.close_client()
        await BlobStorageService.close_client()
        close_connection_pool()
        logger.info("✅ Cleanup completed")


async def main_worker_loop() -> bool:
    config = get_deployment_config()
    logger.info(f"🔧 Configuration: {config.get_config_info()}")

    logger.info("🔄 Initializing database...")
    await init_database(config.database_url)

    services = build_services(config)
    processor = asyncio.create_task(services.job_queue.run_forever())

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, processor.cancel)

    try:
        await services.job_queue.resume()
        await processor
    except asyncio.CancelledError:
        logger.info("🛑 Shutdown signal received, stopping deployment worker")
    finally:
        await shutdown(services)
    return True


def main():
    """Main entry point"""
    logger.info("🚀 Starting LaunchBay deployment worker...")
    try:
        result = asyncio.run(main_worker_loop())
        logger.info("✅ Worker stopped normally" if result else "⚠️ Worker stopped with error")
    except Exception as e:
        logger.error(f"💥 Critical worker failure: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
