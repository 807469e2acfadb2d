"""
PostgreSQL persistence for LaunchBay domains, deployments, landing pages and deployment jobs
Direct database connections with raw SQL queries, run off the event loop in worker threads
"""

import os
import json
import asyncio
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import psycopg2
import psycopg2.pool
from psycopg2.extras import Json, RealDictCursor

from services.errors import PersistenceError

logger = logging.getLogger(__name__)

_connection_pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None
_pool_lock = threading.Lock()

DEPLOYMENT_STATUSES = ('not_deployed', 'pending', 'deploying', 'deployed', 'failed')
LOG_LEVELS = ('info', 'warning', 'error')

DOMAIN_COLUMNS = (
    'name', 'dns_management', 'zone_id', 'zone_status', 'nameservers', 'target_cname',
    'is_active', 'verification_status', 'deployment_status', 'deployment_url',
    'hosting_project_id', 'last_deployed_at',
)
DEPLOYMENT_COLUMNS = (
    'deployment_handle', 'hosting_project_id', 'deployment_url', 'status', 'completed_at',
)
JSON_COLUMNS = ('nameservers',)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def new_id() -> str:
    return uuid.uuid4().hex

def make_log_entry(message: str, level: str = 'info') -> Dict[str, str]:
    """Build one deployment log entry"""
    if level not in LOG_LEVELS:
        level = 'info'
    return {'timestamp': utcnow().isoformat(), 'message': message, 'level': level}

def get_connection_pool(dsn: Optional[str] = None) -> psycopg2.pool.ThreadedConnectionPool:
    """Get or create the shared connection pool"""
    global _connection_pool
    if _connection_pool is None:
        with _pool_lock:
            if _connection_pool is None:
                database_url = dsn or os.getenv('DATABASE_URL')
                if not database_url:
                    raise PersistenceError("DATABASE_URL environment variable not found")
                try:
                    _connection_pool = psycopg2.pool.ThreadedConnectionPool(
                        minconn=2,
                        maxconn=20,
                        dsn=database_url,
                        cursor_factory=RealDictCursor,
                        connect_timeout=5,
                        keepalives_idle=600,
                        keepalives_interval=30,
                        keepalives_count=3,
                        sslmode='prefer'
                    )
                    logger.info("✅ Database connection pool created (2-20 connections)")
                except psycopg2.Error as e:
                    logger.error(f"❌ Failed to create connection pool: {e}")
                    raise PersistenceError(f"Failed to create connection pool: {e}") from e
    return _connection_pool

def close_connection_pool() -> None:
    global _connection_pool
    with _pool_lock:
        if _connection_pool is not None:
            _connection_pool.closeall()
            _connection_pool = None
            logger.info("🔄 Database connection pool closed")

def get_connection():
    conn = get_connection_pool().getconn()
    conn.autocommit = True
    return conn

def return_connection(conn, is_broken: bool = False) -> None:
    """Return a connection to the pool, closing it when broken"""
    try:
        get_connection_pool().putconn(conn, close=is_broken)
    except psycopg2.Error as e:
        logger.warning(f"⚠️ Could not return connection to pool: {e}")
        conn.close()

async def execute_query(query: str, params: Optional[tuple] = None) -> List[Dict]:
    """Execute a SELECT query and return rows, retrying connection-level failures"""

    def _execute() -> List[Dict]:
        max_retries = 3
        last_error: Optional[Exception] = None
        for attempt in range(max_retries):
            conn = None
            broken = False
            try:
                conn = get_connection()
                with conn.cursor() as cursor:
                    cursor.execute(query, params)
                    results = cursor.fetchall()
                    return [dict(row) for row in results] if results else []
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                broken = True
                last_error = e
                if attempt < max_retries - 1:
                    logger.warning(f"🔄 Database connection retry {attempt + 1}/{max_retries}: {e}")
                    time.sleep(0.5 + (attempt * 0.5))
                    continue
                logger.error(f"❌ All database connection attempts failed after {max_retries} retries: {e}")
            except psycopg2.Error as e:
                logger.error(f"❌ Database query error: {e}")
                raise PersistenceError(f"Database query failed: {e}") from e
            finally:
                if conn is not None:
                    return_connection(conn, is_broken=broken)
        raise PersistenceError(f"Database unavailable: {last_error}") from last_error

    return await asyncio.to_thread(_execute)

async def execute_update(query: str, params: Optional[tuple] = None) -> int:
    """Execute an UPDATE/INSERT/DELETE and return affected rows (no retries to prevent duplicates)"""

    def _execute() -> int:
        conn = None
        broken = False
        try:
            conn = get_connection()
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                return cursor.rowcount
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            broken = True
            logger.error(f"❌ Database update connection failed: {e}")
            raise PersistenceError(f"Database update failed: {e}") from e
        except psycopg2.Error as e:
            logger.error(f"❌ Database update operation failed: {e}")
            raise PersistenceError(f"Database update failed: {e}") from e
        finally:
            if conn is not None:
                return_connection(conn, is_broken=broken)

    return await asyncio.to_thread(_execute)

async def execute_returning(query: str, params: Optional[tuple] = None) -> Optional[Dict]:
    """Execute a write with a RETURNING clause and return the first row (no retries)"""

    def _execute() -> Optional[Dict]:
        conn = None
        broken = False
        try:
            conn = get_connection()
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                row = cursor.fetchone()
                return dict(row) if row else None
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            broken = True
            logger.error(f"❌ Database write connection failed: {e}")
            raise PersistenceError(f"Database write failed: {e}") from e
        except psycopg2.Error as e:
            logger.error(f"❌ Database write operation failed: {e}")
            raise PersistenceError(f"Database write failed: {e}") from e
        finally:
            if conn is not None:
                return_connection(conn, is_broken=broken)

    return await asyncio.to_thread(_execute)

async def init_database(dsn: Optional[str] = None) -> None:
    """Initialize database tables if they don't exist; dsn overrides DATABASE_URL for the pool"""

    def _init() -> None:
        get_connection_pool(dsn)
        conn = get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS domains (
                        id VARCHAR(32) PRIMARY KEY,
                        name VARCHAR(253) UNIQUE NOT NULL,
                        dns_management VARCHAR(20) NOT NULL DEFAULT 'provider',
                        zone_id VARCHAR(64),
                        zone_status VARCHAR(50),
                        nameservers JSONB NOT NULL DEFAULT '[]'::jsonb,
                        target_cname VARCHAR(253),
                        is_active BOOLEAN NOT NULL DEFAULT TRUE,
                        verification_status VARCHAR(50),
                        deployment_status VARCHAR(20) NOT NULL DEFAULT 'not_deployed'
                            CHECK (deployment_status IN ('not_deployed', 'pending', 'deploying', 'deployed', 'failed')),
                        deployment_url TEXT,
                        hosting_project_id VARCHAR(100),
                        last_deployed_at TIMESTAMPTZ,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                    )
                """)
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS domain_deployments (
                        id VARCHAR(32) PRIMARY KEY,
                        domain_id VARCHAR(32) NOT NULL,
                        domain_name VARCHAR(253) NOT NULL,
                        deployment_handle VARCHAR(100),
                        hosting_project_id VARCHAR(100),
                        deployment_url TEXT,
                        status VARCHAR(20) NOT NULL DEFAULT 'pending'
                            CHECK (status IN ('pending', 'deploying', 'deployed', 'failed')),
                        logs JSONB NOT NULL DEFAULT '[]'::jsonb,
                        started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                        completed_at TIMESTAMPTZ
                    )
                """)
                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_domain_deployments_domain
                    ON domain_deployments (domain_id, started_at DESC)
                """)
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS landing_pages (
                        id VARCHAR(32) PRIMARY KEY,
                        domain_id VARCHAR(32) NOT NULL,
                        subdomain VARCHAR(63) NOT NULL,
                        worker_script_name VARCHAR(255),
                        desktop_screenshot_url TEXT,
                        mobile_screenshot_url TEXT,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                    )
                """)
                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_landing_pages_domain ON landing_pages (domain_id)
                """)
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS deployment_jobs (
                        deployment_id VARCHAR(32) PRIMARY KEY,
                        domain_id VARCHAR(32) NOT NULL,
                        status VARCHAR(20) NOT NULL DEFAULT 'queued'
                            CHECK (status IN ('queued', 'running', 'completed', 'failed')),
                        attempts INTEGER NOT NULL DEFAULT 0,
                        last_error TEXT,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                    )
                """)
                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_deployment_jobs_status ON deployment_jobs (status, created_at)
                """)
            logger.info("✅ Database tables initialized")
        except psycopg2.Error as e:
            logger.error(f"❌ Database initialization failed: {e}")
            raise PersistenceError(f"Database initialization failed: {e}") from e
        finally:
            return_connection(conn)

    await asyncio.to_thread(_init)

def _build_set_clause(fields: Dict[str, Any], allowed: Iterable[str]) -> tuple:
    allowed = set(allowed)
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown column(s): {', '.join(sorted(unknown))}")
    assignments = []
    values: List[Any] = []
    for column, value in fields.items():
        assignments.append(f"{column} = %s")
        values.append(Json(value) if column in JSON_COLUMNS else value)
    return ', '.join(assignments), values

# Domains

async def get_domain(domain_id: str) -> Optional[Dict]:
    rows = await execute_query("SELECT * FROM domains WHERE id = %s", (domain_id,))
    return rows[0] if rows else None

async def get_domain_by_name(name: str) -> Optional[Dict]:
    rows = await execute_query("SELECT * FROM domains WHERE name = %s", (name.lower(),))
    return rows[0] if rows else None

async def create_domain(name: str, dns_management: str = 'provider', zone_id: Optional[str] = None,
                        zone_status: Optional[str] = None, nameservers: Optional[List[str]] = None,
                        target_cname: Optional[str] = None,
                        verification_status: Optional[str] = None) -> Dict:
    row = await execute_returning(
        """
        INSERT INTO domains (id, name, dns_management, zone_id, zone_status, nameservers,
                             target_cname, verification_status)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING *
        """,
        (new_id(), name.lower(), dns_management, zone_id, zone_status, Json(nameservers or []),
         target_cname, verification_status)
    )
    if row is None:
        raise PersistenceError(f"Domain insert returned no row for {name}")
    logger.info(f"✅ Domain record created: {name}")
    return row

async def update_domain(domain_id: str, **fields) -> bool:
    if not fields:
        return False
    clause, values = _build_set_clause(fields, DOMAIN_COLUMNS)
    affected = await execute_update(
        f"UPDATE domains SET {clause}, updated_at = NOW() WHERE id = %s",
        tuple(values) + (domain_id,)
    )
    return affected > 0

async def claim_domain_for_deployment(domain_id: str) -> bool:
    """Atomically move a domain to `deploying` unless a deployment is already in progress"""
    affected = await execute_update(
        """
        UPDATE domains SET deployment_status = 'deploying', updated_at = NOW()
        WHERE id = %s AND deployment_status <> 'deploying'
        """,
        (domain_id,)
    )
    return affected == 1

async def delete_domain(domain_id: str) -> bool:
    affected = await execute_update("DELETE FROM domains WHERE id = %s", (domain_id,))
    return affected > 0

# Landing pages

async def get_landing_page(landing_page_id: str) -> Optional[Dict]:
    rows = await execute_query("SELECT * FROM landing_pages WHERE id = %s", (landing_page_id,))
    return rows[0] if rows else None

async def count_landing_pages(domain_id: str, exclude_id: Optional[str] = None) -> int:
    if exclude_id:
        rows = await execute_query(
            "SELECT COUNT(*) AS count FROM landing_pages WHERE domain_id = %s AND id <> %s",
            (domain_id, exclude_id)
        )
    else:
        rows = await execute_query(
            "SELECT COUNT(*) AS count FROM landing_pages WHERE domain_id = %s", (domain_id,)
        )
    return int(rows[0]['count']) if rows else 0

async def delete_landing_page(landing_page_id: str) -> bool:
    affected = await execute_update("DELETE FROM landing_pages WHERE id = %s", (landing_page_id,))
    return affected > 0

# Deployments

async def create_deployment(domain: Dict, status: str = 'pending') -> Dict:
    row = await execute_returning(
        """
        INSERT INTO domain_deployments (id, domain_id, domain_name, status, logs)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING *
        """,
        (new_id(), domain['id'], domain['name'], status, Json([]))
    )
    if row is None:
        raise PersistenceError(f"Deployment insert returned no row for {domain['name']}")
    return row

async def get_deployment(deployment_id: str) -> Optional[Dict]:
    rows = await execute_query("SELECT * FROM domain_deployments WHERE id = %s", (deployment_id,))
    return rows[0] if rows else None

async def update_deployment(deployment_id: str, **fields) -> bool:
    if not fields:
        return False
    clause, values = _build_set_clause(fields, DEPLOYMENT_COLUMNS)
    affected = await execute_update(
        f"UPDATE domain_deployments SET {clause} WHERE id = %s",
        tuple(values) + (deployment_id,)
    )
    return affected > 0

async def append_log(deployment_id: str, message: str, level: str = 'info') -> bool:
    """Append one entry to a deployment's log list"""
    entry = make_log_entry(message, level)
    affected = await execute_update(
        "UPDATE domain_deployments SET logs = logs || %s::jsonb WHERE id = %s",
        (json.dumps([entry]), deployment_id)
    )
    return affected > 0

async def get_latest_deployment(domain_id: str) -> Optional[Dict]:
    rows = await execute_query(
        "SELECT * FROM domain_deployments WHERE domain_id = %s ORDER BY started_at DESC LIMIT 1",
        (domain_id,)
    )
    return rows[0] if rows else None

async def list_deployments(domain_id: str, limit: int = 50) -> List[Dict]:
    return await execute_query(
        "SELECT * FROM domain_deployments WHERE domain_id = %s ORDER BY started_at DESC LIMIT %s",
        (domain_id, limit)
    )

# Deployment jobs

async def enqueue_job(deployment_id: str, domain_id: str) -> bool:
    affected = await execute_update(
        """
        INSERT INTO deployment_jobs (deployment_id, domain_id, status)
        VALUES (%s, %s, 'queued')
        ON CONFLICT (deployment_id) DO NOTHING
        """,
        (deployment_id, domain_id)
    )
    return affected == 1

async def claim_job(deployment_id: str) -> bool:
    """Atomically move a job from queued to running"""
    affected = await execute_update(
        """
        UPDATE deployment_jobs SET status = 'running', attempts = attempts + 1, updated_at = NOW()
        WHERE deployment_id = %s AND status = 'queued'
        """,
        (deployment_id,)
    )
    return affected == 1

async def finish_job(deployment_id: str, status: str, error: Optional[str] = None) -> bool:
    affected = await execute_update(
        """
        UPDATE deployment_jobs SET status = %s, last_error = %s, updated_at = NOW()
        WHERE deployment_id = %s
        """,
        (status, error, deployment_id)
    )
    return affected > 0

async def requeue_stale_jobs() -> int:
    """Put jobs left running by a dead process back in the queue"""
    return await execute_update(
        "UPDATE deployment_jobs SET status = 'queued', updated_at = NOW() WHERE status = 'running'"
    )

async def list_queued_jobs(limit: int = 50) -> List[Dict]:
    return await execute_query(
        "SELECT * FROM deployment_jobs WHERE status = 'queued' ORDER BY created_at LIMIT %s",
        (limit,)
    )

class DomainRecordStore:
    """Async record store used by the orchestrators, backed by the module-level SQL helpers"""

    async def get_domain(self, domain_id: str) -> Optional[Dict]:
        return await get_domain(domain_id)

    async def get_domain_by_name(self, name: str) -> Optional[Dict]:
        return await get_domain_by_name(name)

    async def create_domain(self, name: str, **fields) -> Dict:
        return await create_domain(name, **fields)

    async def update_domain(self, domain_id: str, **fields) -> bool:
        return await update_domain(domain_id, **fields)

    async def claim_domain_for_deployment(self, domain_id: str) -> bool:
        return await claim_domain_for_deployment(domain_id)

    async def delete_domain(self, domain_id: str) -> bool:
        return await delete_domain(domain_id)

    async def get_landing_page(self, landing_page_id: str) -> Optional[Dict]:
        return await get_landing_page(landing_page_id)

    async def count_landing_pages(self, domain_id: str, exclude_id: Optional[str] = None) -> int:
        return await count_landing_pages(domain_id, exclude_id)

    async def delete_landing_page(self, landing_page_id: str) -> bool:
        return await delete_landing_page(landing_page_id)

    async def create_deployment(self, domain: Dict, status: str = 'pending') -> Dict:
        return await create_deployment(domain, status)

    async def get_deployment(self, deployment_id: str) -> Optional[Dict]:
        return await get_deployment(deployment_id)

    async def update_deployment(self, deployment_id: str, **fields) -> bool:
        return await update_deployment(deployment_id, **fields)

    async def append_log(self, deployment_id: str, message: str, level: str = 'info') -> bool:
        return await append_log(deployment_id, message, level)

    async def get_latest_deployment(self, domain_id: str) -> Optional[Dict]:
        return await get_latest_deployment(domain_id)

    async def list_deployments(self, domain_id: str, limit: int = 50) -> List[Dict]:
        return await list_deployments(domain_id, limit)

    async def enqueue_job(self, deployment_id: str, domain_id: str) -> bool:
        return await enqueue_job(deployment_id, domain_id)

    async def claim_job(self, deployment_id: str) -> bool:
        return await claim_job(deployment_id)

    async def finish_job(self, deployment_id: str, status: str, error: Optional[str] = None) -> bool:
        return await finish_job(deployment_id, status, error)

    async def requeue_stale_jobs(self) -> int:
        return await requeue_stale_jobs()

    async def list_queued_jobs(self, limit: int = 50) -> List[Dict]:
        return await list_queued_jobs(limit)
