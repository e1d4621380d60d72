"""
Schema query gateway

Every organization owns a PostgreSQL schema named org_<slug>. Queries for a
tenant run on a dedicated engine whose connections pin search_path to that
schema (falling back to public), so unqualified table names always resolve
to the tenant's own tables.
"""
import logging
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql.base import Executable

from ..config import config
from ..db.engine import get_engine
from ..exceptions import InvalidTenantError
from ..services.metrics import record_tenant_query
from .tables import tenant_metadata

logger = logging.getLogger(__name__)

SCHEMA_PREFIX = "org_"
SLUG_PATTERN = re.compile(r"^[a-z0-9_-]+$")

# Total checked-out connections across tenant pools that counts as pressure
POOL_PRESSURE_THRESHOLD = 10

_engines: Dict[str, Engine] = {}
_engines_lock = threading.Lock()

Statement = Union[str, Executable]


@dataclass
class QueryResult:
    """Outcome of a non-raising tenant query"""
    data: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def get_schema_name(org_slug: str) -> str:
    """
    Map an organization slug to its schema name

    Args:
        org_slug: Organization slug, e.g. "Acme-Media"

    Returns:
        Schema name, e.g. "org_acme_media"

    Raises:
        InvalidTenantError: slug is empty or contains characters outside [a-z0-9_-]
    """
    slug = (org_slug or "").strip().lower()
    if not slug or not SLUG_PATTERN.match(slug):
        raise InvalidTenantError(f"Invalid organization slug: {org_slug!r}")
    return f"{SCHEMA_PREFIX}{slug.replace('-', '_')}"


def _create_schema_engine(schema_name: str) -> Engine:
    return create_engine(
        config.DATABASE_URL,
        pool_size=config.SCHEMA_POOL_SIZE,
        max_overflow=0,
        pool_pre_ping=True,
        pool_recycle=config.DB_POOL_RECYCLE,
        pool_timeout=2,
        echo=config.LOG_QUERIES,
        connect_args={
            "options": f"-c search_path={schema_name},public",
            "connect_timeout": 2,
            "application_name": f"podcastflow:{schema_name}",
        },
    )


def get_schema_engine(org_slug: str) -> Engine:
    """Get (creating on first use) the engine bound to an organization's schema"""
    schema_name = get_schema_name(org_slug)
    engine = _engines.get(schema_name)
    if engine is not None:
        return engine

    with _engines_lock:
        engine = _engines.get(schema_name)
        if engine is None:
            engine = _create_schema_engine(schema_name)
            _engines[schema_name] = engine
            logger.info(f"Created connection pool for schema {schema_name} (size={config.SCHEMA_POOL_SIZE})")
        return engine


def drop_schema_engine(org_slug: str) -> None:
    """Dispose a schema's engine so the next query builds a fresh pool"""
    schema_name = get_schema_name(org_slug)
    with _engines_lock:
        engine = _engines.pop(schema_name, None)
    if engine is not None:
        engine.dispose()
        logger.warning(f"Dropped connection pool for schema {schema_name}")


def _as_executable(statement: Statement) -> Executable:
    return text(statement) if isinstance(statement, str) else statement


def _rows(result) -> List[Dict[str, Any]]:
    if not result.returns_rows:
        return []
    return [dict(row) for row in result.mappings()]


def query_schema(
    org_slug: str,
    statement: Statement,
    params: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """
    Run a statement inside an organization's schema

    Args:
        org_slug: Organization slug
        statement: SQL string with named :params, or a SQLAlchemy executable
        params: Bound parameters

    Returns:
        Result rows as dicts (empty for statements without a result set)

    Raises:
        InvalidTenantError: slug cannot be mapped to a schema
        sqlalchemy.exc.SQLAlchemyError: the statement failed
    """
    schema_name = get_schema_name(org_slug)
    engine = get_schema_engine(org_slug)

    start = time.perf_counter()
    try:
        with engine.begin() as conn:
            rows = _rows(conn.execute(_as_executable(statement), params or {}))
    except Exception as e:
        record_tenant_query(time.perf_counter() - start, success=False)
        logger.error(f"Query failed in schema {schema_name}: {e}")
        raise

    duration = time.perf_counter() - start
    record_tenant_query(duration, success=True)

    duration_ms = duration * 1000
    if duration_ms > config.SLOW_QUERY_THRESHOLD_MS:
        logger.warning(f"Slow query in schema {schema_name}: {duration_ms:.0f}ms")
    elif config.LOG_QUERIES:
        logger.debug(f"Query in schema {schema_name} returned {len(rows)} rows in {duration_ms:.1f}ms")

    return rows


def categorize_error(error: Exception) -> str:
    """Classify a query failure for logging"""
    message = str(error).lower()
    if "does not exist" in message:
        return "missing_relation"
    if "permission denied" in message:
        return "permission_denied"
    if "timeout" in message or "timed out" in message:
        return "timeout"
    if "connection" in message:
        return "connection"
    return "query_error"


def safe_query_schema(
    org_slug: str,
    statement: Statement,
    params: Optional[Dict[str, Any]] = None,
) -> QueryResult:
    """
    Run a statement inside an organization's schema without raising

    Returns:
        QueryResult with rows on success, or an empty data list and the error
    """
    try:
        return QueryResult(data=query_schema(org_slug, statement, params))
    except InvalidTenantError as e:
        logger.error(f"Rejected query for invalid tenant: {e}")
        return QueryResult(error=e)
    except Exception as e:
        category = categorize_error(e)
        logger.error(f"Tenant query failed for {org_slug} ({category}): {e}")

        if "connection terminated" in str(e).lower():
            drop_schema_engine(org_slug)

        return QueryResult(error=e)


@contextmanager
def schema_session(org_slug: str) -> Iterator[Connection]:
    """
    Yield a connection inside a transaction on the organization's schema
    Commits on success, rolls back if the block raises
    """
    engine = get_schema_engine(org_slug)
    with engine.begin() as conn:
        yield conn


def list_active_org_slugs() -> List[str]:
    with get_engine().connect() as conn:
        result = conn.execute(text("SELECT slug FROM organizations WHERE is_active = true ORDER BY slug"))
        return [row[0] for row in result]


def query_all_schemas(
    fn: Callable[[str], List[Dict[str, Any]]],
    org_slugs: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
    """
    Run fn(org_slug) for every active organization and merge the rows

    Each row is tagged with _org_slug. A tenant whose query fails is logged
    and skipped.
    """
    slugs = org_slugs if org_slugs is not None else list_active_org_slugs()
    merged: List[Dict[str, Any]] = []

    for slug in slugs:
        try:
            rows = fn(slug) or []
        except Exception as e:
            logger.error(f"Cross-tenant query failed for {slug}: {e}")
            continue
        merged.extend({**row, "_org_slug": slug} for row in rows)

    return merged


def ensure_schema_available(org_slug: str) -> str:
    """
    Check that no other organization maps to the same schema

    Slugs differing only by case or '-' versus '_' share a schema name, so a
    second one would read and write the first organization's tables.

    Returns:
        The schema name

    Raises:
        InvalidTenantError: invalid slug, or another organization owns the schema
    """
    schema_name = get_schema_name(org_slug)

    with get_engine().connect() as conn:
        existing = [row[0] for row in conn.execute(text("SELECT slug FROM organizations"))]

    for slug in existing:
        if slug == org_slug:
            continue
        try:
            owner_schema = get_schema_name(slug)
        except InvalidTenantError:
            continue
        if owner_schema == schema_name:
            raise InvalidTenantError(
                f"Organization slug {org_slug!r} collides with {slug!r} (both map to {schema_name})"
            )

    return schema_name


def create_organization_schema(org_slug: str) -> str:
    """
    Create an organization's schema and its tenant tables

    Returns:
        The schema name
    """
    schema_name = get_schema_name(org_slug)

    with get_engine().begin() as conn:
        conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema_name}"'))
        tenant_metadata.create_all(
            conn.execution_options(schema_translate_map={None: schema_name})
        )

    logger.info(f"Provisioned schema {schema_name}")
    return schema_name


def schema_exists(org_slug: str) -> bool:
    """Check information_schema for the organization's schema"""
    try:
        schema_name = get_schema_name(org_slug)
        with get_engine().connect() as conn:
            found = conn.execute(
                text("SELECT 1 FROM information_schema.schemata WHERE schema_name = :schema"),
                {"schema": schema_name},
            ).first()
        return found is not None
    except Exception as e:
        logger.error(f"Schema existence check failed for {org_slug}: {e}")
        return False


def table_exists(org_slug: str, table_name: str) -> bool:
    try:
        schema_name = get_schema_name(org_slug)
        with get_engine().connect() as conn:
            found = conn.execute(
                text(
                    "SELECT 1 FROM information_schema.tables "
                    "WHERE table_schema = :schema AND table_name = :table"
                ),
                {"schema": schema_name, "table": table_name},
            ).first()
        return found is not None
    except Exception as e:
        logger.error(f"Table existence check failed for {org_slug}.{table_name}: {e}")
        return False


def schema_table_count(org_slug: str) -> int:
    try:
        schema_name = get_schema_name(org_slug)
        with get_engine().connect() as conn:
            count = conn.execute(
                text("SELECT COUNT(*) FROM information_schema.tables WHERE table_schema = :schema"),
                {"schema": schema_name},
            ).scalar()
        return int(count or 0)
    except Exception as e:
        logger.error(f"Table count failed for {org_slug}: {e}")
        return 0


def get_pool_stats() -> Dict[str, Dict[str, Any]]:
    """
    Get connection pool statistics per tenant schema

    Returns:
        Mapping of schema name to pool size, checked in/out and overflow
    """
    with _engines_lock:
        engines = dict(_engines)

    stats = {}
    for schema_name, engine in engines.items():
        pool = engine.pool
        try:
            stats[schema_name] = {
                "pool_size": pool.size(),
                "checked_out": pool.checkedout(),
                "checked_in": pool.checkedin(),
                "overflow": pool.overflow(),
            }
        except Exception as e:
            stats[schema_name] = {"error": str(e)}
    return stats


def check_pools() -> Dict[str, Any]:
    """
    Health check across tenant pools

    Flags total checked-out connections above POOL_PRESSURE_THRESHOLD and any
    pool that cannot run SELECT 1.
    """
    stats = get_pool_stats()
    issues: List[str] = []

    total_checked_out = sum(s.get("checked_out", 0) for s in stats.values())
    if total_checked_out > POOL_PRESSURE_THRESHOLD:
        issues.append(f"High connection usage: {total_checked_out} checked out")

    with _engines_lock:
        engines = dict(_engines)

    for schema_name, engine in engines.items():
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            issues.append(f"Pool for {schema_name} failed health check: {e}")

    return {
        "healthy": not issues,
        "issues": issues,
        "pool_count": len(stats),
        "pools": stats,
    }


def close_schema_pools() -> None:
    """Dispose every tenant engine (application shutdown)"""
    with _engines_lock:
        engines = list(_engines.items())
        _engines.clear()

    for schema_name, engine in engines:
        try:
            engine.dispose()
        except Exception as e:
            logger.warning(f"Error closing pool for {schema_name}: {e}")

    if engines:
        logger.info(f"Closed {len(engines)} tenant connection pools")
