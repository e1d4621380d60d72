"""
Health Check Service
Database, tenant pool and email provider checks with an aggregated status
"""
import logging
import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import text

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health status levels"""
    OK = "ok"
    DEGRADED = "degraded"
    DOWN = "down"


class ComponentHealth:
    """Health information for a single component"""

    def __init__(
        self,
        name: str,
        status: HealthStatus,
        message: str = "",
        details: Optional[Dict[str, Any]] = None,
        response_time_ms: Optional[float] = None,
    ):
        self.name = name
        self.status = status
        self.message = message
        self.details = details or {}
        self.response_time_ms = response_time_ms

    def to_dict(self) -> Dict[str, Any]:
        result = {"status": self.status.value, "message": self.message}
        if self.response_time_ms is not None:
            result["response_time_ms"] = round(self.response_time_ms, 2)
        if self.details:
            result["details"] = self.details
        return result


def check_database() -> ComponentHealth:
    from ..db.engine import get_engine

    start = time.perf_counter()
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return ComponentHealth(
            name="database",
            status=HealthStatus.OK,
            message="Database is accessible",
            response_time_ms=(time.perf_counter() - start) * 1000,
        )
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return ComponentHealth(
            name="database",
            status=HealthStatus.DOWN,
            message="Database is not accessible",
            response_time_ms=(time.perf_counter() - start) * 1000,
            details={"error_type": type(e).__name__},
        )


def check_tenant_pools() -> ComponentHealth:
    """Open tenant pools; pressure or a failing pool degrades, it never takes the service down"""
    from ..tenancy.schema import check_pools

    report = check_pools()
    if report["healthy"]:
        return ComponentHealth(
            name="tenant_pools",
            status=HealthStatus.OK,
            message=f"{report['pool_count']} tenant pools open",
        )
    return ComponentHealth(
        name="tenant_pools",
        status=HealthStatus.DEGRADED,
        message="Tenant pool issues detected",
        details={"issues": report["issues"]},
    )


def check_email_provider() -> ComponentHealth:
    from .email_provider import get_email_provider

    try:
        provider = get_email_provider()
        available = provider.is_available()
    except Exception as e:
        logger.error(f"Email provider health check failed: {e}")
        return ComponentHealth(
            name="email",
            status=HealthStatus.DEGRADED,
            message="Email provider could not be created",
            details={"error_type": type(e).__name__},
        )

    return ComponentHealth(
        name="email",
        status=HealthStatus.OK if available else HealthStatus.DEGRADED,
        message=f"Provider '{provider.name}' {'ready' if available else 'not configured'}",
    )


DEFAULT_CHECKS: List[Callable[[], ComponentHealth]] = [
    check_database,
    check_tenant_pools,
    check_email_provider,
]


def check_all(checks: Optional[List[Callable[[], ComponentHealth]]] = None) -> Dict[str, Any]:
    """
    Run every component check

    Returns:
        Dict with overall status (ok only if every component is ok, down if any
        is down) and per-component details
    """
    start = time.perf_counter()
    results = []
    for check in checks or DEFAULT_CHECKS:
        try:
            results.append(check())
        except Exception as e:
            logger.error(f"Health check {getattr(check, '__name__', check)} raised: {e}")
            results.append(ComponentHealth(
                name=getattr(check, "__name__", "unknown").replace("check_", ""),
                status=HealthStatus.DOWN,
                message="Health check failed with exception",
            ))

    statuses = [r.status for r in results]
    if all(s == HealthStatus.OK for s in statuses):
        overall = HealthStatus.OK
    elif any(s == HealthStatus.DOWN for s in statuses):
        overall = HealthStatus.DOWN
    else:
        overall = HealthStatus.DEGRADED

    return {
        "status": overall.value,
        "timestamp": datetime.utcnow().isoformat(),
        "response_time_ms": round((time.perf_counter() - start) * 1000, 2),
        "components": {r.name: r.to_dict() for r in results},
    }
