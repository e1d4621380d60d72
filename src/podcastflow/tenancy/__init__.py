"""
Schema-per-tenant data access
"""
from .schema import (
    QueryResult,
    get_schema_name,
    query_schema,
    safe_query_schema,
    schema_session,
    query_all_schemas,
    create_organization_schema,
    close_schema_pools,
)

__all__ = [
    "QueryResult",
    "get_schema_name",
    "query_schema",
    "safe_query_schema",
    "schema_session",
    "query_all_schemas",
    "create_organization_schema",
    "close_schema_pools",
]
