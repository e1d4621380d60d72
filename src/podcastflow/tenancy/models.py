"""
Repositories over the tenant tables

Each repository takes the organization slug on every call and routes the
statement through the schema gateway. Reads never raise (a failed read is
logged and yields an empty result); writes raise.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Table, delete, func, insert, select, update

from ..exceptions import ShowHasOrdersError
from . import tables
from .schema import query_schema, safe_query_schema, schema_session

logger = logging.getLogger(__name__)


class TenantTable:
    """
    CRUD access to one tenant table

    Filters are dicts of column -> value; a value of {"in": [...]} matches any
    of the listed values. order_by is a dict of column -> "asc" | "desc".
    """

    def __init__(self, table: Table, id_prefix: str):
        self.table = table
        self.id_prefix = id_prefix

    def _column(self, name: str):
        if name not in self.table.c:
            raise ValueError(f"Unknown column '{name}' for table {self.table.name}")
        return self.table.c[name]

    def _conditions(self, where: Optional[Dict[str, Any]]) -> list:
        conditions = []
        for name, value in (where or {}).items():
            column = self._column(name)
            if isinstance(value, dict):
                if "in" not in value:
                    raise ValueError(f"Unsupported filter for '{name}': {sorted(value)}")
                conditions.append(column.in_(list(value["in"])))
            elif value is None:
                conditions.append(column.is_(None))
            else:
                conditions.append(column == value)
        return conditions

    def _check_columns(self, data: Dict[str, Any]) -> None:
        for name in data:
            self._column(name)

    def new_id(self) -> str:
        return f"{self.id_prefix}_{uuid.uuid4().hex[:16]}"

    def find_many(
        self,
        org_slug: str,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[Dict[str, str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        stmt = select(self.table).where(*self._conditions(where))
        for name, direction in (order_by or {}).items():
            column = self._column(name)
            stmt = stmt.order_by(column.desc() if str(direction).lower() == "desc" else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)

        return safe_query_schema(org_slug, stmt).data

    def find_unique(self, org_slug: str, record_id: str) -> Optional[Dict[str, Any]]:
        stmt = select(self.table).where(self.table.c.id == record_id)
        rows = safe_query_schema(org_slug, stmt).data
        return rows[0] if rows else None

    def count(self, org_slug: str, where: Optional[Dict[str, Any]] = None) -> int:
        stmt = select(func.count().label("count")).select_from(self.table).where(*self._conditions(where))
        rows = safe_query_schema(org_slug, stmt).data
        return int(rows[0]["count"]) if rows else 0

    def create(self, org_slug: str, data: Dict[str, Any]) -> Dict[str, Any]:
        values = dict(data)
        self._check_columns(values)
        values.setdefault("id", self.new_id())

        stmt = insert(self.table).values(**values).returning(*self.table.c)
        rows = query_schema(org_slug, stmt)
        logger.info(f"Created {self.table.name} record {values['id']}")
        return rows[0]

    def update(self, org_slug: str, record_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        values = {k: v for k, v in data.items() if k != "id"}
        self._check_columns(values)
        if "updated_at" in self.table.c:
            values["updated_at"] = datetime.utcnow()

        stmt = (
            update(self.table)
            .where(self.table.c.id == record_id)
            .values(**values)
            .returning(*self.table.c)
        )
        rows = query_schema(org_slug, stmt)
        return rows[0] if rows else None

    def delete(self, org_slug: str, record_id: str) -> bool:
        stmt = delete(self.table).where(self.table.c.id == record_id).returning(self.table.c.id)
        return bool(query_schema(org_slug, stmt))


class ShowTable(TenantTable):
    """Shows cannot be deleted while orders reference them"""

    def delete(self, org_slug: str, record_id: str) -> bool:
        orders_table = tables.orders
        with schema_session(org_slug) as conn:
            order_count = conn.execute(
                select(func.count()).select_from(orders_table).where(orders_table.c.show_id == record_id)
            ).scalar()
            if order_count:
                raise ShowHasOrdersError(record_id, order_count)

            deleted = conn.execute(
                delete(self.table).where(self.table.c.id == record_id).returning(self.table.c.id)
            ).first()

        if deleted:
            logger.info(f"Deleted show {record_id}")
        return deleted is not None


campaigns = TenantTable(tables.campaigns, "camp")
shows = ShowTable(tables.shows, "show")
episodes = TenantTable(tables.episodes, "ep")
advertisers = TenantTable(tables.advertisers, "adv")
agencies = TenantTable(tables.agencies, "agency")
orders = TenantTable(tables.orders, "order")
