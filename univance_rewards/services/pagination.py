from typing import Any
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session


def paginate(db: Session, stmt: Select, *, page: int, limit: int, order_by: Any) -> tuple[list, int]:
    """Run ``stmt`` for one page and count the full result set."""
    total = db.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(*order_by if isinstance(order_by, (list, tuple)) else [order_by])
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return list(rows), total


def sort_column(columns: dict[str, Any], sort: str, order: str):
    column = columns.get(sort)
    if column is None:
        return None
    return column.asc() if order == "asc" else column.desc()
