from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.context import get_request_id
from app.core.logging import get_audit_logger
from app.models.audit_log import AuditLog


audit_logger = get_audit_logger()

# Never copied into audit rows, even encrypted.
SENSITIVE_COLUMNS = frozenset({"ssn", "hashed_password"})
SUMMARY_FIELDS = 3


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    return value


def model_snapshot(model: Any, *, exclude: Iterable[str] | None = None) -> dict[str, Any]:
    """Column values of a mapped row, minus secrets, ready for a JSON column."""
    if model is None:
        return {}
    skipped = SENSITIVE_COLUMNS.union(exclude or ())
    return {
        column.name: _jsonable(getattr(model, column.key, None))
        for column in model.__table__.columns
        if column.name not in skipped
    }


def diff_snapshots(old: dict[str, Any] | None, new: dict[str, Any] | None) -> dict[str, dict[str, Any]]:
    old, new = old or {}, new or {}
    return {
        key: {"from": old.get(key), "to": new.get(key)}
        for key in sorted(old.keys() | new.keys())
        if old.get(key) != new.get(key)
    }


def _summary(action: str, changes: dict[str, Any]) -> str:
    if not changes:
        return action
    fields = list(changes)
    shown = ", ".join(fields[:SUMMARY_FIELDS])
    more = f" (+{len(fields) - SUMMARY_FIELDS} more)" if len(fields) > SUMMARY_FIELDS else ""
    return f"{action}: {shown}{more}"


def record_audit_log(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    actor_id=None,
    action: str,
    resource_type: str,
    resource_id: str,
    old_value: Any | None = None,
    new_value: Any | None = None,
) -> AuditLog:
    """Stage an audit row on the session; the caller's commit persists it.

    ``actor_id`` is ``None`` for changes made by the borrower through the
    public application link or by provider webhooks.
    """
    old = _jsonable(old_value) if old_value is not None else None
    new = _jsonable(new_value) if new_value is not None else None
    changes = diff_snapshots(old, new)
    request_id = get_request_id()
    entry = AuditLog(
        org_id=ctx.org_id,
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id),
        old_value=old,
        new_value=new,
        changes=changes or None,
        summary=_summary(action, changes),
        request_id=None if request_id == "-" else request_id,
    )
    db.add(entry)
    audit_logger.info(
        entry.summary,
        extra={
            "action": action,
            "resource": f"{resource_type}/{resource_id}",
            "actor": str(actor_id) if actor_id else "borrower",
        },
    )
    return entry
