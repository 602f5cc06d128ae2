"""Append-only audit trail helper."""

from sqlalchemy.ext.asyncio import AsyncSession

from deal_engine.db.models import AuditLog


def record_audit(
    session: AsyncSession,
    action: str,
    resource_type: str,
    resource_id: object,
    detail: dict | None = None,
    actor_id: str | None = None,
) -> AuditLog:
    """Add an AuditLog row to the session's current transaction.

    Monetary values in `detail` must already be strings so they survive
    JSON serialization exactly.
    """
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id),
        detail=detail or {},
    )
    session.add(entry)
    return entry
