"""
Audit Service - administrative audit trail.

Entries are written inside the caller's transaction so an audited change
and its audit row commit or roll back together.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.decorators import log_database_operation, safe_database_query
from core.middleware.correlation import get_correlation_id
from db.models import Audit

logger = logging.getLogger(__name__)


class AuditService:
    """Service for recording and reading administrative audit entries."""

    @staticmethod
    @log_database_operation("audit entry creation")
    async def record(
        db: AsyncSession,
        user_id: UUID,
        action: str,
        resource_type: str,
        resource_id: str,
        old_values: Optional[Dict[str, Any]] = None,
        changes_summary: Optional[str] = None,
    ) -> Audit:
        """Add an audit entry to the current transaction (no commit)."""
        audit = Audit(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            old_values=old_values,
            changes_summary=changes_summary,
            correlation_id=get_correlation_id() or None,
        )
        db.add(audit)
        await db.flush()

        logger.info(
            f"Audit log created: {action} on {resource_type} "
            f"(resource_id={resource_id}, user_id={user_id})"
        )
        return audit

    @staticmethod
    @safe_database_query("get_audit_entries", default_return=[])
    async def get_entries_for_resource(
        db: AsyncSession, resource_type: str, resource_id: str
    ) -> List[Audit]:
        """Audit entries of one resource, newest first."""
        result = await db.execute(
            select(Audit)
            .where(Audit.resource_type == resource_type, Audit.resource_id == resource_id)
            .order_by(desc(Audit.created_at), desc(Audit.id))
        )
        return list(result.scalars().all())
