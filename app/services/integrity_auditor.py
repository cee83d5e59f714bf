"""
Redemption Integrity Auditor

Scans for access codes that are marked used but have no enrollment for the
redeeming user in the code's course. Such a row means the store did not honor
the redemption transaction; every hit is logged at CRITICAL.
"""
import logging
import time
from typing import Any, Dict, Optional

from sqlalchemy import and_, exists, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.database import AsyncSessionLocal
from app.models.access_code import AccessCode
from app.models.enrollment import Enrollment

logger = logging.getLogger(__name__)


class IntegrityAuditor:
    """Check the used-code / enrollment pairing across the whole table"""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory or AsyncSessionLocal

    async def audit(self) -> Dict[str, Any]:
        """
        Run the used-code audit.

        Returns:
            Summary dict with:
                - codes_checked: Number of used codes inspected
                - violations: Number of used codes without an enrollment
                - violation_ids: Ids of the offending codes (as strings)
                - duration_ms: Audit duration
        """
        start_time = time.time()

        has_enrollment = exists().where(
            and_(
                Enrollment.user_id == AccessCode.used_by,
                Enrollment.course_id == AccessCode.course_id,
            )
        )

        async with self.session_factory() as session:
            codes_checked = await session.scalar(
                select(func.count()).select_from(AccessCode).where(AccessCode.is_used.is_(True))
            )
            result = await session.execute(
                select(AccessCode.id, AccessCode.code, AccessCode.used_by, AccessCode.course_id)
                .where(AccessCode.is_used.is_(True), ~has_enrollment)
            )
            orphans = result.all()

        for row in orphans:
            logger.critical(
                f"INVARIANT VIOLATION: access code {row.code} (id={row.id}) used by {row.used_by} "
                f"has no enrollment in course {row.course_id}"
            )

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Integrity audit complete: {codes_checked or 0} used codes checked, "
            f"{len(orphans)} violations, {duration_ms:.2f}ms"
        )

        return {
            "codes_checked": codes_checked or 0,
            "violations": len(orphans),
            "violation_ids": [str(row.id) for row in orphans],
            "duration_ms": round(duration_ms, 2),
        }


# Global auditor instance
_auditor: Optional[IntegrityAuditor] = None


def get_integrity_auditor() -> IntegrityAuditor:
    """Get or create global IntegrityAuditor instance."""
    global _auditor
    if _auditor is None:
        _auditor = IntegrityAuditor()
    return _auditor
