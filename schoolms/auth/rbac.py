from uuid import UUID

from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.auth.dependencies import get_current_user
from schoolms.auth.schemas import CurrentUser
from schoolms.core.enums import UserRole
from schoolms.core.exceptions import PermissionDeniedError
from schoolms.core.models import Student, StudentGuardian

ADMIN = UserRole.ADMIN.value
HEADTEACHER = UserRole.HEADTEACHER.value
DEPUTY_HEADTEACHER = UserRole.DEPUTY_HEADTEACHER.value
TEACHER = UserRole.TEACHER.value
STAFF = UserRole.STAFF.value
STUDENT = UserRole.STUDENT.value
GUARDIAN = UserRole.GUARDIAN.value

# Role groups used by the routers
FINANCE_ROLES = (ADMIN, STAFF)
AID_MANAGER_ROLES = (ADMIN, HEADTEACHER)
CLEARANCE_APPROVER_ROLES = (ADMIN, TEACHER)
CLEARANCE_VIEWER_ROLES = (ADMIN, TEACHER, HEADTEACHER, DEPUTY_HEADTEACHER)
SCHOOL_STAFF_ROLES = (ADMIN, HEADTEACHER, DEPUTY_HEADTEACHER, TEACHER, STAFF)
SCHOOL_LEADER_ROLES = (ADMIN, HEADTEACHER, DEPUTY_HEADTEACHER)
TEACHING_ROLES = (TEACHER, HEADTEACHER, DEPUTY_HEADTEACHER)


def require_roles(*roles: str):
    """
    Dependency factory to restrict an endpoint to the given roles.

    Example:
        Depends(require_roles("admin", "staff"))
    """
    allowed = {r.value if isinstance(r, UserRole) else r for r in roles}

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _checker


async def ensure_student_access(db: AsyncSession, current_user: CurrentUser, student_id: UUID) -> None:
    """
    Students may only read their own records and guardians only their linked children.
    School staff roles read everything.
    """
    if current_user.role in SCHOOL_STAFF_ROLES:
        return
    if current_user.role == STUDENT:
        result = await db.execute(
            select(Student.id).where(Student.id == student_id, Student.user_id == current_user.id)
        )
        if result.scalar_one_or_none():
            return
    elif current_user.role == GUARDIAN:
        result = await db.execute(
            select(StudentGuardian.id).where(
                StudentGuardian.student_id == student_id,
                StudentGuardian.guardian_id == current_user.id,
            )
        )
        if result.scalars().first():
            return
    raise PermissionDeniedError("You do not have access to this student's records")
