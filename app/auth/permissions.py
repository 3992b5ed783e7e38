"""Organisation level permission checks for datasource endpoints."""

from fastapi import Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models import Membership, Role, User

from .dependencies import get_current_user

# Roles allowed to create, change, delete or check unsaved datasources
DATASOURCE_WRITE_ROLES = (Role.OWNER, Role.ADMIN)


async def get_membership(
    organisation_id: str, user: User, db: AsyncSession
) -> Membership:
    """
    Return the user's membership of an organisation.

    Raises:
        HTTPException: 403 if the user is not a member
    """
    result = await db.execute(
        select(Membership).where(
            Membership.organisation_id == organisation_id,
            Membership.user_id == user.id,
        )
    )
    membership = result.scalar_one_or_none()

    if not membership:
        raise HTTPException(
            status_code=403, detail="You are not a member of this organisation"
        )
    return membership


async def require_datasource_read(
    organisation_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    await get_membership(organisation_id, current_user, db)
    return current_user


async def require_datasource_write(
    organisation_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    membership = await get_membership(organisation_id, current_user, db)
    if membership.role not in DATASOURCE_WRITE_ROLES:
        raise HTTPException(
            status_code=403,
            detail="Only organisation owners and admins can manage datasources",
        )
    return current_user
