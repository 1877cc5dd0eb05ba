"""In-app inbox for the signed-in account (upgrade decisions and the like)."""

from typing import List

from fastapi import APIRouter, HTTPException, Query, status

import crud
from deps import CurrentUserDep, SessionDep
from schemas import InboxCount, Notification

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.get("", response_model=List[Notification])
async def read_inbox(
    db_session: SessionDep,
    current_user: CurrentUserDep,
    unread_only: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    return await crud.list_inbox(db_session, current_user.id, unread_only=unread_only, skip=skip, limit=limit)


@router.get("/unread/count", response_model=InboxCount)
async def unread_count(db_session: SessionDep, current_user: CurrentUserDep):
    return InboxCount(unread_count=await crud.count_unread(db_session, current_user.id))


@router.put("/mark-all-as-read", response_model=InboxCount)
async def acknowledge_inbox(db_session: SessionDep, current_user: CurrentUserDep):
    """Mark every unread item as read; the response carries the remaining (zero) count."""
    await crud.acknowledge_all(db_session, current_user.id)
    return InboxCount(unread_count=0)


@router.put("/{notification_id}/mark-as-read", response_model=Notification)
async def acknowledge_item(notification_id: int, db_session: SessionDep, current_user: CurrentUserDep):
    item = await crud.get_inbox_item(db_session, current_user.id, notification_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return await crud.acknowledge(db_session, item)
