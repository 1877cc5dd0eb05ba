from typing import Annotated
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm

import auth_utils
import crud
from deps import SessionDep
from schemas import Token

auth_router = APIRouter(tags=["auth"])
log = logging.getLogger(__name__)


@auth_router.post("/token", response_model=Token)
async def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    db_session: SessionDep
):
    email = form_data.username.strip().lower()
    account = await crud.get_account_by_email(db_session, email=email)

    if not account or not auth_utils.verify_password(form_data.password, account.hashed_password):
        log.warning(f"Failed login attempt for {email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not account.active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive account")

    access_token = auth_utils.issue_access_token(account.email, account.role)
    return Token(
        access_token=access_token,
        token_type="bearer",
        role=account.role,
        user_id=account.id,
        email=account.email,
    )
