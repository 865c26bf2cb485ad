"""
Authentication router: exchange a signed WordPress login for a session JWT.
"""

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.accounts import AccountStore
from services.errors import BadSignature, InternalError
from services.session_token import create_session_token, verify_login_signature

router = APIRouter()
logger = logging.getLogger(__name__)


class LoginExchangeRequest(BaseModel):
    wp_user_id: Union[str, int]
    email: str = Field(min_length=1)
    signature: str = Field(min_length=1)


class LoginExchangeResponse(BaseModel):
    jwt: str
    expires_at: Optional[int] = None


@router.post("/wp-login-exchange", response_model=LoginExchangeResponse)
async def wp_login_exchange(
    request: LoginExchangeRequest,
    db: AsyncSession = Depends(get_db),
):
    """Verify the site's HMAC over ``wp_user_id|email`` and issue a short-lived token."""
    wp_user_id = str(request.wp_user_id).strip()
    if not verify_login_signature(wp_user_id, request.email, request.signature):
        logger.info("login exchange rejected wp_user_id=%s", wp_user_id)
        raise BadSignature()

    try:
        account = await AccountStore(db).get_or_create_account(wp_user_id, request.email)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("login exchange failed wp_user_id=%s: %s", wp_user_id, exc)
        raise InternalError() from exc

    session = create_session_token(account.id, wp_user_id, account.email or request.email)
    return LoginExchangeResponse(jwt=session["token"], expires_at=session["expires_at"])
