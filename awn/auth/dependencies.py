import logging

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from awn.auth import jwt_handler
from awn.auth.identity import PATIENT_ROLE, CurrentUser
from awn.core.errors import InternalError, UnauthorizedError
from awn.models.user import User
from awn.services.providers import get_db

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> CurrentUser:
    if credentials is None:
        raise UnauthorizedError("Access token required")

    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise UnauthorizedError("Invalid or expired token") from exc

    email = payload.get("sub")
    if not email:
        raise UnauthorizedError("Invalid token subject")

    try:
        user = db.query(User).filter(User.email == str(email).strip().lower()).first()
    except SQLAlchemyError as exc:
        logger.exception("Looking up the token user failed")
        raise InternalError() from exc
    if user is None:
        raise UnauthorizedError("User not found")
    return CurrentUser(
        id=user.id,
        email=user.email,
        role=user.role or PATIENT_ROLE,
        therapist_id=user.therapist_id,
    )
