"""
Jira Planner - Reviewer Identity
Who is approving or rejecting automation actions, and who may change the engine config.

Bearer tokens carry the user's id, username and role. The username is what
ends up in resolved_by on a human decision, so a token is only honored while
its username still matches the stored user.
"""
import os
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .database import get_db
from .models.db_models import UserDB

# Configuration
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "jira-planner-secret-key-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 24

ADMIN_ROLE = "admin"
REVIEWER_ROLE = "user"

reviewer_bearer = HTTPBearer()


def hash_password(password: str) -> str:
    """bcrypt hash, stored as text in users.password_hash."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def create_access_token(user_id: str, username: str, role: str = REVIEWER_ROLE) -> str:
    """Signed token for the approval queue. Expires after ACCESS_TOKEN_EXPIRE_HOURS."""
    claims = {
        "sub": user_id,
        "username": username,
        "role": role,
        "exp": datetime.utcnow() + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS),
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Claims of a valid token. Expired or tampered tokens return None."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(reviewer_bearer),
    db: Session = Depends(get_db)
) -> UserDB:
    """The reviewer behind the bearer token. Its username is recorded as resolved_by."""
    claims = decode_token(credentials.credentials)
    if claims is None or claims.get("sub") is None:
        raise _unauthorized()

    user = db.get(UserDB, claims["sub"])
    if user is None or claims.get("username") != user.username:
        raise _unauthorized()

    return user


async def require_admin(current_user: UserDB = Depends(get_current_user)) -> UserDB:
    """Gate for automation config changes."""
    if current_user.role != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user
