from typing import Annotated, Optional
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer

from app.database import Database
from app.services.auth.security import SecurityService

# Checkout works for guests, so a missing token is not an error
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

# Security service
security_service = SecurityService()


async def get_database():
    """Database dependency"""
    return Database.get_db()


async def get_current_user_id(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
) -> Optional[str]:
    """Authenticated user id, or None for guest checkout"""
    token_data = security_service.verify_token(token, "access")
    if token_data is None:
        return None
    return token_data.user_id
