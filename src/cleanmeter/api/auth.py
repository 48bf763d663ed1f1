"""Bearer token authentication."""

import time
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel


class Principal(BaseModel):
    """Authenticated caller."""

    user_id: str
    email: Optional[str] = None
    is_admin: bool = False


class TokenAuth:
    """HS256 JWT verification. ``sub`` is the user id; ``admin`` grants upgrades."""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def issue_token(
        self,
        user_id: str,
        email: Optional[str] = None,
        admin: bool = False,
        expires_in: int = 3600
    ) -> str:
        now = int(time.time())
        payload = {"sub": user_id, "iat": now, "exp": now + expires_in, "admin": admin}
        if email:
            payload["email"] = email
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify_token(self, token: str) -> dict:
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except jwt.InvalidTokenError as e:
            raise HTTPException(status_code=401, detail=f"Invalid token: {str(e)}")

    def get_principal(self, token: str) -> Principal:
        payload = self.verify_token(token)

        user_id = payload.get("sub")
        if not user_id:
            raise HTTPException(status_code=401, detail="Invalid token: missing user ID")

        return Principal(
            user_id=user_id,
            email=payload.get("email"),
            is_admin=payload.get("admin") is True,
        )


security = HTTPBearer(auto_error=False)


async def require_auth(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Principal:
    """
    FastAPI dependency to get the authenticated caller.

    Extracts and verifies the JWT from the Authorization header.
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Must be authenticated")

    auth: TokenAuth = request.app.state.auth
    return auth.get_principal(credentials.credentials)
