import json
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional, Union

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db
from schemas import User as UserSchema

logger = logging.getLogger(__name__)

# Identity token config
IDENTITY_TOKEN_SECRET = os.getenv("IDENTITY_TOKEN_SECRET")
IDENTITY_PUBLIC_KEYS_FILE = os.getenv("IDENTITY_PUBLIC_KEYS_FILE")
IDENTITY_AUDIENCE = os.getenv("IDENTITY_AUDIENCE")
IDENTITY_ISSUER = os.getenv("IDENTITY_ISSUER")


@dataclass(frozen=True)
class IdentityClaims:
    subject_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None


class Principal(BaseModel):
    id: str
    email: Optional[str] = None
    name: str
    role: str = "user"
    photo_url: str = ""


class JoseIdentityProvider:
    """Verifies ID tokens issued by the external identity provider.

    ``key`` is either a shared secret (HS256) or a mapping of key id to PEM
    certificate, which is how the provider publishes its RS256 signing keys.
    """

    def __init__(self, key: Union[str, Dict[str, str]], algorithms: List[str], audience: Optional[str] = None, issuer: Optional[str] = None):
        self.key = key
        self.algorithms = algorithms
        self.audience = audience
        self.issuer = issuer

    def verify(self, token: str) -> IdentityClaims:
        payload: Dict[str, Any] = jwt.decode(
            token,
            self.key,
            algorithms=self.algorithms,
            audience=self.audience,
            issuer=self.issuer,
            options={"verify_aud": self.audience is not None},
        )
        subject_id = payload.get("sub") or payload.get("user_id")
        if not subject_id:
            raise JWTError("Token has no subject")
        return IdentityClaims(
            subject_id=subject_id,
            email=payload.get("email"),
            display_name=payload.get("name"),
            photo_url=payload.get("picture"),
        )


@lru_cache()
def get_identity_provider() -> JoseIdentityProvider:
    if IDENTITY_PUBLIC_KEYS_FILE:
        with open(IDENTITY_PUBLIC_KEYS_FILE) as f:
            keys = json.load(f)
        return JoseIdentityProvider(keys, ["RS256"], IDENTITY_AUDIENCE, IDENTITY_ISSUER)
    if IDENTITY_TOKEN_SECRET:
        return JoseIdentityProvider(IDENTITY_TOKEN_SECRET, ["HS256"], IDENTITY_AUDIENCE, IDENTITY_ISSUER)
    raise RuntimeError("Set IDENTITY_TOKEN_SECRET or IDENTITY_PUBLIC_KEYS_FILE to verify identity tokens")


def sync_shadow_user(db: Database, claims: IdentityClaims) -> Dict[str, Any]:
    """Return the local user row for ``claims``, creating it on first sight."""
    user = db["user"].find_one({"uid": claims.subject_id})
    if user:
        return user
    profile = UserSchema(
        uid=claims.subject_id,
        email=claims.email.lower() if claims.email else None,
        name=claims.display_name or claims.email or "User",
        photo_url=claims.photo_url or "",
    ).model_dump(exclude_none=True)
    try:
        create_document(db, "user", profile)
    except DuplicateKeyError:
        # Another request created it in between
        return db["user"].find_one({"uid": claims.subject_id})
    logger.warning("Identity %s authenticated but had no local profile; created one with role 'user'", claims.subject_id)
    return db["user"].find_one({"uid": claims.subject_id})


# Dependency to get current user

def get_current_user(
    x_auth_token: Optional[str] = Header(default=None),
    provider: JoseIdentityProvider = Depends(get_identity_provider),
    db: Database = Depends(get_db),
) -> Principal:
    if not x_auth_token:
        raise HTTPException(status_code=401, detail="No token, authorization denied")
    try:
        claims = provider.verify(x_auth_token)
    except JWTError as e:
        logger.warning("Identity token verification failed: %s", e)
        raise HTTPException(status_code=401, detail="Token is not valid or expired")
    user = sync_shadow_user(db, claims)
    if user is None:
        # Lost a race with a row holding the same email under another uid
        raise HTTPException(status_code=401, detail="User profile could not be resolved")
    if user.get("status") == "blocked":
        raise HTTPException(status_code=403, detail="Your account has been blocked")
    return Principal(
        id=user["uid"],
        email=user.get("email"),
        name=user.get("name") or user.get("email") or "User",
        role=user.get("role", "user"),
        photo_url=user.get("photo_url", ""),
    )


def require_admin(current_user: Principal = Depends(get_current_user)) -> Principal:
    if current_user.role != "admin":
        raise HTTPException(status_code=403, detail="Access denied: Admin role required")
    return current_user


def can_access_user_resource(principal: Principal, owner_id: str) -> bool:
    return principal.role == "admin" or principal.id == owner_id
