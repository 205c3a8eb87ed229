# api/oddsraiders/auth_firebase.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .db import get_db
from .models import User
from .services.firebase import verify_id_token
from .util import utcnow

logger = logging.getLogger("oddsraiders.auth")

bearer = HTTPBearer(auto_error=False)


def sync_user(db: Session, claims: dict) -> User:
    """Find or create the local User row for a set of Firebase claims."""
    uid = claims["uid"]
    email = (claims.get("email") or "").lower() or None
    display_name = claims.get("name")
    avatar_url = claims.get("picture")

    user = db.query(User).filter(User.firebase_uid == uid).first()
    now = utcnow()
    if not user:
        user = User(
            firebase_uid=uid,
            email=email,
            display_name=display_name,
            avatar_url=avatar_url,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        logger.info("created local user for firebase uid %s", uid)
    else:
        changed = False
        if email and user.email != email:
            user.email = email
            changed = True
        if display_name and user.display_name != display_name:
            user.display_name = display_name
            changed = True
        if avatar_url and user.avatar_url != avatar_url:
            user.avatar_url = avatar_url
            changed = True
        if changed:
            user.updated_at = now

    db.commit()
    db.refresh(user)
    return user


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> dict:
    """
    Strict auth:
      - Requires a valid Firebase ID token
      - Ensures a local User row exists (auto-create)
      - Returns a DICT of Firebase claims + db_user_id + is_admin
    """
    if not creds or not creds.scheme.lower().startswith("bearer"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
        )

    claims = verify_id_token(creds.credentials)
    if not isinstance(claims, dict) or not claims.get("uid"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Firebase token",
        )

    user = sync_user(db, claims)

    # Attach DB info back onto claims so the rest of the app can use it
    claims["db_user_id"] = user.id
    claims["is_admin"] = bool(user.is_admin)
    return claims


def require_admin(user=Depends(get_current_user)):
    """
    Guard for admin-only routes.
    """
    if not user.get("is_admin"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin only",
        )
    return user
