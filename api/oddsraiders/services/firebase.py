# api/oddsraiders/services/firebase.py
import json
import logging
from typing import Optional

import firebase_admin
from firebase_admin import auth as fb_auth, credentials as fb_credentials, exceptions as fb_exceptions

from ..settings import settings

logger = logging.getLogger("oddsraiders.auth")

_initialized = False


def _ensure_init() -> None:
    """
    Initialise the Firebase Admin SDK once, using either:

    - FIREBASE_SERVICE_ACCOUNT_JSON (recommended in production), or
    - default credentials (for local dev if you have them configured).
    """
    global _initialized
    if _initialized:
        return

    if not firebase_admin._apps:
        svc_json = settings.FIREBASE_SERVICE_ACCOUNT_JSON
        if svc_json:
            cred = fb_credentials.Certificate(json.loads(svc_json))
        else:
            cred = fb_credentials.ApplicationDefault()
        firebase_admin.initialize_app(cred)

    _initialized = True


def verify_id_token(id_token: str) -> Optional[dict]:
    """Decoded claims, or None if the token is invalid or Firebase is unavailable."""
    try:
        _ensure_init()
        return fb_auth.verify_id_token(id_token)
    except (ValueError, fb_auth.InvalidIdTokenError, fb_auth.ExpiredIdTokenError,
            fb_auth.RevokedIdTokenError, fb_auth.CertificateFetchError) as e:
        logger.info("verify_id_token rejected token: %r", e)
        return None
    except fb_exceptions.FirebaseError as e:
        logger.warning("verify_id_token failed: %r", e)
        return None
