# api/oddsraiders/services/access.py
import logging

from ..errors import ForbiddenError

logger = logging.getLogger("oddsraiders.auth")


def authorize_self(caller: dict, user_id: int) -> int:
    """Subscription routes are self-service only, admins included."""
    caller_id = caller.get("db_user_id") if caller else None
    if caller_id is None or int(caller_id) != int(user_id):
        logger.warning("user %s denied access to subscription of user %s", caller_id, user_id)
        raise ForbiddenError("you can only access your own subscription")
    return caller_id
