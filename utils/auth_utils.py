import enum
import logging
from functools import wraps
from typing import NamedTuple, Optional

from flask import jsonify, session

from utils.errors import ErrorKind, Forbidden, Unauthorized

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    TEACHER = "teacher"
    STUDENT = "student"


class Identity(NamedTuple):
    user_id: int
    role: Role

    @property
    def is_teacher(self) -> bool:
        return self.role == Role.TEACHER

    @property
    def is_student(self) -> bool:
        return self.role == Role.STUDENT


def current_identity() -> Optional[Identity]:
    """Resolve the caller from the session, or None when nobody is signed in."""
    user_id = session.get("user_id")
    role = session.get("role")
    if user_id is None or role is None:
        return None
    try:
        return Identity(int(user_id), Role(str(role).lower()))
    except ValueError:
        logger.warning(f"Ignoring session with unknown role {role!r}")
        return None


def require_identity() -> Identity:
    identity = current_identity()
    if identity is None:
        raise Unauthorized("Please log in to access this resource.")
    return identity


def require_teacher() -> Identity:
    identity = require_identity()
    if not identity.is_teacher:
        raise Forbidden("Access denied. Teacher privileges required.")
    return identity


def require_student() -> Identity:
    identity = require_identity()
    if not identity.is_student:
        raise Forbidden("Access denied. Student privileges required.")
    return identity


def login_required(f):
    """Decorator to ensure a valid session exists before accessing an API route.

    JSON routes answer 401 instead of redirecting to a login page.
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_identity() is None:
            return (
                jsonify(
                    {
                        "error": ErrorKind.UNAUTHORIZED.value,
                        "message": "Please log in to access this resource.",
                    }
                ),
                401,
            )
        return f(*args, **kwargs)

    return decorated_function


def require_class_owner(cls) -> Identity:
    """The signed-in teacher who owns cls."""
    identity = require_teacher()
    if cls.owner_id != identity.user_id:
        raise Forbidden("You do not own this class")
    return identity
