import datetime
from functools import wraps

import jwt
from flask import current_app, g, request

from ..errors import ErrorCode, ForbiddenError, UnauthorizedError


def create_access_token(user) -> str:
    payload = {
        "user_id": user.id,
        "email": user.email,
        "role": user.role,
        "type": "access",
        "exp": datetime.datetime.now(datetime.timezone.utc)
        + datetime.timedelta(minutes=current_app.config["JWT_ACCESS_EXPIRES_MINUTES"]),
    }
    return jwt.encode(payload, current_app.config["SECRET_KEY"], algorithm="HS256")


def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, current_app.config["SECRET_KEY"], algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired", code=ErrorCode.TOKEN_EXPIRED)
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token", code=ErrorCode.TOKEN_INVALID)

    if payload.get("type") != "access" or not payload.get("user_id"):
        raise UnauthorizedError("Invalid token", code=ErrorCode.TOKEN_INVALID)
    return payload


def token_required(f):
    """Require a bearer access token; sets g.user_id and g.role."""

    @wraps(f)
    def decorated(*args, **kwargs):
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            raise UnauthorizedError("Missing bearer token")

        payload = decode_access_token(header[len("Bearer "):].strip())
        g.user_id = payload["user_id"]
        g.role = payload.get("role")
        return f(*args, **kwargs)

    return decorated


def admin_required(f):
    @wraps(f)
    @token_required
    def decorated(*args, **kwargs):
        if g.role != "ADMIN":
            raise ForbiddenError("Admin role required")
        return f(*args, **kwargs)

    return decorated
