"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.caller.

Identity is established by the external identity provider; this hook only
turns a verified bearer token into a ``CallerContext``:

    Authorization: Bearer <token>  →  g.caller = CallerContext(sub, role, remote_addr)

A missing, expired or invalid token, or a token carrying an unknown role,
leaves ``g.caller = None``.  Nothing is rejected here; the authorization
gate denies unauthenticated callers per operation, so the denial is audited.
"""

import logging

import jwt as pyjwt
from flask import g, request

from app.services.authorization import CallerContext
from app.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.caller = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
            g.caller = CallerContext(
                username=str(payload["sub"]),
                role=payload.get("role"),
                source_address=request.remote_addr,
            )
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token from %s", request.remote_addr)
        except pyjwt.InvalidTokenError:
            logger.warning("Invalid access token from %s", request.remote_addr)
        except ValueError:
            logger.warning("Access token with unknown role from %s", request.remote_addr)
