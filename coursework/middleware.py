"""Request middleware - attaches the authenticated email to request state."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from coursework.services.auth import get_auth_email


class AuthMiddleware(BaseHTTPMiddleware):
    """Read the identity proxy header; user lookup happens in the route dependencies."""

    async def dispatch(self, request: Request, call_next):
        request.state.user_email = get_auth_email(request.headers)
        return await call_next(request)
