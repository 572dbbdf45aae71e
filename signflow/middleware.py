from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from .consent import ConsentState, consent_state, consent_url
from .deps import token_from_request, user_from_token
from .routes import is_protected_route, is_public_only_route, is_public_route

EXEMPT_PREFIXES = ("/auth/", "/api/", "/logout", "/health", "/docs", "/redoc", "/openapi.json")


def _resolve(session_factory, token):
    db = session_factory()
    try:
        user = user_from_token(db, token)
        return user, consent_state(user)
    finally:
        db.close()


class SessionGateMiddleware(BaseHTTPMiddleware):
    """Consent first, then the signed-in / signed-out route rules."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path.startswith(EXEMPT_PREFIXES):
            return await call_next(request)
        # legal pages and signing links stay readable while consent is pending
        if is_public_route(path) and not is_public_only_route(path):
            return await call_next(request)

        token = token_from_request(request)
        if token:
            user, state = await run_in_threadpool(_resolve, request.app.state.session_factory, token)
        else:
            user, state = None, ConsentState.UNAUTHENTICATED

        # runs before the public/protected checks so public pages are gated too
        if state is ConsentState.CONSENT_PENDING:
            return RedirectResponse(consent_url(path), status_code=307)

        if user is None and is_protected_route(path):
            return RedirectResponse("/login?" + urlencode({"redirectTo": path}), status_code=307)

        if user is not None and is_public_only_route(path):
            return RedirectResponse("/dashboard", status_code=307)

        return await call_next(request)
