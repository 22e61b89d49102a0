from typing import Optional

from fastapi import HTTPException, Request, Response
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN

from somnus.auth.session import SessionClaims, SessionIssuer, has_role, ADMIN_ROLE
from somnus.core.config import SomnusConfig


def get_session(request: Request) -> Optional[SessionClaims]:
    """
    Reads the session cookie. A missing, expired or forged token is simply
    "no session"; it never raises.
    """
    config: SomnusConfig = request.app.state.config
    issuer: SessionIssuer = request.app.state.issuer
    return issuer.verify(request.cookies.get(config.session.cookie_name))


def require_session(request: Request) -> SessionClaims:
    claims = get_session(request)
    if claims is None:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return claims


def require_admin(request: Request) -> SessionClaims:
    claims = require_session(request)
    if not has_role(claims, ADMIN_ROLE, request.app.state.config):
        raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Forbidden")
    return claims


def set_session_cookie(request: Request, response: Response, claims: SessionClaims) -> None:
    config: SomnusConfig = request.app.state.config
    token = request.app.state.issuer.issue(claims)
    response.set_cookie(
        key=config.session.cookie_name,
        value=token,
        max_age=config.session.max_age_days * 24 * 60 * 60,
        httponly=True,
        secure=config.session.secure_cookie,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(request: Request, response: Response) -> None:
    config: SomnusConfig = request.app.state.config
    response.delete_cookie(key=config.session.cookie_name, path="/")
