"""End-user sign in and consent.

The authorization endpoint hands a LoginContext to an Authenticator; the
login form then POSTs back to the process-login endpoint, which calls the
grant issuer with the authenticated user id.
"""
import secrets
from html import escape
from typing import Dict, Mapping, Optional

from fastapi import Request
from fastapi.responses import HTMLResponse, Response
from pydantic import BaseModel


class LoginContext(BaseModel):
    client_id: str
    client_name: str
    redirect_uri: str
    state: Optional[str] = None


class Authenticator:
    """Base class for sign-in backends."""

    def login(self, request: Request, context: LoginContext, action: str,
              error: Optional[str] = None) -> Response:
        raise NotImplementedError

    def authenticate(self, form: Mapping[str, str]) -> Optional[str]:
        """Return the user id for valid credentials in `form`, else None."""
        raise NotImplementedError


_LOGIN_HTML = """<!DOCTYPE html>
<html><head><title>Sign in</title></head><body>
<h2>Sign in to authorize {client_name}</h2>
{error}
<form method="POST" action="{action}">
<input type="hidden" name="client_id" value="{client_id}">
<input type="hidden" name="redirect_uri" value="{redirect_uri}">
<input type="hidden" name="state" value="{state}">
<label>Username <input name="username"></label>
<label>Password <input name="password" type="password"></label>
<button type="submit" name="action" value="allow">Allow</button>
<button type="submit" name="action" value="deny">Deny</button>
</form></body></html>"""


class FormAuthenticator(Authenticator):
    """Username/password form backed by a {username: {"password", "sub"}} table."""

    def __init__(self, users: Dict[str, Dict[str, str]]):
        self.users = users

    def login(self, request: Request, context: LoginContext, action: str,
              error: Optional[str] = None) -> Response:
        html = _LOGIN_HTML.format(
            client_name=escape(context.client_name),
            error=f"<p>{escape(error)}</p>" if error else "",
            action=escape(action),
            client_id=escape(context.client_id),
            redirect_uri=escape(context.redirect_uri),
            state=escape(context.state or ""),
        )
        return HTMLResponse(html, status_code=401 if error else 200)

    def authenticate(self, form: Mapping[str, str]) -> Optional[str]:
        user = self.users.get(form.get("username", ""))
        password = form.get("password", "")
        if not user or not secrets.compare_digest(user["password"].encode(), password.encode()):
            return None
        return user["sub"]
