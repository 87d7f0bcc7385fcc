"""
Authorization code flow helpers for web-server clients.

Usage (CLI):
  codegrant-flow authorize-url --issuer http://localhost:8000 \
      --client-id demo-client \
      --redirect-uri http://localhost:5173/callback \
      --state xyz
  codegrant-flow exchange --issuer http://localhost:8000 \
      --client-id demo-client --client-secret demo-secret \
      --redirect-uri http://localhost:5173/callback \
      --callback "http://localhost:5173/callback?code=...&state=xyz"

Typical programmatic use:
  from codegrant_cli.flow_utils import build_authorize_url, parse_callback, exchange_code

  url = build_authorize_url(AuthorizeParams(...))   # send the browser here
  code, state = parse_callback(callback_url)        # where it came back to
  token = exchange_code(token_url, client_id, client_secret, code, redirect_uri)
"""

from __future__ import annotations

import os
import base64
import urllib.parse
from dataclasses import dataclass

import requests


class TokenExchangeError(Exception):
    """The token endpoint refused the code (carries the OAuthException message)."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


def _random_state(n_bytes: int = 16) -> str:
    return base64.urlsafe_b64encode(os.urandom(n_bytes)).rstrip(b"=").decode("ascii")


# ===== Authorize URL builder =====

@dataclass(frozen=True)
class AuthorizeParams:
    issuer: str                      # e.g., "http://localhost:8000"
    client_id: str                   # e.g., "demo-client"
    redirect_uri: str                # must equal the registered one
    state: str | None = None
    scope: str | None = None
    response_type: str = "code"
    authorize_path: str = "/oauth/authorize"


def build_authorize_url(p: AuthorizeParams) -> str:
    """
    Build the end-user authorization URL.
    A random state is generated when none is given; keep it to check the callback.
    """
    q = {
        "response_type": p.response_type,
        "client_id": p.client_id,
        "redirect_uri": p.redirect_uri,
        "state": p.state if p.state is not None else _random_state(),
    }
    if p.scope:
        q["scope"] = p.scope

    base = p.issuer.rstrip("/") + p.authorize_path
    return f"{base}?{urllib.parse.urlencode(q)}"


def parse_callback(url: str) -> tuple[str, str | None]:
    """
    Extract (code, state) from the URL the user agent was redirected to.
    Raises ValueError if the server sent an error or no code.
    """
    query = urllib.parse.parse_qs(urllib.parse.urlsplit(url).query)
    if "error" in query:
        raise ValueError(f"authorization failed: {query['error'][0]}")
    if "code" not in query:
        raise ValueError("no code in callback URL.")
    state = query.get("state", [None])[0]
    return query["code"][0], state


# ===== Token exchange =====

def exchange_code(
    token_url: str,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    use_basic: bool = True,
    timeout: float = 5,
) -> dict:
    """
    Redeem an authorization code at the token endpoint.
    The secret goes either in the Authorization header or in the form, never both.
    """
    data = {
        "grant_type": "authorization_code",
        "client_id": client_id,
        "code": code,
        "redirect_uri": redirect_uri,
    }
    headers = {}
    if use_basic:
        headers["Authorization"] = f"Basic {client_secret}"
    else:
        data["client_secret"] = client_secret

    resp = requests.post(token_url, data=data, headers=headers, timeout=timeout)
    if resp.status_code != 200:
        try:
            message = resp.json()["error"]["message"]
        except (ValueError, KeyError, TypeError):
            message = resp.text
        raise TokenExchangeError(resp.status_code, message)
    return resp.json()


# ===== CLI =====

def main(argv: list[str] | None = None) -> int:
    import argparse

    ap = argparse.ArgumentParser(description="Authorization code flow helpers (authorize URL builder, code exchange).")
    ap.add_argument("--issuer", default="http://localhost:8000", help="Authorization Server base URL")
    ap.add_argument("--client-id", default="demo-client", help="OAuth2 client_id")
    ap.add_argument("--redirect-uri", default="http://localhost:5173/callback", help="registered redirect_uri")
    sub = ap.add_subparsers(dest="command", required=True)

    au = sub.add_parser("authorize-url", help="print the end-user authorization URL")
    au.add_argument("--state", default=None, help="optional state (random if omitted)")
    au.add_argument("--scope", default=None, help="optional scope")

    ex = sub.add_parser("exchange", help="redeem the code from a callback URL")
    ex.add_argument("--client-secret", required=True)
    ex.add_argument("--callback", required=True, help="URL the browser was redirected to")
    ex.add_argument("--token-path", default="/oauth/token")
    ex.add_argument("--secret-in-form", action="store_true",
                    help="send client_secret as a form field instead of the Authorization header")
    args = ap.parse_args(argv)

    if args.command == "authorize-url":
        print(build_authorize_url(AuthorizeParams(
            issuer=args.issuer,
            client_id=args.client_id,
            redirect_uri=args.redirect_uri,
            state=args.state,
            scope=args.scope,
        )))
        return 0

    try:
        code, _ = parse_callback(args.callback)
        token = exchange_code(
            args.issuer.rstrip("/") + args.token_path,
            args.client_id,
            args.client_secret,
            code,
            args.redirect_uri,
            use_basic=not args.secret_in_form,
        )
    except (ValueError, TokenExchangeError, requests.RequestException) as e:
        print(f"error: {e}")
        return 1
    print(f"access_token: {token['access_token']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
