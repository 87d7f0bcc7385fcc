import logging
from datetime import timedelta
from typing import Dict, Optional
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException

from codegrant.authentication import Authenticator, FormAuthenticator, LoginContext
from codegrant.errors import (
    NotImplementedResponseType,
    OAuthError,
    StoreError,
    not_implemented_handler,
    oauth_error_handler,
    unknown_error_handler,
)
from codegrant.grants import send_grant, valid_grant
from codegrant.models import AuthorizeRequest, Client, TokenRequest, check_params
from codegrant.security import codes_match, secret_from_authorization_header
from codegrant.settings import Settings, settings
from codegrant.stores import ClientStore, GrantStore, InMemoryClientStore, InMemoryGrantStore

logger = logging.getLogger(__name__)

# ======= Demo registrations (replace with a real data-access layer) =======
REGISTERED_CLIENTS = [
    Client(
        id="demo-client",
        secret="demo-secret",
        redirect_uri="http://localhost:5173/callback",
        name="Demo Client",
    ),
]
USERS: Dict[str, Dict] = {"demo": {"password": "demo", "sub": "u_demo"}}


# ======= Dependencies =======
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_client_store(request: Request) -> ClientStore:
    return request.app.state.clients


def get_grant_store(request: Request) -> GrantStore:
    return request.app.state.grants


def get_authenticator(request: Request) -> Authenticator:
    return request.app.state.authenticator


async def read_params(request: Request) -> Optional[Dict[str, str]]:
    """Body fields of a form or JSON request, None if the body can't be parsed."""
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/json"):
            body = await request.json()
            if not isinstance(body, dict):
                return None
            items = body.items()
        else:
            items = (await request.form()).multi_items()
    except (ValueError, MultiPartException, HTTPException):
        # starlette reports a broken multipart body as a 400 HTTPException
        return None
    # uploaded files and non-string JSON values are not OAuth parameters
    return {k: v for k, v in items if isinstance(v, str)}


# ======= Endpoints =======
async def authorize(
    request: Request,
    conf: Settings = Depends(get_settings),
    clients: ClientStore = Depends(get_client_store),
    authenticator: Authenticator = Depends(get_authenticator),
):
    """End-user authorization endpoint, GET (query) or POST (form)."""
    params = dict(request.query_params)
    if not params and request.method == "POST":
        params = await read_params(request)
        if params is None:
            raise OAuthError("eua", "invalid_request")

    error = check_params("eua", params)
    if error:
        raise OAuthError("eua", error)
    ar = AuthorizeRequest(**params)

    # Only the web server flow is served.
    if ar.response_type != "code":
        raise NotImplementedResponseType(ar.response_type)

    client = await run_in_threadpool(clients.get, ar.client_id)
    if client is None:
        raise OAuthError("eua", "invalid_client")
    if client.redirect_uri != ar.redirect_uri:
        raise OAuthError("eua", "redirect_uri_mismatch")

    context = LoginContext(
        client_id=client.id,
        client_name=client.name,
        redirect_uri=ar.redirect_uri,
        state=ar.state,
    )
    return authenticator.login(request, context, action=conf.PROCESS_LOGIN_URL)


async def process_login(
    request: Request,
    conf: Settings = Depends(get_settings),
    clients: ClientStore = Depends(get_client_store),
    grants: GrantStore = Depends(get_grant_store),
    authenticator: Authenticator = Depends(get_authenticator),
):
    """Receives the login form and issues a grant once the user consents."""
    form = await read_params(request)
    if form is None:
        raise OAuthError("eua", "invalid_request")

    # The form carries the client context back to us, so check it again.
    client = await run_in_threadpool(clients.get, form.get("client_id", ""))
    if client is None:
        raise OAuthError("eua", "invalid_client")
    if client.redirect_uri != form.get("redirect_uri"):
        raise OAuthError("eua", "redirect_uri_mismatch")
    state = form.get("state") or None

    if form.get("action", "deny") != "allow":
        params = {"error": "access_denied"}
        if state:
            params["state"] = state
        return RedirectResponse(f"{client.redirect_uri}?{urlencode(params)}", status_code=302)

    user_id = authenticator.authenticate(form)
    if user_id is None:
        context = LoginContext(
            client_id=client.id,
            client_name=client.name,
            redirect_uri=client.redirect_uri,
            state=state,
        )
        return authenticator.login(
            request, context, action=conf.PROCESS_LOGIN_URL,
            error="Invalid username or password.",
        )

    return await run_in_threadpool(
        send_grant,
        grants,
        user_id,
        client.id,
        client.redirect_uri,
        state,
        conf.CODE_BYTES,
    )


async def token(
    request: Request,
    conf: Settings = Depends(get_settings),
    clients: ClientStore = Depends(get_client_store),
    grants: GrantStore = Depends(get_grant_store),
):
    """Token endpoint: check the code, redirect_uri and client secret, issue a token."""
    params = await read_params(request)
    if params is None:
        raise OAuthError("oat", "invalid_request")
    error = check_params("oat", params)
    if error:
        raise OAuthError("oat", error)
    tr = TokenRequest(**params)

    if tr.grant_type != "authorization_code":
        raise OAuthError("oat", "unsupported_grant_type")

    # The secret is given once and only once, by header or by parameter.
    header = request.headers.get("authorization")
    if header:
        if tr.client_secret:
            raise OAuthError("oat", "invalid_request")
        client_secret = secret_from_authorization_header(header)
    elif tr.client_secret:
        client_secret = tr.client_secret
    else:
        raise OAuthError("oat", "invalid_request")

    client = await run_in_threadpool(clients.get, tr.client_id)
    if client is None or not codes_match(client.secret, client_secret):
        raise OAuthError("oat", "invalid_client")

    # redirect_uri is bound to the client, not to the grant.
    if client.redirect_uri != tr.redirect_uri:
        raise OAuthError("oat", "invalid_grant")

    result = await run_in_threadpool(
        valid_grant,
        grants,
        tr.code,
        client.id,
        timedelta(seconds=conf.GRANT_TTL_SECONDS),
        conf.ACCESS_TOKEN_SECRET,
    )
    if result is None:
        raise OAuthError("oat", "invalid_grant")
    return JSONResponse(result.model_dump(), headers={"Cache-Control": "no-store"})


def create_app(
    conf: Settings = settings,
    clients: Optional[ClientStore] = None,
    grants: Optional[GrantStore] = None,
    authenticator: Optional[Authenticator] = None,
) -> FastAPI:
    logging.basicConfig()
    logging.getLogger("codegrant").setLevel(conf.LOG_LEVEL)

    app = FastAPI(title="codegrant - Authorization Server")
    app.state.settings = conf
    app.state.clients = clients if clients is not None else InMemoryClientStore(REGISTERED_CLIENTS)
    app.state.grants = grants if grants is not None else InMemoryGrantStore(
        ttl=timedelta(seconds=conf.GRANT_TTL_SECONDS))
    app.state.authenticator = authenticator or FormAuthenticator(USERS)

    app.add_exception_handler(OAuthError, oauth_error_handler)
    app.add_exception_handler(NotImplementedResponseType, not_implemented_handler)
    app.add_exception_handler(StoreError, unknown_error_handler)
    app.add_exception_handler(Exception, unknown_error_handler)

    app.add_api_route(conf.AUTHORIZE_URL, authorize, methods=["GET", "POST"])
    app.add_api_route(conf.PROCESS_LOGIN_URL, process_login, methods=["POST"])
    app.add_api_route(conf.TOKEN_URL, token, methods=["POST"])
    return app


app = create_app()
