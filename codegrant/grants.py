"""Grant issuance and redemption.

A grant is created once the end user has signed in and consented, handed to
the client as "<id>|<code>", and consumed exactly once at the token endpoint.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

from fastapi.responses import RedirectResponse

from codegrant.models import Grant, TokenResponse
from codegrant.security import (
    codes_match,
    create_access_token,
    generate_code,
    join_authorization_code,
    split_authorization_code,
)
from codegrant.stores import ConsumeOutcome, GrantStore

logger = logging.getLogger(__name__)

GRANT_TTL = timedelta(seconds=60)


def send_grant(
    grants: GrantStore,
    user_id: str,
    client_id: str,
    redirect_uri: str,
    state: Optional[str] = None,
    code_bytes: int = 32,
    now: Optional[datetime] = None,
) -> RedirectResponse:
    """Create a grant and send the user agent back to the client with it.

    redirect_uri must be the client's registered one. A store failure
    propagates, so nobody is redirected with a code that was never saved.
    """
    grant = grants.create(
        client_id=client_id,
        user_id=user_id,
        code=generate_code(code_bytes),
        issued_at=now or datetime.now(timezone.utc),
    )
    params = {"code": join_authorization_code(grant.id, grant.code)}
    if state:
        params["state"] = state
    logger.info("Issued grant %s to client %s", grant.id, client_id)
    return RedirectResponse(f"{redirect_uri}?{urlencode(params)}", status_code=302)


def valid_grant(
    grants: GrantStore,
    authorization_code: str,
    client_id: str,
    ttl: timedelta = GRANT_TTL,
    token_secret: str = "",
    now: Optional[datetime] = None,
) -> Optional[TokenResponse]:
    """Redeem an authorization code for a token.

    Returns None when the grant is invalid: malformed code, unknown or
    already used grant, expired, issued to another client, or wrong secret.
    An invalid grant is not an error; store errors propagate.
    On success the grant is gone and cannot be used anymore.
    """
    id_code = split_authorization_code(authorization_code)
    if id_code is None:
        return None
    grant_id, code = id_code
    now = now or datetime.now(timezone.utc)

    def check(grant: Grant) -> bool:
        return (
            grant.issued_at <= now
            and now - grant.issued_at < ttl
            and grant.client_id == client_id
            and codes_match(grant.code, code)
        )

    outcome, grant = grants.consume(grant_id, check)
    if outcome is not ConsumeOutcome.CONSUMED:
        logger.info("Rejected grant %s for client %s: %s", grant_id, client_id, outcome.value)
        return None
    return TokenResponse(
        access_token=create_access_token(grant.user_id, grant.client_id, token_secret)
    )
