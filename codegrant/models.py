from datetime import datetime
from typing import Optional

from pydantic import BaseModel

# Parameters we must/can have in the two kinds of requests.
# eua = end user authorization, oat = obtaining an access token.
PARAMS = {
    "eua": {
        "mandatory": ["client_id", "response_type", "redirect_uri"],
        "optional": ["state", "scope"],
        # recognized values for response_type; only "code" is served
        "response_types": {"token", "code", "code_and_token"},
    },
    "oat": {
        "mandatory": ["grant_type", "client_id", "code", "redirect_uri"],
        # client_secret might come from the 'Authorization: Basic ...' header instead
        "optional": ["scope", "client_secret"],
    },
}


def check_params(kind: str, params: dict) -> Optional[str]:
    """Check a request's parameters against the schema for `kind`.

    Returns the error id to report, or None when the parameters are acceptable.
    Cross-field checks are left to the endpoints.
    """
    schema = PARAMS[kind]
    for name in schema["mandatory"]:
        if not params.get(name):
            return "invalid_request"
    response_types = schema.get("response_types")
    if response_types is not None and params["response_type"] not in response_types:
        return "unsupported_response_type"
    return None


class Client(BaseModel):
    id: str
    secret: str
    redirect_uri: str
    name: str


class Grant(BaseModel):
    id: str
    code: str
    client_id: str
    user_id: str
    issued_at: datetime


class AuthorizeRequest(BaseModel):
    response_type: str
    client_id: str
    redirect_uri: str
    scope: Optional[str] = None
    state: Optional[str] = None


class TokenRequest(BaseModel):
    grant_type: str
    code: str
    redirect_uri: str
    client_id: str
    scope: Optional[str] = None
    client_secret: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
