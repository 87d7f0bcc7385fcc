"""OAuth2 error reporting.

Request and validity errors are rendered as a 400 carrying an
OAuthException body. Anything else is an unknown error: logged in full here,
opaque to the caller.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse

logger = logging.getLogger(__name__)

ERRORS = {
    "eua": {
        "invalid_request": "The request is missing a required parameter, "
                           "includes an unsupported parameter or parameter value, "
                           "or is otherwise malformed.",
        "unsupported_response_type": "The requested response type is not supported "
                                     "by the authorization server.",
        "invalid_client": "The client identifier provided is invalid.",
        "redirect_uri_mismatch": "The redirection URI provided does not match "
                                 "a pre-registered value.",
    },
    "oat": {
        "invalid_request": "The request is missing a required parameter, "
                           "includes an unsupported parameter or parameter value, "
                           "repeats a parameter, includes multiple credentials, "
                           "or is otherwise malformed.",
        "unsupported_grant_type": "The authorization grant type is not supported "
                                  "by the authorization server.",
        "invalid_client": "Client authentication failed.",
        "invalid_grant": "The provided authorization grant is invalid, expired, "
                         "revoked, or does not match the redirection URI used "
                         "in the authorization request.",
    },
}


class OAuthError(Exception):
    """A request or validity error, reported to the caller as a 400."""

    def __init__(self, kind: str, error_id: str):
        if error_id not in ERRORS.get(kind, {}):
            raise ValueError(f"unknown {kind!r} error id: {error_id!r}")
        super().__init__(f"{kind}/{error_id}")
        self.kind = kind
        self.error_id = error_id


class NotImplementedResponseType(Exception):
    """A recognized response_type other than "code" was requested."""

    def __init__(self, response_type: str):
        super().__init__(response_type)
        self.response_type = response_type


class StoreError(Exception):
    """Raised by client/grant stores when the persistence layer fails."""


def oauth_error(kind: str, error_id: str) -> JSONResponse:
    """Render a particular error.

    kind is the class of the error ('eua' or 'oat'), error_id its id
    (invalid_request, invalid_client...).
    """
    return JSONResponse(
        status_code=400,
        content={"error": {
            "type": "OAuthException",
            "message": f"{error_id}: {ERRORS[kind][error_id]}",
        }},
    )


def unknown_error(exc: BaseException) -> JSONResponse:
    logger.error("Unknown error: %s", exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


async def oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    logger.info("%s %s -> %s", request.method, request.url.path, exc.error_id)
    return oauth_error(exc.kind, exc.error_id)


async def not_implemented_handler(request: Request, exc: NotImplementedResponseType):
    return PlainTextResponse(
        "Only code request type supported for now (web server flow).",
        status_code=501,
    )


async def unknown_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return unknown_error(exc)
