import secrets, time, uuid
from typing import Optional

from jose import jwt

CODE_DELIMITER = "|"
BASIC_PREFIX = "Basic "


def generate_code(n_bytes: int = 32) -> str:
    """High-entropy grant secret. The urlsafe alphabet never contains '|'."""
    if n_bytes < 16:
        raise ValueError("grant codes need at least 128 bits of entropy.")
    return secrets.token_urlsafe(n_bytes)


def join_authorization_code(grant_id: str, code: str) -> str:
    return f"{grant_id}{CODE_DELIMITER}{code}"


def split_authorization_code(authorization_code: str) -> Optional[tuple[str, str]]:
    """Split "<id>|<code>" into its parts, None on any other arity."""
    parts = authorization_code.split(CODE_DELIMITER)
    if len(parts) != 2:
        return None
    return parts[0], parts[1]


def secret_from_authorization_header(header: str) -> str:
    # The remainder after "Basic " is taken verbatim as the client secret.
    return header[len(BASIC_PREFIX):]


def codes_match(expected: str, presented: str) -> bool:
    return secrets.compare_digest(expected.encode(), presented.encode())


def create_access_token(user_id: str, client_id: str, secret: str = "") -> str:
    """Access token bound to (user_id, client_id).

    Without a secret this is the plain "user_id,client_id" placeholder, which
    anyone can forge. Set ACCESS_TOKEN_SECRET to get an HS256-signed token.
    """
    if not secret:
        return f"{user_id},{client_id}"
    claims = {
        "sub": user_id,
        "client_id": client_id,
        "iat": int(time.time()),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, secret, algorithm="HS256")
