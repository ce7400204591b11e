"""
Attestation tokens: signed, time-limited links that let a coordinator act on
one fiscal note without a session.

The token is stateless (HS256 JWT carrying ``noteId`` and ``exp``). It proves
the link is authentic; callers still re-check the note's current status.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import ExpiredSignatureError, JWTError, jwt
from config import ALGORITHM, APP_URL, ATTESTATION_TOKEN_EXPIRE_DAYS, get_auth_secret

logger = logging.getLogger(__name__)


class TokenError(Exception):
    """Base class for attestation-token verification failures."""


class TokenExpired(TokenError):
    pass


class TokenInvalid(TokenError):
    pass


def issue_attestation_token(note_id: str, issued_at: Optional[datetime] = None) -> str:
    issued_at = issued_at or datetime.now(timezone.utc)
    payload = {
        "noteId": note_id,
        "iat": issued_at,
        "exp": issued_at + timedelta(days=ATTESTATION_TOKEN_EXPIRE_DAYS),
    }
    return jwt.encode(payload, get_auth_secret(), algorithm=ALGORITHM)


def build_attestation_link(token: str) -> str:
    return f"{APP_URL.rstrip('/')}/attest/{token}"


def verify_attestation_token(token: str) -> str:
    """Return the note id embedded in ``token``.

    Raises TokenExpired when the validity window has elapsed and TokenInvalid
    for bad signatures or malformed payloads.
    """
    secret = get_auth_secret()
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        logger.warning("Attestation token expired")
        raise TokenExpired("Token expirado")
    except JWTError as e:
        logger.warning(f"Attestation token rejected: {e}")
        raise TokenInvalid("Token inválido")
    note_id = payload.get("noteId")
    if not isinstance(note_id, str) or not note_id:
        raise TokenInvalid("Token sem identificador de nota")
    return note_id
