import logging
import httpx
from config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_REFRESH_TOKEN

logger = logging.getLogger(__name__)

_TOKEN_URL = "https://oauth2.googleapis.com/token"


class GoogleAuthError(RuntimeError):
    pass


def get_access_token(client: httpx.Client) -> str:
    """Exchange the service refresh token for a short-lived access token."""
    if not (GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET and GOOGLE_REFRESH_TOKEN):
        raise GoogleAuthError("Credenciais do Google não configuradas")
    resp = client.post(_TOKEN_URL, data={
        "client_id": GOOGLE_CLIENT_ID,
        "client_secret": GOOGLE_CLIENT_SECRET,
        "refresh_token": GOOGLE_REFRESH_TOKEN,
        "grant_type": "refresh_token",
    })
    if resp.status_code != 200:
        logger.error(f"Google token refresh failed: HTTP {resp.status_code}")
        raise GoogleAuthError(f"Falha ao renovar token do Google (HTTP {resp.status_code})")
    return resp.json()["access_token"]
