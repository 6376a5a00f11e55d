"""
Identity provider adapter (Firebase Auth REST API).

Only credentials live with the provider; profiles live in our database.
"""
import logging
from typing import Optional

import httpx

from luba.config import get_settings
from luba.errors import AuthError, NetworkError

logger = logging.getLogger(__name__)
settings = get_settings()

# provider error code -> message shown to the user
_MESSAGES = {
    "EMAIL_NOT_FOUND": "No account found for this email. Please sign up first.",
    "INVALID_PASSWORD": "Incorrect password. Please try again.",
    "INVALID_LOGIN_CREDENTIALS": "Incorrect email or password. Please try again.",
    "USER_DISABLED": "This account has been disabled.",
    "EMAIL_EXISTS": "An account with this email already exists.",
    "WEAK_PASSWORD": "Password is too weak.",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts. Please try again later.",
    "INVALID_ID_TOKEN": "Your session has expired. Please sign in again.",
    "CREDENTIAL_TOO_OLD_LOGIN_AGAIN": "Please sign in again to continue.",
}


async def _call(endpoint: str, payload: dict, client: Optional[httpx.AsyncClient]) -> dict:
    url = f"{settings.identity_base_url}/accounts:{endpoint}"
    params = {"key": settings.identity_api_key}
    try:
        if client is not None:
            resp = await client.post(url, params=params, json=payload)
        else:
            async with httpx.AsyncClient(timeout=settings.identity_timeout_seconds) as own:
                resp = await own.post(url, params=params, json=payload)
    except httpx.HTTPError as exc:
        logger.error("Identity provider %s failed: %s", endpoint, exc)
        raise NetworkError("Could not reach the sign-in service. Please try again.") from exc

    if resp.status_code >= 400:
        try:
            code = resp.json()["error"]["message"]
        except (ValueError, KeyError, TypeError):
            code = ""
        # codes may carry a detail suffix, e.g. "WEAK_PASSWORD : Password should be..."
        code = code.split(":")[0].strip()
        if resp.status_code >= 500 or not code:
            logger.error("Identity provider %s error %s: %s", endpoint, resp.status_code, resp.text)
            raise NetworkError("The sign-in service is unavailable. Please try again.")
        raise AuthError(_MESSAGES.get(code, code.replace("_", " ").capitalize()))
    return resp.json()


async def sign_up(email: str, password: str, client: Optional[httpx.AsyncClient] = None) -> dict:
    """Returns {"uid", "id_token"}."""
    data = await _call("signUp", {"email": email, "password": password, "returnSecureToken": True}, client)
    return {"uid": data["localId"], "id_token": data["idToken"]}


async def sign_in(email: str, password: str, client: Optional[httpx.AsyncClient] = None) -> dict:
    data = await _call(
        "signInWithPassword", {"email": email, "password": password, "returnSecureToken": True}, client
    )
    return {"uid": data["localId"], "id_token": data["idToken"]}


async def send_password_reset(email: str, client: Optional[httpx.AsyncClient] = None) -> None:
    await _call("sendOobCode", {"requestType": "PASSWORD_RESET", "email": email}, client)


async def update_password(
    email: str,
    current_password: str,
    new_password: str,
    client: Optional[httpx.AsyncClient] = None,
) -> None:
    session = await sign_in(email, current_password, client)
    await _call(
        "update",
        {"idToken": session["id_token"], "password": new_password, "returnSecureToken": True},
        client,
    )


async def delete_account(email: str, password: str, client: Optional[httpx.AsyncClient] = None) -> str:
    """Re-authenticates, deletes the provider account and returns its uid."""
    session = await sign_in(email, password, client)
    await _call("delete", {"idToken": session["id_token"]}, client)
    return session["uid"]
