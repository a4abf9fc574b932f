"""Session acquisition against a Community Solid Server identity provider.

Flow:
1) Log into the account API with email/password
2) Create a client-credentials token for the account's WebID
3) Exchange the token at the provider's OIDC token endpoint
4) Bind the access token to a requests.Session
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import quote

import requests

from evno.adapters.solid import SolidContainers, SolidSession
from evno.core.errors import AuthError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    """Account credentials for the identity provider."""

    name: str
    email: str
    password: str
    idp: str
    web_id: Optional[str] = None


def _base(url: str) -> str:
    return url if url.endswith("/") else f"{url}/"


def _json(response: requests.Response, what: str) -> dict:
    if not response.ok:
        raise AuthError(f"{what} failed: HTTP {response.status_code}")
    try:
        return response.json()
    except ValueError as exc:
        raise AuthError(f"{what} returned invalid JSON") from exc


def _control(controls: dict, *path: str) -> str:
    node = controls
    for part in path:
        node = node.get(part) if isinstance(node, dict) else None
    if not isinstance(node, str):
        raise AuthError(f"Identity provider does not expose {'.'.join(path)}")
    return node


def _resolve_web_id(http: requests.Session, controls: dict, timeout: float) -> str:
    webid_url = _control(controls, "account", "webId")
    links = _json(http.get(webid_url, timeout=timeout), "WebID lookup").get("webIdLinks") or {}
    if not links:
        raise AuthError("Account has no WebID")
    return next(iter(links))


def _token_endpoint(http: requests.Session, idp: str, timeout: float) -> str:
    discovery = _json(
        http.get(f"{idp}.well-known/openid-configuration", timeout=timeout),
        "OIDC discovery",
    )
    endpoint = discovery.get("token_endpoint")
    if not endpoint:
        raise AuthError("Identity provider has no token endpoint")
    return endpoint


def generate_client_token(credentials: Credentials, timeout: float = 30.0) -> Tuple[str, str, str]:
    """Return (client id, client secret, web id) for the account."""

    idp = _base(credentials.idp)
    http = requests.Session()
    try:
        controls = _json(http.get(f"{idp}.account/", timeout=timeout), "Account discovery").get("controls", {})
        login = _json(
            http.post(
                _control(controls, "password", "login"),
                json={"email": credentials.email, "password": credentials.password},
                timeout=timeout,
            ),
            "Login",
        )
        token = login.get("authorization")
        if not token:
            raise AuthError("Login did not return an account token")

        http.headers["Authorization"] = f"CSS-Account-Token {token}"
        controls = _json(http.get(f"{idp}.account/", timeout=timeout), "Account controls").get("controls", {})
        web_id = credentials.web_id or _resolve_web_id(http, controls, timeout)

        created = _json(
            http.post(
                _control(controls, "account", "clientCredentials"),
                json={"name": credentials.name, "webId": web_id},
                timeout=timeout,
            ),
            "Client credentials",
        )
    except requests.RequestException as exc:
        raise AuthError(f"Cannot reach identity provider {idp}: {exc}") from exc
    finally:
        http.close()

    if not created.get("id") or not created.get("secret"):
        raise AuthError("Identity provider returned an incomplete client credential")
    return created["id"], created["secret"], web_id


def request_access_token(idp: str, client_id: str, client_secret: str, timeout: float = 30.0) -> str:
    """Exchange client credentials for an access token."""

    idp = _base(idp)
    http = requests.Session()
    try:
        endpoint = _token_endpoint(http, idp, timeout)
        payload = _json(
            http.post(
                endpoint,
                auth=(quote(client_id, safe=""), quote(client_secret, safe="")),
                data={"grant_type": "client_credentials", "scope": "webid"},
                timeout=timeout,
            ),
            "Token request",
        )
    except requests.RequestException as exc:
        raise AuthError(f"Cannot reach token endpoint at {idp}: {exc}") from exc
    finally:
        http.close()

    access_token = payload.get("access_token")
    if not access_token:
        raise AuthError("Token response has no access_token")
    return access_token


def login(credentials: Credentials, timeout: float = 30.0) -> SolidSession:
    """Run the full client-credentials flow and return an authenticated session."""

    client_id, client_secret, web_id = generate_client_token(credentials, timeout)
    access_token = request_access_token(credentials.idp, client_id, client_secret, timeout)

    http = requests.Session()
    http.headers["Authorization"] = f"Bearer {access_token}"
    LOGGER.info("Logged in as %s", web_id)
    return SolidSession(http, web_id=web_id, timeout=timeout)


async def authenticate(
    credentials: Credentials,
    base_url: str,
    timeout: float = 30.0,
) -> Tuple[SolidSession, SolidContainers]:
    """Authenticator used by InboxWatcher.create()."""

    LOGGER.debug("Authenticating against %s for %s", credentials.idp, base_url)
    session = await asyncio.to_thread(login, credentials, timeout)
    return session, SolidContainers(session)
