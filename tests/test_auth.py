from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from evno import auth
from evno.adapters.solid import SolidContainers
from evno.auth import Credentials
from evno.core.errors import AuthError

IDP = "https://idp.example/"
WEB_ID = "https://idp.example/alice/profile/card#me"


class FakeResponse:
    def __init__(self, payload: Optional[dict] = None, status_code: int = 200) -> None:
        self._payload = payload or {}
        self.status_code = status_code

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> dict:
        return self._payload


class FakeIdp:
    """Minimal account API + OIDC token endpoint."""

    def __init__(self, password: str = "secret") -> None:
        self.password = password
        self.token_auth = None

    def get(self, url: str, headers: dict) -> FakeResponse:
        if url == f"{IDP}.account/":
            controls = {"password": {"login": f"{IDP}.account/login/password/"}}
            if headers.get("Authorization") == "CSS-Account-Token acc-token":
                controls["account"] = {
                    "webId": f"{IDP}.account/account/1/webid/",
                    "clientCredentials": f"{IDP}.account/account/1/client-credentials/",
                }
            return FakeResponse({"controls": controls})
        if url == f"{IDP}.account/account/1/webid/":
            return FakeResponse({"webIdLinks": {WEB_ID: f"{IDP}.account/link/1"}})
        if url == f"{IDP}.well-known/openid-configuration":
            return FakeResponse({"token_endpoint": f"{IDP}.oidc/token"})
        return FakeResponse(status_code=404)

    def post(self, url: str, json=None, data=None, auth=None) -> FakeResponse:
        if url == f"{IDP}.account/login/password/":
            if json["password"] != self.password:
                return FakeResponse(status_code=403)
            return FakeResponse({"authorization": "acc-token"})
        if url == f"{IDP}.account/account/1/client-credentials/":
            assert json == {"name": "evno", "webId": WEB_ID}
            return FakeResponse({"id": "evno_1", "secret": "s3cr3t"})
        if url == f"{IDP}.oidc/token":
            self.token_auth = auth
            assert data["grant_type"] == "client_credentials"
            return FakeResponse({"access_token": "at-123", "token_type": "Bearer"})
        return FakeResponse(status_code=404)


def _install(monkeypatch, idp: FakeIdp) -> None:
    class FakeSession:
        def __init__(self) -> None:
            self.headers: dict[str, str] = {}

        def get(self, url: str, timeout: float) -> FakeResponse:
            return idp.get(url, self.headers)

        def post(self, url: str, timeout: float, **kwargs) -> FakeResponse:
            return idp.post(url, **kwargs)

        def close(self) -> None:
            pass

    monkeypatch.setattr(auth.requests, "Session", FakeSession)


def _credentials(password: str = "secret") -> Credentials:
    return Credentials(name="evno", email="alice@example.org", password=password, idp=IDP)


def test_login_binds_bearer_token_and_web_id(monkeypatch) -> None:
    idp = FakeIdp()
    _install(monkeypatch, idp)

    session, containers = asyncio.run(auth.authenticate(_credentials(), "https://pod.example/alice/"))

    assert session.web_id == WEB_ID
    assert isinstance(containers, SolidContainers)
    assert idp.token_auth == ("evno_1", "s3cr3t")
    assert session._http.headers["Authorization"] == "Bearer at-123"


def test_wrong_password_raises_auth_error(monkeypatch) -> None:
    _install(monkeypatch, FakeIdp())

    with pytest.raises(AuthError):
        auth.login(_credentials(password="nope"))


def test_missing_controls_raise_auth_error() -> None:
    with pytest.raises(AuthError):
        auth._control({"password": {}}, "password", "login")
