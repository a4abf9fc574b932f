from __future__ import annotations

import asyncio
from typing import Optional

import pytest
import requests
from rdflib import Graph, URIRef

from evno.adapters.solid import ACL, SolidContainers, SolidSession, parent_container
from evno.core.errors import FetchError, ListingError, PermissionUpdateError
from evno.core.models import Permission

POD = "https://pod.example/alice/"
POD_ACL = "https://pod.example/alice/.acl"
INBOX = "https://pod.example/alice/inbox/"
ACL_URL = "https://pod.example/alice/inbox/.acl"
WEB_ID = "https://pod.example/alice/profile/card#me"


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        content: bytes = b"",
        headers: Optional[dict[str, str]] = None,
        links: Optional[dict] = None,
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.links = links or {}
        self.url = url

    @property
    def ok(self) -> bool:
        return self.status_code < 400


class FakeHttp:
    """Routes (method, url) pairs to canned responses and records calls."""

    def __init__(self, routes: dict[tuple[str, str], FakeResponse]) -> None:
        self.routes = routes
        self.calls: list[tuple[str, str, dict]] = []

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        response = self.routes.get((method, url))
        if response is None:
            raise requests.ConnectionError(f"no route for {method} {url}")
        return response

    def close(self) -> None:
        pass


def _containers(routes: dict[tuple[str, str], FakeResponse]) -> tuple[SolidContainers, FakeHttp]:
    http = FakeHttp(routes)
    return SolidContainers(SolidSession(http, web_id=WEB_ID)), http


def test_list_returns_contained_resources_in_server_order() -> None:
    listing = b"""
        @prefix ldp: <http://www.w3.org/ns/ldp#> .
        <> a ldp:Container ;
           ldp:contains <c.jsonld>, <a.jsonld>, <b.jsonld> .
    """
    containers, http = _containers(
        {("GET", INBOX): FakeResponse(content=listing, headers={"Content-Type": "text/turtle"})}
    )

    resources = asyncio.run(containers.list(INBOX))

    assert [r.url for r in resources] == [f"{INBOX}c.jsonld", f"{INBOX}a.jsonld", f"{INBOX}b.jsonld"]
    assert http.calls[0][2]["headers"] == {"Accept": "text/turtle"}


def test_list_http_error_raises_listing_error() -> None:
    containers, _ = _containers({("GET", INBOX): FakeResponse(status_code=403)})

    with pytest.raises(ListingError):
        asyncio.run(containers.list(INBOX))


def test_list_transport_error_raises_listing_error() -> None:
    containers, _ = _containers({})

    with pytest.raises(ListingError):
        asyncio.run(containers.list(INBOX))


def test_fetch_returns_body_and_content_type() -> None:
    url = f"{INBOX}a.jsonld"
    http = FakeHttp(
        {("GET", url): FakeResponse(content=b"{}", headers={"Content-Type": "application/ld+json"}, url=url)}
    )

    fetched = asyncio.run(SolidSession(http, web_id=WEB_ID).fetch(url))

    assert fetched.body == b"{}"
    assert fetched.content_type == "application/ld+json"
    assert http.calls[0][2]["timeout"] == 30.0


def test_fetch_http_error_raises_fetch_error() -> None:
    url = f"{INBOX}gone"
    http = FakeHttp({("GET", url): FakeResponse(status_code=404)})

    with pytest.raises(FetchError) as excinfo:
        asyncio.run(SolidSession(http, web_id=WEB_ID).fetch(url))
    assert excinfo.value.url == url


def test_make_directory_puts_basic_container() -> None:
    containers, http = _containers({("PUT", INBOX): FakeResponse(status_code=201)})

    asyncio.run(containers.make_directory(INBOX))

    method, url, kwargs = http.calls[0]
    assert (method, url) == ("PUT", INBOX)
    assert kwargs["headers"]["Content-Type"] == "text/turtle"
    assert "BasicContainer" in kwargs["headers"]["Link"]


def test_change_permissions_writes_acl_only_when_needed() -> None:
    routes = {
        ("HEAD", INBOX): FakeResponse(links={"acl": {"url": ".acl", "rel": "acl"}}),
        ("GET", ACL_URL): FakeResponse(status_code=404),
        ("PUT", ACL_URL): FakeResponse(status_code=201),
        # The parent ACL exists but grants nothing by default.
        ("HEAD", POD): FakeResponse(links={"acl": {"url": ".acl", "rel": "acl"}}),
        ("GET", POD_ACL): FakeResponse(content=b"", headers={"Content-Type": "text/turtle"}),
    }
    containers, http = _containers(routes)
    permission = Permission(agent=WEB_ID, append=True, read=True)

    asyncio.run(containers.change_permissions(INBOX, [permission]))

    puts = [call for call in http.calls if call[0] == "PUT"]
    assert len(puts) == 1
    written = Graph().parse(data=puts[0][2]["data"], format="turtle", publicID=ACL_URL)
    modes = set(written.objects(None, ACL.mode))
    assert modes == {ACL.Append, ACL.Read}
    assert (None, ACL.agent, URIRef(WEB_ID)) in written

    # The pod now serves what was written; granting again changes nothing.
    routes[("GET", ACL_URL)] = FakeResponse(content=puts[0][2]["data"], headers={"Content-Type": "text/turtle"})
    asyncio.run(containers.change_permissions(INBOX, [permission]))

    assert len([call for call in http.calls if call[0] == "PUT"]) == 1


def test_change_permissions_without_acl_link_fails() -> None:
    containers, _ = _containers({("HEAD", INBOX): FakeResponse()})

    with pytest.raises(PermissionUpdateError):
        asyncio.run(containers.change_permissions(INBOX, [Permission(agent=WEB_ID, read=True)]))


OWNER_ACL = f"""
@prefix acl: <http://www.w3.org/ns/auth/acl#> .
<#owner> a acl:Authorization ;
    acl:agent <{WEB_ID}> ;
    acl:accessTo <{POD}> ;
    acl:default <{POD}> ;
    acl:mode acl:Read, acl:Write, acl:Control .
""".encode("utf-8")


class FakePod:
    """Serves ACLs and enforces acl:Control for the WebID on the inbox ACL."""

    def __init__(self) -> None:
        self.inbox_acl: Optional[bytes] = None
        self.puts = 0

    def _has_control(self) -> bool:
        graph = Graph().parse(data=self.inbox_acl, format="turtle", publicID=ACL_URL)
        for node in graph.subjects(ACL.agent, URIRef(WEB_ID)):
            if (node, ACL.mode, ACL.Control) in graph and (node, ACL.accessTo, URIRef(INBOX)) in graph:
                return True
        return False

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        if method == "HEAD" and url in (POD, INBOX):
            return FakeResponse(links={"acl": {"url": ".acl", "rel": "acl"}})
        if (method, url) == ("GET", POD_ACL):
            return FakeResponse(content=OWNER_ACL, headers={"Content-Type": "text/turtle"})
        if url == ACL_URL:
            if self.inbox_acl is None:
                if method == "GET":
                    return FakeResponse(status_code=404)
            elif not self._has_control():
                return FakeResponse(status_code=403)
            if method == "GET":
                return FakeResponse(content=self.inbox_acl, headers={"Content-Type": "text/turtle"})
            if method == "PUT":
                self.inbox_acl = kwargs["data"]
                self.puts += 1
                return FakeResponse(status_code=201)
        return FakeResponse(status_code=404)

    def close(self) -> None:
        pass


def test_new_acl_keeps_inherited_owner_control() -> None:
    pod = FakePod()
    containers = SolidContainers(SolidSession(pod, web_id=WEB_ID))
    permission = Permission(agent=WEB_ID, append=True, read=True)

    asyncio.run(containers.change_permissions(INBOX, [permission]))
    asyncio.run(containers.change_permissions(INBOX, [permission]))

    assert pod.puts == 1
    assert pod._has_control()
    written = Graph().parse(data=pod.inbox_acl, format="turtle", publicID=ACL_URL)
    assert (None, ACL.default, URIRef(INBOX)) in written
    assert (None, ACL.accessTo, URIRef(POD)) not in written


def test_parent_container_walks_up_to_root() -> None:
    assert parent_container(INBOX) == POD
    assert parent_container(f"{INBOX}item.jsonld") == INBOX
    assert parent_container("https://pod.example/") is None
