"""Solid pod adapters.

SolidSession is the authenticated fetch capability; SolidContainers lists,
creates and grants access to containers. Both use a blocking requests.Session
pushed onto a worker thread so the watcher loop stays responsive.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

import requests
from rdflib import RDF, Graph, Namespace, URIRef

from evno.core.errors import (
    ContainerError,
    FetchError,
    ListingError,
    ParseError,
    PermissionUpdateError,
)
from evno.core.ingest import DEFAULT_MEDIA_TYPE, parse_statements
from evno.core.models import FetchedResource, InboxResource, Permission

LOGGER = logging.getLogger(__name__)

LDP = Namespace("http://www.w3.org/ns/ldp#")
ACL = Namespace("http://www.w3.org/ns/auth/acl#")

TURTLE = "text/turtle"


class SolidSession:
    """HTTP session bound to one authenticated WebID."""

    def __init__(
        self,
        http: requests.Session,
        web_id: Optional[str],
        timeout: float = 30.0,
    ) -> None:
        self._http = http
        self.web_id = web_id
        self._timeout = timeout

    def request(self, method: str, url: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self._timeout)
        return self._http.request(method, url, **kwargs)

    async def arequest(self, method: str, url: str, **kwargs) -> requests.Response:
        return await asyncio.to_thread(self.request, method, url, **kwargs)

    async def fetch(self, url: str) -> FetchedResource:
        """GET one inbox item, raising FetchError on transport or HTTP failure."""

        try:
            response = await self.arequest("GET", url, headers={"Accept": DEFAULT_MEDIA_TYPE})
        except requests.RequestException as exc:
            raise FetchError(url, str(exc)) from exc
        if not response.ok:
            raise FetchError(url, f"HTTP {response.status_code}")
        return FetchedResource(
            url=response.url or url,
            content_type=response.headers.get("Content-Type"),
            body=response.content,
        )

    def close(self) -> None:
        self._http.close()


def _authorization_node(acl_url: str, agent: str) -> URIRef:
    # Deterministic per agent so repeated grants land on the same node.
    digest = hashlib.sha256(agent.encode("utf-8")).hexdigest()[:16]
    return URIRef(f"{acl_url}#evno-{digest}")


def _modes(permission: Permission) -> List[URIRef]:
    modes = []
    if permission.read:
        modes.append(ACL.Read)
    if permission.append:
        modes.append(ACL.Append)
    if permission.write:
        modes.append(ACL.Write)
    if permission.control:
        modes.append(ACL.Control)
    return modes


def parent_container(url: str) -> Optional[str]:
    """Return the container holding ``url``, or None at the pod root."""

    parts = urlsplit(url)
    path = parts.path.rstrip("/")
    if not path:
        return None
    return urlunsplit((parts.scheme, parts.netloc, path[: path.rfind("/") + 1], "", ""))


def inherit_authorizations(
    source: Graph,
    container_url: str,
    target: Graph,
    acl_url: str,
    resource_url: str,
) -> None:
    """Copy the ``acl:default`` authorizations of a container onto a resource.

    WAC stops inheriting once a resource has its own ACL, so a fresh ACL must
    carry over what the resource used to inherit, owner Control included.
    """

    resource = URIRef(resource_url)
    for index, authorization in enumerate(set(source.subjects(ACL.default, URIRef(container_url)))):
        node = URIRef(f"{acl_url}#inherited-{index}")
        for _, predicate, obj in source.triples((authorization, None, None)):
            if predicate in (ACL.accessTo, ACL.default):
                continue
            target.add((node, predicate, obj))
        target.add((node, ACL.accessTo, resource))
        if resource_url.endswith("/"):
            target.add((node, ACL.default, resource))


def apply_permissions(graph: Graph, acl_url: str, resource_url: str, permissions: Sequence[Permission]) -> bool:
    """Add WAC authorizations to ``graph``; return True if anything changed."""

    before = len(graph)
    resource = URIRef(resource_url)
    for permission in permissions:
        node = _authorization_node(acl_url, permission.agent)
        graph.add((node, RDF.type, ACL.Authorization))
        graph.add((node, ACL.agent, URIRef(permission.agent)))
        graph.add((node, ACL.accessTo, resource))
        if resource_url.endswith("/"):
            graph.add((node, ACL.default, resource))
        for mode in _modes(permission):
            graph.add((node, ACL.mode, mode))
    return len(graph) != before


class SolidContainers:
    """Container listing, creation and WAC permission changes."""

    def __init__(self, session: SolidSession) -> None:
        self._session = session

    async def list(self, container_url: str) -> List[InboxResource]:
        """Return the container's ldp:contains members in server order."""

        try:
            response = await self._session.arequest("GET", container_url, headers={"Accept": TURTLE})
        except requests.RequestException as exc:
            raise ListingError(f"Cannot list {container_url}: {exc}") from exc
        if not response.ok:
            raise ListingError(f"Cannot list {container_url}: HTTP {response.status_code}")

        try:
            statements = await asyncio.to_thread(
                parse_statements,
                response.content,
                response.headers.get("Content-Type") or TURTLE,
                container_url,
            )
        except ParseError as exc:
            raise ListingError(f"Cannot read listing of {container_url}: {exc}") from exc

        resources: List[InboxResource] = []
        seen = set()
        for _subject, predicate, obj in statements:
            if predicate != LDP.contains:
                continue
            url = str(obj)
            if url in seen:
                continue
            seen.add(url)
            resources.append(InboxResource(url=url))
        return resources

    async def make_directory(self, url: str) -> None:
        """Create an empty container at ``url``."""

        headers = {
            "Content-Type": TURTLE,
            "Link": f'<{LDP.BasicContainer}>; rel="type"',
        }
        try:
            response = await self._session.arequest("PUT", url, headers=headers, data=b"")
        except requests.RequestException as exc:
            raise ContainerError(f"Cannot create {url}: {exc}") from exc
        if not response.ok:
            raise ContainerError(f"Cannot create {url}: HTTP {response.status_code}")

    async def _read_acl(self, url: str) -> Tuple[str, Optional[Graph]]:
        """Return (acl url, parsed ACL) for ``url``; the graph is None on 404."""

        head = await self._session.arequest("HEAD", url)
        acl_link = head.links.get("acl", {}).get("url")
        if not acl_link:
            raise PermissionUpdateError(f"No ACL advertised for {url}")
        acl_url = urljoin(url, acl_link)

        current = await self._session.arequest("GET", acl_url, headers={"Accept": TURTLE})
        if current.status_code == 404:
            return acl_url, None
        if not current.ok:
            raise PermissionUpdateError(f"Cannot read ACL {acl_url}: HTTP {current.status_code}")
        graph = Graph()
        graph.parse(data=current.content, format="turtle", publicID=acl_url)
        return acl_url, graph

    async def _inherited_acl(self, url: str, acl_url: str) -> Graph:
        """Build a starting ACL for ``url`` from its nearest ancestor ACL."""

        graph = Graph()
        container = parent_container(url)
        while container is not None:
            _, parent_graph = await self._read_acl(container)
            if parent_graph is not None:
                inherit_authorizations(parent_graph, container, graph, acl_url, url)
                LOGGER.debug("Seeded ACL for %s from %s", url, container)
                return graph
            container = parent_container(container)
        return graph

    async def change_permissions(self, url: str, permissions: Sequence[Permission]) -> None:
        """Grant ``permissions`` on ``url`` by editing its ACL resource.

        A resource without its own ACL starts from the authorizations it used
        to inherit. The ACL is only written back when a grant is missing, so
        repeating the call leaves the pod untouched.
        """

        try:
            acl_url, graph = await self._read_acl(url)
            if graph is None:
                graph = await self._inherited_acl(url, acl_url)

            if not apply_permissions(graph, acl_url, url, permissions):
                LOGGER.debug("Permissions on %s already granted", url)
                return

            body = graph.serialize(format="turtle")
            response = await self._session.arequest(
                "PUT",
                acl_url,
                headers={"Content-Type": TURTLE},
                data=body.encode("utf-8"),
            )
        except requests.RequestException as exc:
            raise PermissionUpdateError(f"Cannot change permissions on {url}: {exc}") from exc
        except PermissionUpdateError:
            raise
        except Exception as exc:
            raise PermissionUpdateError(f"Cannot change permissions on {url}: {exc}") from exc
        if not response.ok:
            raise PermissionUpdateError(f"Cannot write ACL {acl_url}: HTTP {response.status_code}")
        LOGGER.info("Updated ACL %s", acl_url)
