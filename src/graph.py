"""Thin Microsoft Graph client used by the device group sync.

Only the handful of calls the reconciliation needs are wrapped here. Response
shapes are normalised at this boundary so callers never inspect raw JSON
envelopes for paging or the empty-membership sentinel.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Union

import requests

from config import GRAPH_BATCH_LIMIT, get_logger
from errors import GraphApiError, MembershipReadError

if TYPE_CHECKING:
    from credentials import GraphCredential

logger = get_logger(service="graph")

_ODATA_CONTEXT = "@odata.context"
_ODATA_NEXT_LINK = "@odata.nextLink"


@dataclass(frozen=True)
class EmptyResult:
    """The backend stated that the collection has no members at all."""


@dataclass(frozen=True)
class Page:
    items: tuple[dict, ...]
    next_link: Optional[str] = None


PagedResult = Union[EmptyResult, Page]


def parse_paged_result(body: Any) -> PagedResult:
    """Resolve a collection response into EmptyResult or Page.

    Graph answers either with a bare list or with an envelope holding
    ``value`` and ``@odata.context``. An envelope whose ``value`` is empty is
    the sentinel for "zero members"; anything else is a page.
    """
    if isinstance(body, list):
        return Page(items=tuple(body))
    if not isinstance(body, dict):
        raise GraphApiError(f"Unexpected collection response type: {type(body).__name__}")

    value = body.get("value")
    if _ODATA_CONTEXT in body and "value" in body and not value:
        return EmptyResult()
    if value is None:
        value = []
    if not isinstance(value, list):
        raise GraphApiError(f"Unexpected 'value' type in collection response: {type(value).__name__}")
    return Page(items=tuple(value), next_link=body.get(_ODATA_NEXT_LINK))


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason or "Unknown error"
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return response.reason or "Unknown error"
    return error.get("message") or error.get("code") or response.reason


class GraphClient:
    def __init__(
        self,
        credential: GraphCredential,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
    ) -> None:
        self._credential = credential
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout

    def _url(self, path: str) -> str:
        if path.startswith("https://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, body: Optional[dict] = None) -> requests.Response:
        url = self._url(path)
        headers = self._credential.authorization_header() | {"Content-Type": "application/json"}
        try:
            response = self._session.request(method, url, headers=headers, json=body, timeout=self._timeout)
        except requests.RequestException as e:
            raise GraphApiError(f"{method} {url} failed: {e}") from e

        if not response.ok:
            raise GraphApiError(f"{method} {url}: {_error_message(response)}", status_code=response.status_code)
        logger.debug(f"{method} {url} -> {response.status_code}")
        return response

    def _json(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise GraphApiError(f"Invalid JSON in response from {response.url}: {e}", status_code=response.status_code) from e

    def directory_object_url(self, object_id: str) -> str:
        return f"{self._base_url}/directoryObjects/{object_id}"

    def get_page(self, path: str) -> PagedResult:
        return parse_paged_result(self._json(self._request("GET", path)))

    def read_group_members(self, group_id: str) -> PagedResult:
        """Read every member of a group, following @odata.nextLink.

        Returns EmptyResult when the first page is the empty sentinel, otherwise a
        single Page holding all members and no continuation.

        Raises:
            MembershipReadError: If any page cannot be read.
        """
        try:
            first = self.get_page(f"groups/{group_id}/members")
            if isinstance(first, EmptyResult):
                return first

            items = list(first.items)
            next_link = first.next_link
            pages = 1
            while next_link:
                page = self.get_page(next_link)
                pages += 1
                if isinstance(page, EmptyResult):
                    break
                items.extend(page.items)
                next_link = page.next_link
        except GraphApiError as e:
            raise MembershipReadError(f"Failed to read members of group {group_id}: {e.message}", status_code=e.status_code) from e

        logger.debug(f"Read {len(items)} members of group {group_id} in {pages} page(s)")
        return Page(items=tuple(items))

    def batch(self, requests_: list[dict]) -> list[dict]:
        """Send a JSON batch and return the list of sub-responses."""
        if len(requests_) > GRAPH_BATCH_LIMIT:
            raise ValueError(f"A batch can hold at most {GRAPH_BATCH_LIMIT} requests, got {len(requests_)}")
        body = self._json(self._request("POST", "$batch", {"requests": requests_}))
        responses = body.get("responses") if isinstance(body, dict) else None
        if responses is None:
            return []
        if not isinstance(responses, list):
            raise GraphApiError(f"Unexpected 'responses' type in batch response: {type(responses).__name__}")
        return responses

    def add_members(self, group_id: str, object_ids: list[str]) -> None:
        if len(object_ids) > GRAPH_BATCH_LIMIT:
            raise ValueError(f"At most {GRAPH_BATCH_LIMIT} members can be bound per request, got {len(object_ids)}")
        body = {"members@odata.bind": [self.directory_object_url(object_id) for object_id in object_ids]}
        self._request("PATCH", f"groups/{group_id}", body)

    def remove_member(self, group_id: str, object_id: str) -> None:
        self._request("DELETE", f"groups/{group_id}/members/{object_id}/$ref")
