"""Miniflux REST client.

Every public method returns ``(result, error)`` and never raises: transport
failures, HTTP errors and malformed payloads all come back as a
``GatewayError`` so callers can fall back to the pending-mutation queue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from miniflux_offline.models import (
    COLLECTION_CATEGORY,
    COLLECTION_FEED,
    ENTRY_STATUSES,
    STATUS_READ,
    STATUS_UNREAD,
    EntriesPage,
    Entry,
    EntryQuery,
    UserConfig,
)
from miniflux_offline.parsing import parse_entries_page, parse_entry

logger = logging.getLogger(__name__)

AUTH_HEADER = "X-Auth-Token"
USER_AGENT = "miniflux-offline/0.1"


@dataclass(slots=True, frozen=True)
class GatewayError:
    """Failure of one gateway call.

    ``transport`` is True when no HTTP response was received at all
    (offline, DNS failure, timeout).
    """

    message: str
    status_code: int | None = None
    transport: bool = False


def build_entries_params(query: EntryQuery | None) -> list[tuple[str, str]]:
    """Translate an EntryQuery into GET /v1/entries query parameters.

    ``status`` is repeated once per value and omitted entirely when the set is
    exactly unread+read, which is what the server returns without a filter.
    """
    if query is None:
        return []
    params: list[tuple[str, str]] = []
    statuses = tuple(dict.fromkeys(query.status))
    if statuses and set(statuses) != {STATUS_UNREAD, STATUS_READ}:
        params.extend(("status", status) for status in statuses)
    if query.order:
        params.append(("order", query.order))
    if query.direction:
        params.append(("direction", query.direction))
    if query.limit is not None:
        params.append(("limit", str(query.limit)))
    if query.offset is not None:
        params.append(("offset", str(query.offset)))
    if query.feed_id is not None:
        params.append(("feed_id", str(query.feed_id)))
    if query.category_id is not None:
        params.append(("category_id", str(query.category_id)))
    if query.search:
        params.append(("search", query.search))
    if query.starred is not None:
        params.append(("starred", "true" if query.starred else "false"))
    if query.published_before is not None:
        params.append(("published_before", str(query.published_before)))
    if query.published_after is not None:
        params.append(("published_after", str(query.published_after)))
    return params


def _valid_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _error_message(response: httpx.Response, label: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("error_message"), str):
        return f"{label} failed: {payload['error_message']}"
    return f"{label} returned HTTP {response.status_code}"


class MinifluxGateway:
    """Stateless request layer keyed by server address and API token."""

    def __init__(
        self,
        server_address: str,
        api_token: str,
        *,
        client: httpx.Client | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.base_url = server_address.strip().rstrip("/")
        self.api_token = api_token.strip()
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout_seconds, follow_redirects=True)

    @classmethod
    def from_config(cls, config: UserConfig, client: httpx.Client | None = None) -> MinifluxGateway:
        return cls(
            config.server_address,
            config.api_token,
            client=client,
            timeout_seconds=config.request_timeout_seconds,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> MinifluxGateway:
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        label: str,
        params: list[tuple[str, str]] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> tuple[httpx.Response | None, GatewayError | None]:
        if not self.base_url:
            return None, GatewayError("Server address is not configured")
        headers = {
            AUTH_HEADER: self.api_token,
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        try:
            response = self._client.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json_body,
                headers=headers,
            )
        except httpx.TimeoutException:
            logger.info("%s timed out", label)
            return None, GatewayError(f"{label} timed out", transport=True)
        except httpx.HTTPError as e:
            logger.info("%s transport error: %s", label, e)
            return None, GatewayError(f"{label} failed: {e}", transport=True)

        if response.status_code >= 400:
            logger.warning("%s returned %d", label, response.status_code)
            return None, GatewayError(
                _error_message(response, label), status_code=response.status_code
            )
        return response, None

    def _get_json(
        self,
        path: str,
        *,
        label: str,
        params: list[tuple[str, str]] | None = None,
    ) -> tuple[Any, GatewayError | None]:
        response, error = self._request("GET", path, label=label, params=params)
        if error is not None or response is None:
            return None, error
        try:
            return response.json(), None
        except ValueError:
            logger.warning("%s returned invalid JSON", label, exc_info=True)
            return None, GatewayError(
                f"{label} returned invalid JSON", status_code=response.status_code
            )

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def _get_page(
        self, path: str, query: EntryQuery | None, label: str
    ) -> tuple[EntriesPage | None, GatewayError | None]:
        payload, error = self._get_json(path, label=label, params=build_entries_params(query))
        if error is not None:
            return None, error
        page = parse_entries_page(payload)
        if page is None:
            logger.warning("%s returned unexpected payload", label)
            return None, GatewayError(f"{label} returned an unexpected payload")
        return page, None

    def get_entries(
        self, query: EntryQuery | None = None
    ) -> tuple[EntriesPage | None, GatewayError | None]:
        return self._get_page("/v1/entries", query, "List entries")

    def get_feed_entries(
        self, feed_id: int, query: EntryQuery | None = None
    ) -> tuple[EntriesPage | None, GatewayError | None]:
        if not _valid_id(feed_id):
            return None, GatewayError(f"Invalid feed id: {feed_id!r}")
        return self._get_page(f"/v1/feeds/{feed_id}/entries", query, f"Feed {feed_id} entries")

    def get_category_entries(
        self, category_id: int, query: EntryQuery | None = None
    ) -> tuple[EntriesPage | None, GatewayError | None]:
        if not _valid_id(category_id):
            return None, GatewayError(f"Invalid category id: {category_id!r}")
        return self._get_page(
            f"/v1/categories/{category_id}/entries", query, f"Category {category_id} entries"
        )

    def get_entry(self, entry_id: int) -> tuple[Entry | None, GatewayError | None]:
        if not _valid_id(entry_id):
            return None, GatewayError(f"Invalid entry id: {entry_id!r}")
        label = f"Entry {entry_id}"
        payload, error = self._get_json(f"/v1/entries/{entry_id}", label=label)
        if error is not None:
            return None, error
        entry = parse_entry(payload)
        if entry is None:
            return None, GatewayError(f"{label} returned an unexpected payload")
        return entry, None

    def update_entries(
        self,
        entry_ids: int | list[int],
        status: str,
        extra: dict[str, Any] | None = None,
    ) -> tuple[bool, GatewayError | None]:
        """Set the status of one or many entries in a single request.

        Extra body fields are merged into the payload. Returns (True, None)
        on any 2xx response.
        """
        ids = [entry_ids] if isinstance(entry_ids, int) else list(entry_ids)
        if not ids:
            return False, GatewayError("No entry ids given")
        if not all(_valid_id(entry_id) for entry_id in ids):
            return False, GatewayError(f"Invalid entry ids: {ids!r}")
        if status not in ENTRY_STATUSES:
            return False, GatewayError(f"Invalid status: {status!r}")
        body: dict[str, Any] = {"entry_ids": ids, "status": status}
        if extra:
            body.update(extra)
        _response, error = self._request(
            "PUT", "/v1/entries", label=f"Update {len(ids)} entries", json_body=body
        )
        return error is None, error

    def toggle_bookmark(self, entry_id: int) -> tuple[bool, GatewayError | None]:
        if not _valid_id(entry_id):
            return False, GatewayError(f"Invalid entry id: {entry_id!r}")
        _response, error = self._request(
            "PUT", f"/v1/entries/{entry_id}/bookmark", label=f"Bookmark entry {entry_id}"
        )
        return error is None, error

    # ------------------------------------------------------------------
    # Feeds and categories
    # ------------------------------------------------------------------

    def mark_collection_as_read(
        self, kind: str, collection_id: int
    ) -> tuple[bool, GatewayError | None]:
        if kind not in (COLLECTION_FEED, COLLECTION_CATEGORY):
            return False, GatewayError(f"Unknown collection kind: {kind!r}")
        if not _valid_id(collection_id):
            return False, GatewayError(f"Invalid {kind} id: {collection_id!r}")
        segment = "feeds" if kind == COLLECTION_FEED else "categories"
        _response, error = self._request(
            "PUT",
            f"/v1/{segment}/{collection_id}/mark-all-as-read",
            label=f"Mark {kind} {collection_id} as read",
        )
        return error is None, error

    def mark_feed_as_read(self, feed_id: int) -> tuple[bool, GatewayError | None]:
        return self.mark_collection_as_read(COLLECTION_FEED, feed_id)

    def mark_category_as_read(self, category_id: int) -> tuple[bool, GatewayError | None]:
        return self.mark_collection_as_read(COLLECTION_CATEGORY, category_id)

    def get_feeds(self) -> tuple[list[dict[str, Any]] | None, GatewayError | None]:
        payload, error = self._get_json("/v1/feeds", label="List feeds")
        if error is not None:
            return None, error
        if not isinstance(payload, list):
            return None, GatewayError("List feeds returned an unexpected payload")
        return [item for item in payload if isinstance(item, dict)], None

    def get_categories(
        self, include_counts: bool = True
    ) -> tuple[list[dict[str, Any]] | None, GatewayError | None]:
        params = [("counts", "true")] if include_counts else None
        payload, error = self._get_json("/v1/categories", label="List categories", params=params)
        if error is not None:
            return None, error
        if not isinstance(payload, list):
            return None, GatewayError("List categories returned an unexpected payload")
        return [item for item in payload if isinstance(item, dict)], None

    def get_feed_counters(
        self,
    ) -> tuple[dict[str, dict[int, int]] | None, GatewayError | None]:
        """Return ``{"reads": {feed_id: n}, "unreads": {feed_id: n}}``."""
        payload, error = self._get_json("/v1/feeds/counters", label="Feed counters")
        if error is not None:
            return None, error
        if not isinstance(payload, dict):
            return None, GatewayError("Feed counters returned an unexpected payload")
        counters: dict[str, dict[int, int]] = {}
        for key in ("reads", "unreads"):
            raw = payload.get(key)
            parsed: dict[int, int] = {}
            if isinstance(raw, dict):
                for feed_id, count in raw.items():
                    try:
                        parsed[int(feed_id)] = int(count)
                    except (TypeError, ValueError):
                        continue
            counters[key] = parsed
        return counters, None

    def get_me(self) -> tuple[dict[str, Any] | None, GatewayError | None]:
        """Fetch the current user; doubles as a connection test."""
        payload, error = self._get_json("/v1/me", label="Current user")
        if error is not None:
            return None, error
        if not isinstance(payload, dict):
            return None, GatewayError("Current user returned an unexpected payload")
        return payload, None


__all__ = [
    "AUTH_HEADER",
    "GatewayError",
    "MinifluxGateway",
    "build_entries_params",
]
