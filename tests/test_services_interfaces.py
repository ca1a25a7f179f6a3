"""Tests for service interface adapters and defaults."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx

from miniflux_offline.content import HtmlContentPipeline
from miniflux_offline.gateway import MinifluxGateway
from miniflux_offline.images import ImageFetcher
from miniflux_offline.queue_store import MutationQueueStore
from miniflux_offline.services.cancellation import SilentPrompter
from miniflux_offline.services.interfaces import (
    AppServices,
    ContentPipeline,
    DownloadPrompter,
    Gateway,
    ImageDownloader,
    MutationQueue,
    build_default_app_services,
)


def test_build_default_app_services_protocol_compatible(make_config, tmp_path) -> None:
    services = build_default_app_services(
        make_config(), queue_dir=tmp_path / "queue", download_root=tmp_path / "entries"
    )
    try:
        assert isinstance(services, AppServices)
        assert isinstance(services.gateway, Gateway)
        assert isinstance(services.queue, MutationQueue)
        assert isinstance(services.pipeline, ContentPipeline)
        assert isinstance(services.fetcher, ImageDownloader)
        assert services.store.root == tmp_path / "entries"
        assert services.queue_dir == tmp_path / "queue"
        assert services.cache.holders == 1
    finally:
        services.close()
    assert services.cache.holders == 0


def test_concrete_types_satisfy_protocols(tmp_path) -> None:
    assert isinstance(MinifluxGateway("https://x", "t", client=MagicMock()), Gateway)
    assert isinstance(MutationQueueStore(tmp_path), MutationQueue)
    assert isinstance(HtmlContentPipeline(), ContentPipeline)
    assert isinstance(ImageFetcher(client=MagicMock()), ImageDownloader)
    assert isinstance(SilentPrompter(), DownloadPrompter)


def test_close_leaves_shared_client_open(make_config, mock_client, tmp_path) -> None:
    client = mock_client(lambda request: httpx.Response(200, json={}))
    services = build_default_app_services(
        make_config(),
        client=client,
        queue_dir=tmp_path / "queue",
        download_root=tmp_path / "entries",
    )
    services.close()
    assert not client.is_closed
