import logging

import httpx
import pytest

from fix_missing_media.metrics import registry
from fix_missing_media.services import remote_fetcher as fetcher_module
from fix_missing_media.services.remote_fetcher import RemoteFetcher
from fix_missing_media.services.resolver import MissingMediaResolver
from fix_missing_media.services.sideload import SideloadResult
from fix_missing_media.utils.remediation import MarkerState, OutcomeKind

from .utils import SOURCE_DOMAIN, FakeAttachmentStore, FakeFetcher

LOCAL_URL = "https://staging.example/wp-content/uploads/2024/01/cat.jpg"
REMOTE_URL = "https://prod.example/wp-content/uploads/2024/01/cat.jpg"


def _resolver(store, fetcher, upload_dir_factory, **kwargs):
    kwargs.setdefault("download_timeout", 5.0)
    kwargs.setdefault("disallowed_extensions", {"bmp", "psd"})
    kwargs.setdefault("strip_segment", "/wp-content/uploads")
    kwargs.setdefault("path_rewrites", ())
    return MissingMediaResolver(
        store,
        fetcher=fetcher,
        upload_dir_factory=upload_dir_factory,
        **kwargs,
    )


@pytest.mark.anyio
async def test_resolve_marks_present_attachment_without_download(
    tmp_path, upload_dir_factory, caplog
):
    caplog.set_level(logging.INFO)
    store = FakeAttachmentStore({7: LOCAL_URL})
    fetcher = FakeFetcher(tmp_path, status=200)

    outcome = await _resolver(store, fetcher, upload_dir_factory).resolve(SOURCE_DOMAIN, 7)

    assert outcome.kind == OutcomeKind.already_present
    assert fetcher.head_calls == [LOCAL_URL]
    assert fetcher.download_calls == []
    assert store.markers == [(7, MarkerState.succeeded())]
    assert "Attachment 7 is working fine at" in caplog.text


@pytest.mark.anyio
async def test_resolve_downloads_missing_file_into_source_subdirectory(
    tmp_path, uploads_root, upload_dir_factory, caplog
):
    caplog.set_level(logging.INFO)
    store = FakeAttachmentStore({7: LOCAL_URL})
    fetcher = FakeFetcher(tmp_path, status=404, payload=b"cat bytes")

    outcome = await _resolver(store, fetcher, upload_dir_factory).resolve(SOURCE_DOMAIN, 7)

    expected = uploads_root / "2024" / "01" / "cat.jpg"
    assert fetcher.download_calls == [(REMOTE_URL, 5.0)]
    assert outcome.kind == OutcomeKind.downloaded
    assert outcome.destination == str(expected)
    assert expected.read_bytes() == b"cat bytes"
    assert not (uploads_root / "2026").exists()
    assert store.markers == [(7, MarkerState.succeeded())]
    assert f"Attachment 7 needs grabbing from {REMOTE_URL}" in caplog.text
    assert "Downloaded image for 7 to" in caplog.text


@pytest.mark.anyio
async def test_resolve_passes_remapped_upload_dir_to_sideload(tmp_path, upload_dir_factory):
    captured = {}

    async def sideload(file, upload_dir, **kwargs):
        captured["file"] = file
        captured["upload_dir"] = upload_dir
        captured["kwargs"] = kwargs
        return SideloadResult(file="/uploads/2024/01/cat.jpg")

    store = FakeAttachmentStore({7: LOCAL_URL})
    fetcher = FakeFetcher(tmp_path, status=404)

    await _resolver(store, fetcher, upload_dir_factory, sideload=sideload).resolve(
        SOURCE_DOMAIN, 7
    )

    assert captured["file"].name == "cat.jpg"
    assert captured["file"].size > 0
    assert captured["upload_dir"].subdir == "/2024/01"
    assert captured["upload_dir"].url == "https://staging.example/wp-content/uploads/2024/01"
    assert captured["kwargs"]["test_size"] is True
    # The temporary download never outlives the call.
    assert not captured["file"].tmp_name.exists()


@pytest.mark.anyio
@pytest.mark.parametrize("extension", ["bmp", "psd", "BMP"])
async def test_resolve_skips_disallowed_filetypes(tmp_path, upload_dir_factory, caplog, extension):
    local_url = f"https://staging.example/wp-content/uploads/2024/01/cat.{extension}"
    store = FakeAttachmentStore({7: local_url})
    fetcher = FakeFetcher(tmp_path, status=404)

    outcome = await _resolver(store, fetcher, upload_dir_factory).resolve(SOURCE_DOMAIN, 7)

    assert outcome.kind == OutcomeKind.skipped
    assert fetcher.download_calls == []
    assert store.markers == [(7, MarkerState.succeeded())]
    assert f"Skipping disallowed filetype, {extension}." in caplog.text


@pytest.mark.anyio
async def test_resolve_leaves_marker_untouched_on_transport_error(
    tmp_path, upload_dir_factory, caplog
):
    store = FakeAttachmentStore({7: LOCAL_URL})
    fetcher = FakeFetcher(tmp_path, head_error="connection refused")

    outcome = await _resolver(store, fetcher, upload_dir_factory).resolve(SOURCE_DOMAIN, 7)

    assert outcome.kind == OutcomeKind.deferred
    assert outcome.marker is None
    assert store.markers == []
    assert fetcher.download_calls == []
    assert f"Local image ({LOCAL_URL}) returned an error: connection refused" in caplog.text
    assert any(record.levelno == logging.WARNING for record in caplog.records)


@pytest.mark.anyio
async def test_resolve_without_url_is_not_marked(tmp_path, upload_dir_factory):
    store = FakeAttachmentStore({7: None})
    fetcher = FakeFetcher(tmp_path)

    outcome = await _resolver(store, fetcher, upload_dir_factory).resolve(SOURCE_DOMAIN, 7)

    assert outcome.kind == OutcomeKind.deferred
    assert fetcher.head_calls == []
    assert store.markers == []


@pytest.mark.anyio
async def test_resolve_marks_download_failure_with_message(tmp_path, upload_dir_factory, caplog):
    store = FakeAttachmentStore({7: LOCAL_URL})
    fetcher = FakeFetcher(tmp_path, status=404, download_error="404 Not Found")

    outcome = await _resolver(store, fetcher, upload_dir_factory).resolve(SOURCE_DOMAIN, 7)

    message = f"Failed to download {REMOTE_URL}. The error message was: 404 Not Found"
    assert outcome.kind == OutcomeKind.failed
    assert outcome.reason == message
    assert store.markers == [(7, MarkerState.permanently_failed(message))]
    assert message in caplog.text


@pytest.mark.anyio
async def test_resolve_marks_processed_even_when_sideload_reports_error(
    tmp_path, upload_dir_factory, caplog
):
    async def sideload(file, upload_dir, **kwargs):
        return SideloadResult(error="Sorry, this file type is not permitted for security reasons.")

    store = FakeAttachmentStore({7: LOCAL_URL})
    fetcher = FakeFetcher(tmp_path, status=404)

    outcome = await _resolver(store, fetcher, upload_dir_factory, sideload=sideload).resolve(
        SOURCE_DOMAIN, 7
    )

    assert outcome.kind == OutcomeKind.upload_rejected
    assert store.markers == [(7, MarkerState.succeeded())]
    assert "Failed: Sorry, this file type is not permitted" in caplog.text


@pytest.mark.anyio
async def test_resolve_keeps_url_when_staging_origin_is_not_verbatim(
    tmp_path, upload_dir_factory
):
    # urlparse lowercases the host, so the origin does not occur in the URL.
    local_url = "https://Staging.Example/wp-content/uploads/2024/01/cat.jpg"
    store = FakeAttachmentStore({7: local_url})
    fetcher = FakeFetcher(tmp_path, status=404)

    await _resolver(store, fetcher, upload_dir_factory).resolve(SOURCE_DOMAIN, 7)

    assert fetcher.download_calls == [(local_url, 5.0)]


@pytest.mark.anyio
async def test_resolve_applies_configured_path_rewrites(tmp_path, uploads_root, upload_dir_factory):
    store = FakeAttachmentStore({7: LOCAL_URL})
    fetcher = FakeFetcher(tmp_path, status=404)
    resolver = _resolver(
        store,
        fetcher,
        upload_dir_factory,
        path_rewrites=[("wp-content/uploads", "wp-content")],
        strip_segment="/wp-content",
    )

    outcome = await resolver.resolve(SOURCE_DOMAIN, 7)

    assert fetcher.download_calls == [("https://prod.example/wp-content/2024/01/cat.jpg", 5.0)]
    assert outcome.destination == str(uploads_root / "2024" / "01" / "cat.jpg")


@pytest.mark.anyio
async def test_resolve_has_no_internal_reprocessing_guard(tmp_path, upload_dir_factory):
    store = FakeAttachmentStore({7: LOCAL_URL})
    fetcher = FakeFetcher(tmp_path, status=200)
    resolver = _resolver(store, fetcher, upload_dir_factory)

    await resolver.resolve(SOURCE_DOMAIN, 7)
    await resolver.resolve(SOURCE_DOMAIN, 7)

    assert fetcher.head_calls == [LOCAL_URL, LOCAL_URL]
    assert len(store.markers) == 2


@pytest.mark.anyio
async def test_resolve_counts_outcomes(tmp_path, upload_dir_factory):
    before = registry.get_sample_value(
        "fix_missing_media_attachments_total", {"outcome": "already_present"}
    ) or 0.0
    store = FakeAttachmentStore({7: LOCAL_URL})
    fetcher = FakeFetcher(tmp_path, status=200)

    await _resolver(store, fetcher, upload_dir_factory).resolve(SOURCE_DOMAIN, 7)

    after = registry.get_sample_value(
        "fix_missing_media_attachments_total", {"outcome": "already_present"}
    )
    assert after == before + 1


@pytest.mark.anyio
async def test_resolve_defers_attachment_with_unparseable_url(
    tmp_path, upload_dir_factory, monkeypatch, caplog
):
    def handler(request):
        raise AssertionError("no request should be sent")

    real_client = httpx.AsyncClient

    def client_factory(*args, **kwargs):
        return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(fetcher_module.httpx, "AsyncClient", client_factory)
    local_url = "https://staging.example/wp-content/uploads/2024/01/c\x01t.jpg"
    store = FakeAttachmentStore({7: local_url})

    outcome = await _resolver(store, RemoteFetcher(), upload_dir_factory).resolve(
        SOURCE_DOMAIN, 7
    )

    assert outcome.kind == OutcomeKind.deferred
    assert store.markers == []
    assert "returned an error" in caplog.text


def test_build_context_carries_staging_origin(tmp_path, upload_dir_factory):
    resolver = _resolver(FakeAttachmentStore({}), FakeFetcher(tmp_path), upload_dir_factory)

    context = resolver.build_context(SOURCE_DOMAIN, LOCAL_URL)

    assert context.staging_origin == "https://staging.example"
    assert context.remote_url == REMOTE_URL
    assert context.upload_dir.subdir == "/2024/01"
