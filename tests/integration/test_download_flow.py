"""
Download tests over a fake asset host.
"""

import asyncio

import httpx

from download import download_model_file
from models import DownloadOptions
from resolver import ModelResolver


class TestDownloadModelFile:
    """Tests for ModelResolver.download() / download_model_file()"""

    def test_supported_3mf(self, resolver, upstream):
        upstream.raw(
            "/files/part",
            b"PK\x03\x04",
            headers={"content-type": "model/3mf", "content-disposition": 'attachment; filename="part.3mf"'},
        )

        result = asyncio.run(resolver.download("https://makerworld.com/files/part"))

        assert result.ok
        assert result.state == "downloaded"
        assert result.extension == "3mf"
        assert result.filename == "part.3mf"
        assert result.content == b"PK\x03\x04"
        assert result.size_bytes == 4
        assert result.content_type == "model/3mf"
        assert result.final_url == "https://makerworld.com/files/part"

    def test_content_is_not_serialized(self, resolver, upstream):
        upstream.raw("/files/part.stl", b"solid part", headers={"content-type": "application/octet-stream"})

        result = asyncio.run(resolver.download("https://makerworld.com/files/part.stl"))

        assert result.ok
        assert "content" not in result.model_dump()

    def test_extension_is_appended(self, resolver, upstream):
        upstream.raw(
            "/files/custom",
            b"1234",
            headers={"content-type": "model/3mf", "content-disposition": "attachment; filename*=UTF-8''My%20Part"},
        )

        result = asyncio.run(resolver.download("https://makerworld.com/files/custom"))

        assert result.ok
        assert result.filename == "My Part.3mf"

    def test_http_404(self, resolver, upstream):
        upstream.raw("/files/missing", b"not found", status=404)

        result = asyncio.run(resolver.download("https://makerworld.com/files/missing"))

        assert not result.ok
        assert result.state == "unavailable"
        assert result.reason_code == "not_found"

    def test_http_500(self, resolver, upstream):
        upstream.raw("/files/broken", b"oops", status=500)

        result = asyncio.run(resolver.download("https://makerworld.com/files/broken"))

        assert result.reason_code == "download_unavailable"
        assert result.message == "MakerWorld model download failed (500)."

    def test_unsupported_type(self, resolver, upstream):
        upstream.raw("/files/raw", b"plain-text", headers={"content-type": "text/plain"})

        result = asyncio.run(resolver.download("https://makerworld.com/files/raw"))

        assert not result.ok
        assert result.reason_code == "unsupported_model_format"

    def test_custom_headers_and_max_bytes(self, resolver, upstream):
        upstream.raw("/files/custom", b"1234", headers={"content-type": "model/3mf"})

        options = DownloadOptions(max_bytes=8, timeout_ms=5000, headers={"x-mw-download-test": "ok"})
        result = asyncio.run(resolver.download("https://makerworld.com/files/custom", options))

        assert result.ok
        assert result.filename == "custom.3mf"
        assert upstream.requests[-1].headers["x-mw-download-test"] == "ok"

    def test_oversize(self, resolver, upstream):
        upstream.raw("/files/big.stl", b"0123456789", headers={"content-type": "model/stl"})

        result = asyncio.run(resolver.download("https://makerworld.com/files/big.stl", DownloadOptions(max_bytes=4)))

        assert not result.ok
        assert result.reason_code == "download_unavailable"
        assert result.message == "MakerWorld model is too large (max 4 bytes on current plan)."

    def test_timeout(self, config):
        def always_timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        result = asyncio.run(
            download_model_file(
                "https://makerworld.com/files/slow.stl",
                config=config,
                transport=httpx.MockTransport(always_timeout),
            )
        )

        assert not result.ok
        assert result.reason_code == "timeout"
        assert result.message == "MakerWorld model download timed out."

    def test_redirect_final_url(self, config, upstream):
        upstream.route(
            "/files/redirect",
            lambda request: httpx.Response(302, headers={"location": "https://cdn.makerworld.com/assets/final.obj"}),
        )
        upstream.raw("/assets/final.obj", b"v 0 0 0", headers={"content-type": "application/octet-stream"})
        resolver = ModelResolver(config, transport=upstream.transport)

        result = asyncio.run(resolver.download("https://makerworld.com/files/redirect"))

        assert result.ok
        assert result.final_url == "https://cdn.makerworld.com/assets/final.obj"
        assert result.extension == "obj"
        assert result.filename == "final.obj"
