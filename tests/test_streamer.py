"""
Unit tests for target decoding, filename extraction and outbound headers.
"""
import pytest

from backend.app.core.config import settings
from backend.app.core.errors import InvalidInput
from backend.app.models.schemas import ProxyMode
from backend.app.services.streamer import StreamProxy, attachment_filename, decode_target


class TestDecodeTarget:

    def test_decodes_once(self):
        raw = "https%3A%2F%2Fvaliw.hakunaymatata.com%2Fv%2Fa%2520b.mp4"
        assert decode_target(raw) == "https://valiw.hakunaymatata.com/v/a%20b.mp4"

    def test_accepts_both_origins(self):
        assert decode_target("https://bcdnw.hakunaymatata.com/x.mp4").startswith("https://bcdnw.")
        assert decode_target("https://valiw.hakunaymatata.com/x.mp4").startswith("https://valiw.")

    @pytest.mark.parametrize("raw", [
        "",
        "https%3A%2F%2Fexample.com%2Fx.mp4",
        "http%3A%2F%2Fbcdnw.hakunaymatata.com%2Fx.mp4",
        "https%3A%2F%2Fbcdnw.hakunaymatata.com.attacker.io%2Fx.mp4",
        "https%3A%2F%2Fbcdnw.hakunaymatata.com",
        "%2F%2Fbcdnw.hakunaymatata.com%2Fx.mp4",
    ])
    def test_rejects_other_origins(self, raw):
        with pytest.raises(InvalidInput):
            decode_target(raw)

    @pytest.mark.parametrize("raw", [
        "https%3A%2F%2Fbcdnw.hakunaymatata.com%2F%FF%FE.mp4",
        "https%3A%2F%2Fbcdnw.hakunaymatata.com%2F%E0%A4",
        "https%3A%2F%2Fbcdnw.hakunaymatata.com%2F%zz.mp4",
        "https%3A%2F%2Fbcdnw.hakunaymatata.com%2Fx.mp4%4",
    ])
    def test_malformed_escapes_are_invalid_input(self, raw):
        with pytest.raises(InvalidInput):
            decode_target(raw)


class TestAttachmentFilename:

    @pytest.mark.parametrize("header,expected", [
        ('attachment; filename="a/b/evil.mp4"', "evil.mp4"),
        ('attachment; filename="..\\..\\win.mp4"', "win.mp4"),
        ("attachment; filename=plain.mp4; size=10", "plain.mp4"),
        ('attachment; filename="quoted.mp4"; filename=bare.mp4', "quoted.mp4"),
        ('attachment; filename=" spaced.mkv "', "spaced.mkv"),
    ])
    def test_extracts_last_path_component(self, header, expected):
        assert attachment_filename(header) == expected

    @pytest.mark.parametrize("header", [None, "attachment", 'attachment; filename="dir/"', "inline"])
    def test_falls_back(self, header):
        assert attachment_filename(header) == settings.DOWNLOAD_FALLBACK_FILENAME

    def test_strips_header_breaking_characters(self):
        assert attachment_filename('attachment; filename=a"b\r\n.mp4') == "ab.mp4"


class TestUpstreamHeaders:

    def test_stream_mode_disables_compression_and_forwards_range(self):
        proxy = StreamProxy()
        request = proxy.build_request("https://bcdnw.hakunaymatata.com/x.mp4", ProxyMode.STREAM, "bytes=0-")
        headers = proxy.upstream_headers(request)
        assert headers["Accept-Encoding"] == "identity"
        assert headers["Accept"] == "*/*"
        assert headers["Range"] == "bytes=0-"
        assert headers["User-Agent"] == settings.MOBILE_USER_AGENT
        assert headers["Origin"] == settings.PLAYER_ORIGIN

    def test_stream_mode_without_range(self):
        proxy = StreamProxy()
        request = proxy.build_request("https://bcdnw.hakunaymatata.com/x.mp4", ProxyMode.STREAM)
        assert "Range" not in proxy.upstream_headers(request)

    def test_download_mode_uses_player_headers_only(self):
        proxy = StreamProxy()
        request = proxy.build_request("https://valiw.hakunaymatata.com/x.mp4", ProxyMode.DOWNLOAD)
        assert proxy.upstream_headers(request) == {
            "User-Agent": settings.MOBILE_USER_AGENT,
            "Referer": f"{settings.PLAYER_ORIGIN}/",
            "Origin": settings.PLAYER_ORIGIN,
        }
