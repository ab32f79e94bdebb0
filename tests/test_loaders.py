from __future__ import annotations

from io import BytesIO

import httpx
import pytest
from PIL import Image

from cdn_resolver.config import RetryConfig
from cdn_resolver.errors import ConfigError
from cdn_resolver.loaders.audio import AudioLoader
from cdn_resolver.loaders.base import Loadable
from cdn_resolver.loaders.font import (
    FontEntry,
    FontStylesheetLoader,
    FontType,
    build_font_catalog,
    find_font,
)
from cdn_resolver.loaders.image import ImageLoader
from cdn_resolver.resolver import ResourceResolver
from conftest import FakePort, SleepRecorder, make_config, mock_client

FONT_CSS = "@font-face { font-family: 'Test'; src: url(test.woff2) format('woff2'); }"


def _png_bytes(size=(4, 3)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


def _css(text: str = FONT_CSS) -> httpx.Response:
    return httpx.Response(200, text=text, headers={"content-type": "text/css; charset=utf-8"})


def test_loaders_satisfy_the_protocol():
    client = mock_client(lambda request: httpx.Response(200))
    for cls in (ImageLoader, AudioLoader, FontStylesheetLoader):
        assert isinstance(cls(client), Loadable)


class TestImageLoader:
    @pytest.mark.asyncio()
    async def test_decodable_image(self):
        png = _png_bytes()
        handler = lambda request: httpx.Response(200, content=png, headers={"content-type": "image/png"})
        async with mock_client(handler) as client:
            loader = ImageLoader(client)
            assert await loader.attempt_load("https://a.test/img/x.png")
        assert loader.last_reason == "OK"
        assert loader.last_size == (4, 3)

    @pytest.mark.asyncio()
    async def test_svg_is_accepted_by_content_type(self):
        svg = b"<svg xmlns='http://www.w3.org/2000/svg'/>"
        handler = lambda request: httpx.Response(200, content=svg, headers={"content-type": "image/svg+xml"})
        async with mock_client(handler) as client:
            assert await ImageLoader(client).attempt_load("https://a.test/icon.svg")

    @pytest.mark.parametrize(
        "response, reason",
        [
            (httpx.Response(404), "DOWNLOAD_FAIL"),
            (httpx.Response(200, text="<html></html>", headers={"content-type": "text/html"}), "NOT_IMAGE"),
            (httpx.Response(200, content=b"not a png", headers={"content-type": "image/png"}), "IMAGE_DECODE_FAIL"),
        ],
    )
    @pytest.mark.asyncio()
    async def test_failures(self, response, reason):
        async with mock_client(lambda request: response) as client:
            loader = ImageLoader(client)
            assert not await loader.attempt_load("https://a.test/img/x.png")
        assert loader.last_reason == reason


class TestAudioLoader:
    @pytest.mark.asyncio()
    async def test_audio_stream(self):
        handler = lambda request: httpx.Response(200, content=b"ID3\x03\x00", headers={"content-type": "audio/mpeg"})
        async with mock_client(handler) as client:
            loader = AudioLoader(client)
            assert await loader.attempt_load("https://a.test/music/bg.mp3")
        assert loader.last_reason == "OK"

    @pytest.mark.parametrize(
        "response, reason",
        [
            (httpx.Response(500), "DOWNLOAD_FAIL"),
            (httpx.Response(200, text="oops", headers={"content-type": "text/html"}), "NOT_AUDIO"),
            (httpx.Response(200, content=b"", headers={"content-type": "audio/ogg"}), "EMPTY_BODY"),
        ],
    )
    @pytest.mark.asyncio()
    async def test_failures(self, response, reason):
        async with mock_client(lambda request: response) as client:
            loader = AudioLoader(client)
            assert not await loader.attempt_load("https://a.test/music/bg.mp3")
        assert loader.last_reason == reason


class TestFontCatalog:
    def test_default_catalog(self):
        catalog = build_font_catalog()
        assert set(catalog) == set(FontType)
        kangxi = find_font(catalog, "kangxi")
        assert kangxi is not None
        assert kangxi.mirrors[0].startswith("https://fonts.loli.net/")
        assert kangxi.mirrors[-1].startswith("https://fonts.googleapis.com/")
        assert find_font(catalog, "kangxi", FontType.ENGLISH) is None
        assert find_font(catalog, "missing") is None

    def test_css_family_quotes_names_with_spaces(self):
        georgia = find_font(build_font_catalog(), "georgia")
        assert georgia.css_family() == '"Georgia", "Times New Roman", serif'

    def test_mirror_order_is_fixed(self):
        catalog = build_font_catalog(
            {
                "mixed": [
                    {
                        "name": "f",
                        "font_family": "F",
                        "mirrors": {
                            "custom": ["https://fonts.example/f.css"],
                            "unpkg": "https://unpkg.test/f.css",
                            "loli": "https://loli.test/f.css",
                        },
                    }
                ]
            }
        )
        assert catalog[FontType.MIXED][0].mirrors == (
            "https://loli.test/f.css",
            "https://unpkg.test/f.css",
            "https://fonts.example/f.css",
        )
        assert catalog[FontType.ENGLISH] == ()

    @pytest.mark.parametrize(
        "raw, message",
        [
            ({"cursive": []}, "unknown font type"),
            ({"english": [{"name": "x", "font_family": "X", "weight": 400}]}, "unknown font field"),
            ({"english": [{"name": "x", "font_family": "X", "mirrors": {"bunny": "u"}}]}, "unknown font mirror"),
            ({"english": [{"font_family": "X"}]}, "need 'name'"),
        ],
    )
    def test_invalid_catalog(self, raw, message):
        with pytest.raises(ConfigError, match=message):
            build_font_catalog(raw)


class TestFontLoading:
    @pytest.mark.asyncio()
    async def test_first_working_mirror_wins(self):
        entry = FontEntry(name="f", font_family="F", mirrors=("https://m1.test/f.css", "https://m2.test/f.css"))

        def handler(request: httpx.Request) -> httpx.Response:
            return _css() if request.url.host == "m2.test" else httpx.Response(404)

        async with mock_client(handler) as client:
            loader = FontStylesheetLoader(client)
            assert await loader.load_font(entry, resolver=None) == "https://m2.test/f.css"
            assert loader.failed_urls == {"https://m1.test/f.css"}
            assert await loader.load_font(entry, resolver=None) == "https://m2.test/f.css"

    @pytest.mark.asyncio()
    async def test_css_without_font_rules_is_rejected(self):
        async with mock_client(lambda request: _css("body { color: red; }")) as client:
            loader = FontStylesheetLoader(client)
            assert not await loader.attempt_load("https://m1.test/f.css")
        assert loader.last_reason == "NO_FONT_RULES"

    @pytest.mark.asyncio()
    async def test_stylesheet_recovered_through_resolver(self):
        entry = FontEntry(name="f", font_family="F", stylesheet="fonts/f.css")
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return _css() if request.url.host == "b.test" else httpx.Response(503)

        async with mock_client(handler) as client:
            async with ResourceResolver(make_config(), FakePort(), sleep=SleepRecorder()) as resolver:
                loader = FontStylesheetLoader(client)
                url = await loader.load_font(entry, resolver)
                assert url == "https://b.test/fonts/f.css"
                assert resolver.resolve("fonts/f.css") == url

        assert requested[:3] == [
            "https://a.test/fonts/f.css",
            "https://a.test/fonts/f.css",
            "https://b.test/fonts/f.css",
        ]

    @pytest.mark.asyncio()
    async def test_everything_down_means_system_fonts(self):
        entry = FontEntry(name="f", font_family="F", stylesheet="fonts/f.css", mirrors=("https://m1.test/f.css",))
        retry = RetryConfig(max_retries=0, base_delay_s=0.0, jitter_s=0.0, fallback_to_local=False)
        async with mock_client(lambda request: httpx.Response(404)) as client:
            async with ResourceResolver(make_config(retry=retry), FakePort(), sleep=SleepRecorder()) as resolver:
                loader = FontStylesheetLoader(client)
                assert await loader.load_font(entry, resolver) is None
                assert loader.inject("<html><head></head></html>", entry) == "<html><head></head></html>"

    @pytest.mark.asyncio()
    async def test_inject_loaded_stylesheet(self):
        entry = FontEntry(name="f", font_family="F", mirrors=("https://m1.test/f.css",))
        async with mock_client(lambda request: _css()) as client:
            loader = FontStylesheetLoader(client)
            await loader.load_font(entry, resolver=None)
        html = loader.inject("<html><head><title>cv</title></head><body></body></html>", entry)
        assert '<link crossorigin="anonymous" href="https://m1.test/f.css" rel="stylesheet"/>' in html


@pytest.mark.asyncio()
async def test_stylesheet_font_without_resolver_uses_system_fonts():
    entry = FontEntry(name="f", font_family="F", stylesheet="fonts/f.css", mirrors=("https://m1.test/f.css",))
    async with mock_client(lambda request: httpx.Response(404)) as client:
        loader = FontStylesheetLoader(client)
        assert await loader.load_font(entry, resolver=None) is None
    assert FontStylesheetLoader.load_font.__annotations__["resolver"] == "ResourceResolver | None"
