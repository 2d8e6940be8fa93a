"""
Test configuration and shared fixtures for reader_epub tests
"""
import datetime as dt
import io
import threading
import time

import pytest
import requests
from PIL import Image

from reader_epub.config import ExportConfig
from reader_epub.models import ArticleInput


class FakeResponse:
    """Stand-in for a streamed requests.Response"""

    def __init__(self, body=b"", status_code=200, headers=None, chunk_delay=0.0):
        self.body = body
        self.status_code = status_code
        self.headers = headers if headers is not None else {}
        self.chunk_delay = chunk_delay
        self.chunks_served = 0
        self.connection = None
        self._offset = 0

    @property
    def raw(self):
        return self

    def __enter__(self):
        self._offset = 0
        return self

    def __exit__(self, *exc_info):
        self.close()
        return False

    def close(self):
        pass

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def read1(self, amt=-1, decode_content=True):
        if self._offset >= len(self.body):
            return b""
        if self.chunk_delay:
            time.sleep(self.chunk_delay)
        end = len(self.body) if amt is None or amt < 0 else self._offset + amt
        chunk = self.body[self._offset:end]
        self._offset += len(chunk)
        self.chunks_served += 1
        return chunk


class FakeSession:
    """Routes GET requests to canned responses or exceptions"""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self._lock = threading.Lock()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def close(self):
        pass

    def get(self, url, **kwargs):
        with self._lock:
            self.calls.append((url, kwargs))
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError(f"No route to {url}")
        if isinstance(route, BaseException):
            raise route
        if callable(route):
            return route()
        return route

    @property
    def urls(self):
        return [url for url, _ in self.calls]


def make_image(image_format, size=(32, 24), mode="RGB", color=(200, 40, 40)):
    """Encode a solid-colour image with Pillow"""
    if mode == "RGBA" and len(color) == 3:
        color = color + (128,)
    image = Image.new(mode, size, color)
    buffer = io.BytesIO()
    image.save(buffer, format=image_format)
    return buffer.getvalue()


def image_response(data, content_type, **kwargs):
    headers = {"Content-Type": content_type} if content_type else {}
    return FakeResponse(body=data, headers=headers, **kwargs)


@pytest.fixture
def jpeg_bytes():
    return make_image("JPEG")


@pytest.fixture
def png_bytes():
    return make_image("PNG", color=(10, 120, 30))


@pytest.fixture
def gif_bytes():
    return make_image("GIF", mode="P", color=3)


@pytest.fixture
def webp_bytes():
    return make_image("WEBP", color=(20, 20, 220))


@pytest.fixture
def config(tmp_path):
    """Export configuration writing into the test's temp directory"""
    return ExportConfig(output_dir=tmp_path, max_workers=2)


@pytest.fixture
def sample_article():
    return ArticleInput(
        id="3f2c9a52-6a5e-4e53-9d0b-1c1f0c6e2d11",
        title="Test & Trial",
        byline="Ada <Lovelace>",
        body_html='<p>Hello&nbsp;World</p><img src="photo.webp">',
        plain_text="Hello World",
        word_count=1234,
        excerpt="A short excerpt",
        site_name="Example News",
        source_url="https://example.com/a",
        extracted_at=dt.datetime(2026, 10, 19, 14, 30, 5, 123456, tzinfo=dt.timezone.utc),
    )
