"""
End-to-end tests for the export pipeline
"""
import asyncio
import dataclasses
import io
import time
import zipfile

import pytest
from filetype import guess

from conftest import FakeResponse, FakeSession, image_response
from reader_epub import exporter, images
from reader_epub.errors import ExportError, InvalidArticleError
from reader_epub.exporter import (
    build_package,
    export_article,
    export_article_async,
    export_article_bytes,
)


@pytest.fixture
def webp_session(webp_bytes):
    return FakeSession({
        "https://example.com/photo.webp": image_response(webp_bytes, "image/webp"),
    })


def read_archive(path_or_bytes):
    if isinstance(path_or_bytes, bytes):
        path_or_bytes = io.BytesIO(path_or_bytes)
    with zipfile.ZipFile(path_or_bytes) as archive:
        infos = archive.infolist()
        return infos, {info.filename: archive.read(info.filename) for info in infos}


class TestExportArticle:
    """Test the full export to disk"""

    def test_webp_article_end_to_end(self, sample_article, config, webp_session):
        path = export_article(sample_article, config, session=webp_session)

        assert path.parent == config.output_dir
        assert path.suffix == ".epub"
        infos, files = read_archive(path)

        assert infos[0].filename == "mimetype"
        assert infos[0].compress_type == zipfile.ZIP_STORED
        assert files["mimetype"] == b"application/epub+zip"

        assert "OEBPS/images/image1.jpg" in files
        assert not any(name.endswith(".webp") for name in files)
        assert files["OEBPS/images/image1.jpg"][:3] == b"\xff\xd8\xff"

        index = files["OEBPS/index.xhtml"].decode("utf-8")
        assert "Hello&#160;World" in index
        assert "&nbsp;" not in index
        assert "<title>Test &amp; Trial</title>" in index
        assert '<img src="images/image1.jpg" />' in index

        opf = files["OEBPS/content.opf"].decode("utf-8")
        assert '<item id="img1" href="images/image1.jpg" media-type="image/jpeg" />' in opf

    def test_archive_layout(self, sample_article, config, webp_session):
        infos, _ = read_archive(export_article(sample_article, config, session=webp_session))
        assert [info.filename for info in infos] == [
            "mimetype",
            "META-INF/container.xml",
            "OEBPS/content.opf",
            "OEBPS/style.css",
            "OEBPS/nav.xhtml",
            "OEBPS/index.xhtml",
            "OEBPS/images/image1.jpg",
        ]

    def test_each_export_gets_a_unique_file(self, sample_article, config, webp_session):
        first = export_article(sample_article, config, session=webp_session)
        second = export_article(sample_article, config, session=webp_session)
        assert first != second
        assert first.name.startswith("test-trial-")
        assert first.exists() and second.exists()

    def test_manifest_media_types_match_bytes(self, sample_article, config, monkeypatch, png_bytes):
        def broken_rasterize(data, canvas):
            raise RuntimeError("no cairo")

        monkeypatch.setattr(images, "rasterize_svg", broken_rasterize)
        svg = b'<svg xmlns="http://www.w3.org/2000/svg" width="4" height="4"/>'
        session = FakeSession({
            "https://example.com/logo.svg": image_response(svg, "image/svg+xml"),
            "https://example.com/chart.jpg": image_response(png_bytes, "image/jpeg"),
        })
        article = dataclasses.replace(
            sample_article, body_html='<img src="/logo.svg"><img src="/chart.jpg">'
        )
        _, files = read_archive(export_article(article, config, session=session))
        opf = files["OEBPS/content.opf"].decode("utf-8")

        assert files["OEBPS/images/image1.svg"] == svg
        assert 'href="images/image1.svg" media-type="image/svg+xml"' in opf
        assert guess(files["OEBPS/images/image2.png"]).mime == "image/png"
        assert 'href="images/image2.png" media-type="image/png"' in opf

    def test_failed_images_keep_remote_reference(self, sample_article, config):
        session = FakeSession({
            "https://example.com/photo.webp": FakeResponse(body=b"nope", status_code=500),
        })
        _, files = read_archive(export_article(sample_article, config, session=session))
        index = files["OEBPS/index.xhtml"].decode("utf-8")
        assert '<img src="photo.webp" />' in index
        assert not any(name.startswith("OEBPS/images/") for name in files)
        assert "<item id=\"img1\"" not in files["OEBPS/content.opf"].decode("utf-8")

    @pytest.mark.parametrize("body", ["", "   \n\t"])
    def test_empty_body_rejected_before_any_work(self, sample_article, config, body):
        session = FakeSession()
        article = dataclasses.replace(sample_article, body_html=body)
        with pytest.raises(InvalidArticleError):
            export_article(article, config, session=session)
        assert session.calls == []
        assert list(config.output_dir.iterdir()) == []

    def test_io_failure_is_export_error(self, sample_article, config, webp_session):
        blocker = config.output_dir / "blocker"
        blocker.write_text("file, not a directory")
        config.output_dir = blocker
        with pytest.raises(ExportError) as excinfo:
            export_article(sample_article, config, session=webp_session)
        assert isinstance(excinfo.value.cause, OSError)


class TestInMemoryExport:
    """Test byte-stream and package-level entry points"""

    def test_export_bytes(self, sample_article, config, webp_session):
        infos, files = read_archive(export_article_bytes(sample_article, config, session=webp_session))
        assert infos[0].filename == "mimetype"
        assert infos[0].compress_type == zipfile.ZIP_STORED
        assert "OEBPS/images/image1.jpg" in files
        assert list(config.output_dir.iterdir()) == []

    def test_build_package_images_in_order(self, sample_article, config, webp_session):
        epub = build_package(sample_article, config, session=webp_session)
        assert [image.filename for image in epub.images] == ["image1.jpg"]
        assert epub.paths[0] == "mimetype"
        assert epub.paths[-1] == "OEBPS/images/image1.jpg"


class TestAsyncExport:
    """Test coroutine entry point and cancellation"""

    def test_async_export(self, sample_article, config, webp_session):
        path = asyncio.run(export_article_async(sample_article, config, session=webp_session))
        assert path.exists()

    def test_cancellation_leaves_no_output(self, sample_article, config, webp_bytes):
        slow = FakeResponse(
            body=webp_bytes + b"\x00" * (images.CHUNK_SIZE * 40),
            headers={"Content-Type": "image/webp"},
            chunk_delay=0.05,
        )
        session = FakeSession({"https://example.com/photo.webp": slow})

        async def scenario():
            task = asyncio.create_task(export_article_async(sample_article, config, session=session))
            await asyncio.sleep(0.1)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        assert slow.chunks_served < 40
        assert list(config.output_dir.iterdir()) == []

    def test_cancel_after_worker_finished_removes_file(self, sample_article, config, monkeypatch):
        finished = config.output_dir / "finished.epub"

        def instant_export(article, config=None, session=None, cancel_event=None):
            finished.write_bytes(b"PK")
            return finished

        monkeypatch.setattr(exporter, "export_article", instant_export)

        async def scenario():
            task = asyncio.create_task(export_article_async(sample_article, config))
            await asyncio.sleep(0)
            # Block the loop so the worker completes before the task sees its result.
            time.sleep(0.3)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        assert not finished.exists()
