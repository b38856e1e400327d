"""
Unit tests for structure extraction: tables, metadata and image strategies.
"""
import io
import zipfile

import pytest

from app.exceptions import DocumentDecodeError
from app.models.schemas import FALLBACK_ANALYSIS, Complexity, MimeClass
from app.services.document_codec import DocumentCodec
from app.services.document_parser import DocumentParser, compute_metadata, parse_tables
from app.services.vision_service import VisionService
from conftest import FakeVisionGenerator, build_docx, make_image

ANALYSIS_JSON = (
    '{"description": "d", "type": "photo", "purpose": "p", "visibleText": "", '
    '"keyElements": [], "suggestedCaption": "A photo"}'
)


def reverse_media_entries(document: bytes) -> bytes:
    """Rewrite a .docx so its word/media entries are stored in reverse order."""
    source = zipfile.ZipFile(io.BytesIO(document))
    infos = source.infolist()
    media = [info for info in infos if info.filename.startswith("word/media/")]
    others = [info for info in infos if not info.filename.startswith("word/media/")]

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as target:
        for info in others + media[::-1]:
            target.writestr(info.filename, source.read(info))
    source.close()
    return buffer.getvalue()


class FakeCodec(DocumentCodec):
    """Scriptable codec; records how often each rendition is decoded."""

    def __init__(
        self,
        raw_text="Hello world",
        html="<p>Hello world</p>",
        media=(),
        decoder_images=(),
        fail=(),
    ):
        self.raw_text = raw_text
        self.html = html
        self.media = list(media)
        self.decoder_images = list(decoder_images)
        self.fail = set(fail)
        self.rich_calls = 0

    def decode_raw_text(self, buffer):
        if "raw" in self.fail:
            raise ValueError("Could not find file in options")
        return self.raw_text

    def decode_rich_content(self, buffer, image_callback):
        self.rich_calls += 1
        if "rich" in self.fail:
            raise ValueError("html conversion failed")
        srcs = [image_callback(data, content_type) for data, content_type in self.decoder_images]
        return self.html + "".join(f'<p><img src="{src}" /></p>' for src in srcs)

    def decode_markdown(self, buffer):
        if "markdown" in self.fail:
            raise ValueError("markdown conversion failed")
        return self.raw_text

    def list_media(self, buffer):
        if "media" in self.fail:
            raise ValueError("not a zip file")
        return list(self.media)


# ═══════════════════════════════════════════════════════════════
# TABLE PARSING
# ═══════════════════════════════════════════════════════════════

class TestParseTables:

    def test_simple_table(self):
        html = "<table><tr><td>A</td><td>B</td></tr><tr><td>1</td><td>2</td></tr></table>"
        tables = parse_tables(html)
        assert len(tables) == 1
        assert tables[0].rows == [["A", "B"], ["1", "2"]]

    def test_inner_markup_stripped_and_whitespace_collapsed(self):
        html = (
            '<table class="x"><tr><th><p><strong>Total</strong>\n   cost</p></th></tr>'
            "<tr><td><p>$ 5</p><p>net</p></td></tr></table>"
        )
        assert parse_tables(html)[0].rows == [["Total cost"], ["$ 5 net"]]

    def test_empty_rows_dropped(self):
        html = "<table><tr></tr><tr><td>only</td></tr><tr> </tr></table>"
        assert parse_tables(html)[0].rows == [["only"]]

    def test_table_without_rows_dropped(self):
        html = "<table><tr></tr></table><table><tr><td>kept</td></tr></table>"
        tables = parse_tables(html)
        assert [t.rows for t in tables] == [[["kept"]]]

    def test_ragged_rows_preserved(self):
        html = "<table><tr><td>a</td><td>b</td><td>c</td></tr><tr><td>1</td></tr></table>"
        assert parse_tables(html)[0].rows == [["a", "b", "c"], ["1"]]

    def test_multiple_tables_in_order(self):
        html = (
            "<p>x</p><TABLE><TR><TD>first</TD></TR></TABLE>"
            "<p>y</p><table><tr><td>second</td></tr></table>"
        )
        assert [t.rows[0][0] for t in parse_tables(html)] == ["first", "second"]

    def test_no_tables(self):
        assert parse_tables("<p>plain</p>") == []
        assert parse_tables("") == []


# ═══════════════════════════════════════════════════════════════
# METADATA
# ═══════════════════════════════════════════════════════════════

class TestComputeMetadata:

    def test_hello_world(self):
        metadata = compute_metadata("Hello world", image_count=0, table_count=0)
        assert metadata.model_dump(by_alias=True, mode="json") == {
            "wordCount": 2,
            "paragraphCount": 1,
            "imageCount": 0,
            "tableCount": 0,
            "hasTables": False,
            "complexity": "simple",
        }

    def test_paragraphs_ignore_blank_lines(self):
        metadata = compute_metadata("One\n\n  \nTwo three\n", image_count=0, table_count=2)
        assert metadata.paragraph_count == 2
        assert metadata.word_count == 3
        assert metadata.has_tables is True

    @pytest.mark.parametrize("words,expected", [
        (500, Complexity.SIMPLE),
        (501, Complexity.MODERATE),
        (2000, Complexity.MODERATE),
        (2001, Complexity.COMPLEX),
    ])
    def test_complexity_thresholds(self, words, expected):
        metadata = compute_metadata(" ".join(["word"] * words), image_count=0, table_count=0)
        assert metadata.complexity == expected


# ═══════════════════════════════════════════════════════════════
# IMAGE STRATEGIES
# ═══════════════════════════════════════════════════════════════

class TestImageExtraction:

    @pytest.fixture
    def vision(self, vision_settings):
        generator = FakeVisionGenerator(ANALYSIS_JSON)
        return VisionService(vision_settings, generator)

    @pytest.mark.asyncio
    async def test_package_route_wins(self, vision, png_bytes, jpeg_bytes):
        codec = FakeCodec(
            media=[("word/media/image1.png", png_bytes)],
            decoder_images=[(jpeg_bytes, "image/jpeg")],
        )

        result = await DocumentParser(codec, vision).parse(b"doc")

        assert list(result.images) == ["{{IMAGE_0}}"]
        record = result.images["{{IMAGE_0}}"]
        assert record.mime_class == MimeClass.PNG
        assert (record.original_width, record.original_height) == (320, 200)
        assert record.analysis.suggested_caption == "A photo"
        # Only the package image was analyzed
        assert vision.generator.calls == [MimeClass.PNG]
        assert "{{IMAGE_0}}" in result.html_content

    @pytest.mark.asyncio
    async def test_missing_placeholders_appended_to_html(self, vision, png_bytes):
        codec = FakeCodec(media=[("word/media/a.png", png_bytes), ("word/media/b.png", png_bytes)])

        result = await DocumentParser(codec, vision).parse(b"doc")

        assert result.html_content.endswith(
            '<p><img src="{{IMAGE_0}}" /></p><p><img src="{{IMAGE_1}}" /></p>'
        )

    @pytest.mark.asyncio
    async def test_decoder_route_when_package_has_no_images(self, vision, jpeg_bytes):
        codec = FakeCodec(decoder_images=[(jpeg_bytes, "image/jpeg")])

        result = await DocumentParser(codec, vision).parse(b"doc")

        record = result.images["{{IMAGE_0}}"]
        assert record.mime_class == MimeClass.JPEG
        assert (record.original_width, record.original_height) == (800, 600)
        assert vision.generator.calls == [MimeClass.JPEG]
        assert '<img src="{{IMAGE_0}}" />' in result.html_content

    @pytest.mark.asyncio
    async def test_decoder_route_when_package_inspection_fails(self, vision, png_bytes):
        codec = FakeCodec(decoder_images=[(png_bytes, "image/png")], fail={"media"})

        result = await DocumentParser(codec, vision).parse(b"doc")

        assert list(result.images) == ["{{IMAGE_0}}"]
        assert result.metadata.image_count == 1

    @pytest.mark.asyncio
    async def test_all_strategies_failing_yields_zero_images(self, vision):
        codec = FakeCodec(fail={"media", "rich"})

        result = await DocumentParser(codec, vision).parse(b"doc")

        assert result.images == {}
        assert result.tables == []
        assert result.html_content == ""
        assert result.raw_text == "Hello world"
        assert result.metadata.image_count == 0

    @pytest.mark.asyncio
    async def test_images_keep_document_order(self, vision):
        media = [
            ("word/media/image1.png", make_image("PNG", 10, 10)),
            ("word/media/image2.gif", make_image("GIF", 20, 20)),
            ("word/media/image3.jpeg", make_image("JPEG", 30, 30)),
        ]
        codec = FakeCodec(media=media)

        result = await DocumentParser(codec, vision).parse(b"doc")

        assert list(result.images) == ["{{IMAGE_0}}", "{{IMAGE_1}}", "{{IMAGE_2}}"]
        assert [r.original_width for r in result.images.values()] == [10, 20, 30]
        assert vision.generator.calls == [MimeClass.PNG, MimeClass.GIF, MimeClass.JPEG]

    @pytest.mark.asyncio
    async def test_placeholders_follow_document_order_not_archive_order(self, vision):
        narrow, wide = make_image("PNG", 111, 10), make_image("PNG", 222, 10)
        codec = FakeCodec(
            media=[("word/media/image1.png", wide), ("word/media/image2.png", narrow)],
            decoder_images=[(narrow, "image/png"), (wide, "image/png")],
        )

        result = await DocumentParser(codec, vision).parse(b"doc")

        assert result.images["{{IMAGE_0}}"].original_width == 111
        assert result.images["{{IMAGE_1}}"].original_width == 222
        html = result.html_content
        assert html.index("{{IMAGE_0}}") < html.index("{{IMAGE_1}}")
        assert html.count("{{IMAGE_0}}") == 1 and html.count("{{IMAGE_1}}") == 1

    @pytest.mark.asyncio
    async def test_unsupported_image_does_not_shift_placeholders(self, vision, png_bytes):
        codec = FakeCodec(
            media=[("word/media/image2.png", png_bytes)],
            decoder_images=[(b"\x01\x00\x00\x00 EMF metafile", "image/x-emf"), (png_bytes, "image/png")],
        )

        result = await DocumentParser(codec, vision).parse(b"doc")

        assert list(result.images) == ["{{IMAGE_0}}"]
        assert '<img src="" />' in result.html_content
        assert result.html_content.count("{{IMAGE_0}}") == 1
        assert "{{IMAGE_1}}" not in result.html_content

    @pytest.mark.asyncio
    async def test_repeated_image_reuses_its_placeholder(self, vision, png_bytes):
        codec = FakeCodec(
            media=[("word/media/image1.png", png_bytes)],
            decoder_images=[(png_bytes, "image/png"), (png_bytes, "image/png")],
        )

        result = await DocumentParser(codec, vision).parse(b"doc")

        assert list(result.images) == ["{{IMAGE_0}}"]
        assert result.html_content.count("{{IMAGE_0}}") == 2

    @pytest.mark.asyncio
    async def test_package_images_kept_when_html_decoding_fails(self, vision, png_bytes, jpeg_bytes):
        codec = FakeCodec(
            media=[("word/media/image1.png", png_bytes), ("word/media/image2.jpeg", jpeg_bytes)],
            fail={"rich"},
        )

        result = await DocumentParser(codec, vision).parse(b"doc")

        assert list(result.images) == ["{{IMAGE_0}}", "{{IMAGE_1}}"]
        assert result.html_content == '<p><img src="{{IMAGE_0}}" /></p><p><img src="{{IMAGE_1}}" /></p>'
        # Each image is analyzed once; the decoder route never runs
        assert vision.generator.calls == [MimeClass.PNG, MimeClass.JPEG]
        assert codec.rich_calls == 1


class TestParseFailures:

    @pytest.mark.asyncio
    async def test_raw_text_failure_is_fatal(self, settings):
        parser = DocumentParser(FakeCodec(fail={"raw"}), VisionService(settings))

        with pytest.raises(DocumentDecodeError):
            await parser.parse(b"doc")

    @pytest.mark.asyncio
    async def test_markdown_failure_is_not_fatal(self, settings):
        parser = DocumentParser(FakeCodec(fail={"markdown"}), VisionService(settings))

        result = await parser.parse(b"doc")

        assert result.markdown == ""


# ═══════════════════════════════════════════════════════════════
# REAL DOCUMENTS
# ═══════════════════════════════════════════════════════════════

class TestRealDocuments:

    @pytest.mark.asyncio
    async def test_hello_world_document(self, settings, hello_docx):
        parser = DocumentParser(DocumentCodec(), VisionService(settings))

        result = await parser.parse(hello_docx)

        assert result.images == {}
        assert result.tables == []
        assert result.metadata.word_count == 2
        assert result.metadata.paragraph_count == 1
        assert result.metadata.complexity == Complexity.SIMPLE

    @pytest.mark.asyncio
    async def test_document_with_table_and_image(self, settings, rich_docx):
        parser = DocumentParser(DocumentCodec(), VisionService(settings))

        result = await parser.parse(rich_docx)

        assert list(result.images) == ["{{IMAGE_0}}"]
        record = result.images["{{IMAGE_0}}"]
        assert record.analysis == FALLBACK_ANALYSIS
        assert (record.original_width, record.original_height) == (320, 200)
        assert [t.rows for t in result.tables] == [[["Region", "Q1"], ["North", "10"], ["South", "12"]]]
        assert result.html_content.count("{{IMAGE_0}}") == 1
        assert result.metadata.has_tables is True
        assert "Quarterly Report" in result.raw_text

    @pytest.mark.asyncio
    async def test_media_stored_out_of_document_order(self, settings):
        first, second = make_image("PNG", 111, 40), make_image("PNG", 222, 40)
        document = reverse_media_entries(build_docx(paragraphs=["Figures"], images=[first, second]))
        parser = DocumentParser(DocumentCodec(), VisionService(settings))

        result = await parser.parse(document)

        assert [r.original_width for r in result.images.values()] == [111, 222]
        html = result.html_content
        assert html.index("{{IMAGE_0}}") < html.index("{{IMAGE_1}}")
