"""PDF text extraction and photo preprocessing."""
import io

import pytest
from PIL import Image
from pypdf import PdfWriter

from intent.parsers import (
    FileType,
    ParsedDocument,
    ParseError,
    combine_documents,
    detect_file_type,
    extract_pdf_text,
    prepare_image,
    sniff_image_type,
)


def image_bytes(fmt="PNG", size=(1024, 768), mode="RGB") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size).save(buf, format=fmt)
    return buf.getvalue()


def blank_pdf() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=200, height=200)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


@pytest.mark.parametrize("filename, content, expected", [
    ("quote.PDF", None, FileType.PDF),
    ("photo.jpeg", None, FileType.IMAGE),
    ("upload", b"%PDF-1.7 ...", FileType.PDF),
    ("upload", b"\x89PNG\r\n\x1a\n....", FileType.IMAGE),
    ("notes.txt", b"hello", FileType.UNKNOWN),
])
def test_detect_file_type(filename, content, expected):
    assert detect_file_type(filename, content) == expected


def test_sniff_image_type():
    assert sniff_image_type(image_bytes("PNG")) == "image/png"
    assert sniff_image_type(image_bytes("JPEG")) == "image/jpeg"
    assert sniff_image_type(image_bytes("GIF", mode="P")) == "image/gif"
    assert sniff_image_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
    assert sniff_image_type(b"plain text") is None


def test_prepare_image_shrinks_and_reencodes():
    prepared = prepare_image(image_bytes(size=(2048, 1024)), "image/png")

    assert prepared.mime_type == "image/jpeg"
    assert (prepared.width, prepared.height) == (512, 256)
    assert prepared.content.startswith(b"\xff\xd8\xff")


def test_prepare_image_keeps_small_images():
    prepared = prepare_image(image_bytes(size=(100, 50)))
    assert (prepared.width, prepared.height) == (100, 50)


def test_prepare_image_converts_alpha():
    prepared = prepare_image(image_bytes(size=(40, 40), mode="RGBA"))
    assert prepared.mime_type == "image/jpeg"


@pytest.mark.parametrize("content", [b"", b"definitely not an image"])
def test_prepare_image_rejects_bad_bytes(content):
    with pytest.raises(ParseError):
        prepare_image(content)


def test_pdf_without_text_layer():
    with pytest.raises(ParseError, match="No text could be extracted"):
        extract_pdf_text(io.BytesIO(blank_pdf()), "scan.pdf")


def test_garbage_pdf():
    with pytest.raises(ParseError):
        extract_pdf_text(io.BytesIO(b"this is not a pdf"), "broken.pdf")


def test_combine_documents():
    docs = [
        ParsedDocument(filename="a.pdf", text="  Repaint hallway \n", page_count=1),
        ParsedDocument(filename="b.pdf", text="Replace door", page_count=2),
    ]
    assert combine_documents(docs) == "PDF name: a.pdf\nRepaint hallway\n\nPDF name: b.pdf\nReplace door"
