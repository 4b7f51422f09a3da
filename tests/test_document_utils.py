from unittest.mock import patch

import docx
import fitz
import pytest

from document_utils import (
    ExtractionError, extract_text, guess_mime_type, is_allowed_upload, normalize_whitespace, DOCX_MIME,
)

PPTX_MIME = "application/vnd.openxmlformats-officedocument.presentationml.presentation"


def test_plain_text_is_read_and_whitespace_collapsed(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("Cells   divide\t by mitosis.\n\n\n\nThe end.  ", encoding="utf-8")
    assert extract_text(str(path), "text/plain") == "Cells divide by mitosis.\n\nThe end."


def test_docx_paragraphs_and_tables(tmp_path):
    path = tmp_path / "essay.docx"
    document = docx.Document()
    document.add_paragraph("Introduction to genetics")
    document.add_paragraph("")
    table = document.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Gene"
    table.rows[0].cells[1].text = "Unit of heredity"
    document.save(str(path))
    text = extract_text(str(path), DOCX_MIME)
    assert "Introduction to genetics" in text
    assert "Gene | Unit of heredity" in text


def test_pdf_text_layer(tmp_path):
    path = tmp_path / "doc.pdf"
    pdf = fitz.open()
    page = pdf.new_page()
    page.insert_text((72, 72), "Second law relates force and mass")
    pdf.save(str(path))
    pdf.close()
    with patch("document_utils._ocr_image_bytes") as ocr:
        text = extract_text(str(path), "application/pdf")
    assert "Second law relates force" in text
    ocr.assert_not_called()


def test_pdf_blank_page_goes_through_ocr(tmp_path):
    path = tmp_path / "scan.pdf"
    pdf = fitz.open()
    pdf.new_page()
    pdf.save(str(path))
    pdf.close()
    with patch("document_utils._ocr_image_bytes", return_value="Scanned text") as ocr:
        assert extract_text(str(path), "application/pdf") == "Scanned text"
    assert ocr.call_args.args[1] == "image/png"


def test_image_uses_ocr(tmp_path):
    path = tmp_path / "board.png"
    path.write_bytes(b"\x89PNG fake")
    with patch("document_utils._ocr_image_bytes", return_value="E = mc^2") as ocr:
        assert extract_text(str(path), "image/png") == "E = mc^2"
    assert ocr.call_args.args[0] == b"\x89PNG fake"


def test_unsupported_type_yields_placeholder(tmp_path):
    path = tmp_path / "slides.pptx"
    path.write_bytes(b"PK")
    assert extract_text(str(path), PPTX_MIME) == f"[Unsupported file type: {PPTX_MIME}]"


def test_missing_file_raises(tmp_path):
    with pytest.raises(ExtractionError):
        extract_text(str(tmp_path / "gone.txt"), "text/plain")


def test_upload_type_checks():
    assert guess_mime_type("notes.md") == "text/markdown"
    assert guess_mime_type("scan.pdf", "application/octet-stream") == "application/pdf"
    assert is_allowed_upload("scan.pdf", "application/pdf")
    assert not is_allowed_upload("run.exe", "application/octet-stream")
    assert not is_allowed_upload("notes.pdf", "application/x-msdownload")


def test_normalize_whitespace():
    assert normalize_whitespace("  a  \n   b\n\n\n\nc ") == "a\nb\n\nc"
