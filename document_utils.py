import base64
import logging
import mimetypes
import os
import re

import docx  # python-docx
import fitz  # PyMuPDF
from flask import current_app
from openai import OpenAI, OpenAIError

logger = logging.getLogger(__name__)

MODEL_OCR = "gpt-4.1"
OCR_PROMPT = (
    "Extract all text from this image exactly as it appears, including mathematical symbols and equations. "
    "Preserve the original formatting, line breaks, and layout as much as possible. "
    "Don't correct any errors in the text."
)

ALLOWED_MIME_TYPES = {
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "text/plain",
    "text/markdown",
    "image/png",
    "image/jpeg",
    "image/webp",
}
ALLOWED_EXTENSIONS = {".pdf", ".docx", ".pptx", ".txt", ".md", ".png", ".jpg", ".jpeg", ".webp"}

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Notes written in place of real text when nothing could be extracted
PLACEHOLDER_PREFIXES = ("[Unsupported file type:", "[Image content -", "[Failed to extract")


class ExtractionError(Exception):
    pass


def is_placeholder_text(text):
    return (text or "").lstrip().startswith(PLACEHOLDER_PREFIXES)


def guess_mime_type(filename, declared=None):
    if declared and declared != "application/octet-stream":
        return declared
    mime, _ = mimetypes.guess_type(filename or "")
    if not mime and (filename or "").lower().endswith(".md"):
        return "text/markdown"
    return mime or "application/octet-stream"


def is_allowed_upload(filename, mime_type):
    ext = os.path.splitext(filename or "")[1].lower()
    return ext in ALLOWED_EXTENSIONS and mime_type in ALLOWED_MIME_TYPES


def normalize_whitespace(text):
    text = re.sub(r"[ \t\r\f\v]+", " ", text or "")
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _ocr_image_bytes(data, mime_type="image/png"):
    client = OpenAI(api_key=current_app.config['OPENAI_API_KEY'])
    b64 = base64.b64encode(data).decode("utf-8")
    try:
        response = client.chat.completions.create(
            model=MODEL_OCR,
            messages=[{
                "role": "user",
                "content": [
                    {"type": "text", "text": OCR_PROMPT},
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{b64}"}},
                ],
            }],
            temperature=0.0,
            max_tokens=4000,
        )
    except OpenAIError as e:
        raise ExtractionError(f"OCR failed: {e}") from e
    return (response.choices[0].message.content or "").strip()


def extract_text_from_image(image_path, mime_type="image/png"):
    """Extract text from an image with a vision model."""
    with open(image_path, "rb") as f:
        return _ocr_image_bytes(f.read(), mime_type)


def extract_text_from_pdf(pdf_path):
    """Text layer first; pages without one (scans) go through OCR."""
    text_parts = []
    try:
        pdf_document = fitz.open(pdf_path)
    except Exception as e:
        raise ExtractionError(f"Could not open PDF: {e}") from e
    try:
        for page in pdf_document:
            text = page.get_text()
            if text.strip():
                text_parts.append(text.strip())
                continue
            pix = page.get_pixmap()
            ocr_text = _ocr_image_bytes(pix.tobytes("png"), "image/png")
            if ocr_text:
                text_parts.append(ocr_text)
    finally:
        pdf_document.close()
    return "\n".join(text_parts)


def extract_text_from_docx(docx_path):
    try:
        document = docx.Document(docx_path)
    except Exception as e:
        raise ExtractionError(f"Could not open Word document: {e}") from e
    parts = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [c.text.strip() for c in row.cells if c.text.strip()]
            if cells:
                parts.append(" | ".join(cells))
    return "\n".join(parts)


def extract_text(file_path, mime_type):
    """
    Extract plain text from a stored upload based on its MIME type.
    Unsupported types yield a placeholder instead of failing, so the document
    still becomes usable for manual notes.
    """
    if not file_path or not os.path.exists(file_path):
        raise ExtractionError("Stored file not found")
    mime_type = mime_type or "application/octet-stream"
    if mime_type == "application/pdf":
        text = extract_text_from_pdf(file_path)
    elif mime_type == DOCX_MIME:
        text = extract_text_from_docx(file_path)
    elif mime_type.startswith("text/"):
        with open(file_path, "r", encoding="utf-8", errors="replace") as f:
            text = f.read()
    elif mime_type.startswith("image/"):
        text = extract_text_from_image(file_path, mime_type)
    else:
        logger.info("No extractor for %s (%s)", file_path, mime_type)
        return f"[Unsupported file type: {mime_type}]"
    return normalize_whitespace(text)
