import hashlib
import re
from posixpath import splitext
from urllib.parse import urlsplit

TITLE_MAX_LEN = 50
DEFAULT_EXTENSION = "pdf"

VALID_EXTENSIONS = {"pdf", "html", "htm", "md", "txt", "json", "zip"}

CONTENT_TYPE_EXTENSIONS = {
    "application/pdf": "pdf",
    "text/html": "html",
    "text/markdown": "md",
    "application/json": "json",
    "text/plain": "txt",
    "application/zip": "zip",
}

_UNSAFE = re.compile(r"[^a-z0-9_-]")


def sha256_hex(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def sanitize_title(title: str) -> str:
    title = (title or "").lower().replace(" ", "_")
    return _UNSAFE.sub("", title)[:TITLE_MAX_LEN]


def generate_path(provider_slug: str, report_id: int, title: str, extension: str) -> str:
    """provider/1234_some_audit.pdf"""
    return f"{provider_slug}/{report_id}_{sanitize_title(title)}.{extension}"


def extension_from_url(url: str) -> str:
    path = urlsplit(url).path
    ext = splitext(path)[1].lower().lstrip(".")
    return ext if ext in VALID_EXTENSIONS else ""


def extension_from_content_type(content_type: str) -> str:
    ct = (content_type or "").split(";", 1)[0].strip().lower()
    return CONTENT_TYPE_EXTENSIONS.get(ct, DEFAULT_EXTENSION)


def determine_extension(url: str, content_type: str) -> str:
    # URL приоритетнее Content-Type
    return extension_from_url(url) or extension_from_content_type(content_type)
