import pytest

from src.docflow.domain.services.storage_path import (
    determine_extension,
    generate_path,
    sanitize_title,
    sha256_hex,
)


def test_sanitize_title():
    assert sanitize_title("Aave V3: Security Review (Final)") == "aave_v3_security_review_final"
    assert len(sanitize_title("x" * 200)) == 50
    assert sanitize_title("") == ""


def test_generate_path():
    assert generate_path("openzeppelin", 1234, "Compound Audit", "pdf") == "openzeppelin/1234_compound_audit.pdf"


@pytest.mark.parametrize(
    "url, content_type, expected",
    [
        ("https://x.org/r.PDF", "text/html", "pdf"),
        ("https://x.org/readme.md?raw=1", "", "md"),
        ("https://x.org/download?id=1", "text/html; charset=utf-8", "html"),
        ("https://x.org/archive.exe", "application/zip", "zip"),
        ("https://x.org/file", "application/octet-stream", "pdf"),
    ],
)
def test_determine_extension(url, content_type, expected):
    assert determine_extension(url, content_type) == expected


def test_sha256_hex():
    assert sha256_hex(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
