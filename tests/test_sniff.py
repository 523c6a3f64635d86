import io
import zipfile

import pytest

from filerelay_backend import sniff
from filerelay_backend.sniff import TEXT_PLAIN, detect_content_type

PNG_HEADER = (
    b"\x89PNG\r\n\x1a\n"
    b"\x00\x00\x00\rIHDR"
    b"\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00"
    b"\x1f\x15\xc4\x89"
)


def _zip_bytes():
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("notes.txt", "some notes " * 20)
    return buf.getvalue()


@pytest.mark.parametrize(
    "data, expected",
    [
        (PNG_HEADER, "image/png"),
        (b"GIF89a\x01\x00\x01\x00\x80\x00\x00\xff\xff\xff\x00\x00\x00", "image/gif"),
        (b"%PDF-1.7\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<< /Type /Catalog >>\nendobj\n", "application/pdf"),
        (b"just some plain words\nacross two lines\n", "text/plain"),
    ],
)
def test_detect_content_type(data, expected):
    assert detect_content_type(data) == expected


def test_detect_zip_archive():
    assert detect_content_type(_zip_bytes()) == "application/zip"


def test_empty_input_is_plain_text():
    assert detect_content_type(b"") == TEXT_PLAIN


def test_only_leading_bytes_are_considered(monkeypatch):
    seen = []

    def fake_from_buffer(buffer, mime=False):
        seen.append((len(buffer), mime))
        return "application/x-test"

    monkeypatch.setattr(sniff.magic, "from_buffer", fake_from_buffer)
    assert detect_content_type(b"a" * 2000) == "application/x-test"
    assert seen == [(512, True)]
