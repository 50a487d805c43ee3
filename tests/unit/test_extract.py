"""Unit tests for PDF text extraction and document download."""

import httpx
import pytest

from lectern.core import extract
from lectern.core.errors import ExtractionFailed
from lectern.core.extract import clean_text, extract_pages, fetch_document

from fakes import make_pdf


class TestCleanText:
    def test_keeps_accents_and_medical_punctuation(self):
        text = "Système nerveux (SNC): neurones; axones - synapses."
        assert clean_text(text) == text

    def test_replaces_symbols_with_spaces(self):
        assert clean_text("Na+/K+ ATPase → 3 Na") == "Na K ATPase 3 Na"

    def test_collapses_blank_lines_and_spaces(self):
        assert clean_text("  Titre\n\n\n   \nParagraphe    deux  ") == "Titre\n\nParagraphe deux"

    def test_whitespace_only(self):
        assert clean_text(" \n\t ") == ""


class TestExtractPages:
    def test_one_entry_per_page(self):
        data = make_pdf(["Premiere page sur le coeur", "", "Troisieme page sur le rein"])

        pages = extract_pages(data)

        assert [p.page for p in pages] == [1, 2, 3]
        assert "coeur" in pages[0].text
        assert pages[1].text == ""
        assert "rein" in pages[2].text

    def test_raw_text_when_not_cleaning(self):
        data = make_pdf(["Dose: 5 mg/kg"])

        assert "/" in extract_pages(data, clean=False)[0].text
        assert "/" not in extract_pages(data)[0].text

    def test_empty_bytes(self):
        with pytest.raises(ExtractionFailed):
            extract_pages(b"")

    def test_corrupt_bytes(self):
        with pytest.raises(ExtractionFailed):
            extract_pages(b"%PDF-1.4 this is not really a pdf")

    def test_not_a_pdf(self):
        with pytest.raises(ExtractionFailed):
            extract_pages(b"<html><body>404</body></html>")

    def test_html_login_page_rejected(self):
        html = b"<html><body><h1>Session expired</h1>Please log in</body></html>"

        with pytest.raises(ExtractionFailed, match="not a PDF"):
            extract_pages(html)


class TestFetchDocument:
    def _patch_get(self, monkeypatch, handler):
        transport = httpx.MockTransport(handler)

        def fake_get(url, **kwargs):
            with httpx.Client(transport=transport, follow_redirects=True) as client:
                return client.get(url, timeout=kwargs.get("timeout"))

        monkeypatch.setattr(extract.httpx, "get", fake_get)

    def test_returns_body(self, monkeypatch):
        self._patch_get(monkeypatch, lambda request: httpx.Response(200, content=b"%PDF-data"))

        assert fetch_document("https://cdn.example.org/cours.pdf") == b"%PDF-data"

    def test_http_error_status(self, monkeypatch):
        self._patch_get(monkeypatch, lambda request: httpx.Response(404))

        with pytest.raises(ExtractionFailed) as exc_info:
            fetch_document("https://cdn.example.org/missing.pdf")

        assert "404" in exc_info.value.message
        assert exc_info.value.details["source"] == "https://cdn.example.org/missing.pdf"

    def test_transport_error(self, monkeypatch):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        self._patch_get(monkeypatch, handler)

        with pytest.raises(ExtractionFailed):
            fetch_document("https://cdn.example.org/cours.pdf")
