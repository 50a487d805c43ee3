"""Unit tests for the ingest pipeline and folder ingestion."""

from pathlib import Path

import pytest

from lectern.core.errors import EmbeddingFailure, ExtractionFailed, IndexNotFound
from lectern.core.extract import ExtractedPage
from lectern.core.ingest import (
    build_chunk_records,
    derive_folder_metadata,
    ingest_directory,
    ingest_document,
    ingest_pdf,
    ingest_url,
)

from fakes import make_pdf, permanent

PAGE_ONE = "".join(chr(ord("a") + i % 26) for i in range(1000))


def pages_extractor(texts):
    def extractor(data):
        return [ExtractedPage(page=i, text=t) for i, t in enumerate(texts, 1)]
    return extractor


def test_build_chunk_records_numbers_chunks_per_page():
    pages = [
        ExtractedPage(page=1, text=PAGE_ONE),
        ExtractedPage(page=2, text=""),
        ExtractedPage(page=3, text="court"),
    ]

    records = build_chunk_records(pages, {"source": "x.pdf"}, 800, 150)

    assert [(r.page, r.ord) for r in records] == [(1, 0), (1, 1), (3, 0)]
    assert [len(r.text) for r in records] == [800, 350, 5]
    assert all(r.meta == {"source": "x.pdf"} for r in records)


def test_ingest_document_creates_index(store):
    result = ingest_document(
        b"ignored",
        store,
        source="https://cdn.example.org/cardio.pdf",
        index_name="Cardio",
        metadata={"niveau": "PASS", "matiere": "UE1", "cours": "Cardio"},
        extractor=pages_extractor([PAGE_ONE, "Le coeur a quatre cavites."]),
    )

    assert result.index.name == "Cardio"
    assert result.pages == 2
    assert result.chunks == 3
    assert result.meta == {
        "niveau": "PASS",
        "matiere": "UE1",
        "cours": "Cardio",
        "source": "https://cdn.example.org/cardio.pdf",
    }

    chunks = store.load_chunks(result.index.id)
    assert [(c.page, c.ord) for c in chunks] == [(1, 0), (1, 1), (2, 0)]
    assert all(c.meta["source"] == "https://cdn.example.org/cardio.pdf" for c in chunks)


def test_source_overrides_metadata_source(store):
    result = ingest_document(
        b"x", store, source="real.pdf", metadata={"source": "stale.pdf"},
        extractor=pages_extractor(["texte"]),
    )
    assert result.meta["source"] == "real.pdf"


def test_appends_to_existing_index(store):
    index = store.create_index("Existing")

    result = ingest_document(b"x", store, source="b.pdf", index_id=index.id,
                             extractor=pages_extractor(["suite du cours"]))

    assert result.index.id == index.id
    assert store.count_chunks(index.id) == 1


def test_unknown_index_id(store):
    with pytest.raises(IndexNotFound):
        ingest_document(b"x", store, source="b.pdf", index_id="missing",
                        extractor=pages_extractor(["texte"]))


def test_extraction_failure_creates_nothing(store):
    def broken(data):
        raise ExtractionFailed("Cannot open PDF")

    with pytest.raises(ExtractionFailed):
        ingest_document(b"x", store, source="bad.pdf", extractor=broken)

    assert store.list_indexes() == []


def test_html_served_as_pdf_is_rejected(store, provider):
    html = b"<html><body><h1>Session expired</h1>Please log in</body></html>"

    with pytest.raises(ExtractionFailed):
        ingest_document(html, store, source="https://cdn.example.org/cours.pdf")

    assert store.list_indexes() == []
    assert provider.calls == []


def test_scanned_pdf_gives_empty_index(store):
    result = ingest_document(b"x", store, source="scan.pdf",
                             extractor=pages_extractor(["", "  "]))

    assert result.pages == 2
    assert result.chunks == 0
    assert store.load_chunks(result.index.id) == []


def test_embedding_failure_propagates(store, provider):
    provider.failures.append(permanent())

    with pytest.raises(EmbeddingFailure):
        ingest_document(b"x", store, source="a.pdf", extractor=pages_extractor(["texte"]))


def test_custom_chunk_window(store):
    result = ingest_document(b"x", store, source="a.pdf", chunk_size=100, chunk_overlap=0,
                             extractor=pages_extractor(["y" * 250]))
    assert result.chunks == 3


def test_ingest_pdf_reads_file(tmp_path, store):
    pdf = tmp_path / "rein.pdf"
    pdf.write_bytes(make_pdf(["Le rein filtre le sang.", "Le nephron est l unite fonctionnelle."]))

    result = ingest_pdf(pdf, store, index_name="Rein")

    assert result.pages == 2
    assert result.chunks == 2
    assert result.meta["source"] == str(pdf)
    texts = [c.text for c in store.load_chunks(result.index.id)]
    assert "rein filtre" in texts[0]


def test_ingest_url_uses_url_as_source(monkeypatch, store):
    from lectern.core import ingest

    monkeypatch.setattr(ingest, "fetch_document", lambda url, timeout=60.0: b"bytes")

    result = ingest_url("https://cdn.example.org/a.pdf", store,
                        extractor=pages_extractor(["texte"]))

    assert result.meta["source"] == "https://cdn.example.org/a.pdf"


@pytest.mark.parametrize("relative,expected", [
    ("PASS/UE1/Anatomie.pdf", {"niveau": "PASS", "matiere": "UE1", "cours": "Anatomie"}),
    ("LAS/Physio/Cours/Rein.pdf", {"niveau": "LAS", "matiere": "Physio", "cours": "Rein"}),
    ("PASS/Biochimie.pdf", {"niveau": "PASS", "matiere": "PASS", "cours": "Biochimie"}),
    ("Seul.pdf", {"niveau": "UNKNOWN", "matiere": "General", "cours": "Seul"}),
])
def test_derive_folder_metadata(tmp_path, relative, expected):
    meta = derive_folder_metadata(tmp_path, tmp_path / relative)

    assert meta == {**expected, "source": relative}


def _tree(root: Path):
    for relative in ("PASS/UE1/Anatomie.pdf", "PASS/UE2/Chimie.PDF", "notes.txt"):
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"%PDF stand-in")


def test_ingest_directory_one_index_per_file(tmp_path, store):
    _tree(tmp_path)

    outcomes = ingest_directory(tmp_path, store, extractor=pages_extractor(["contenu"]))

    assert [o.file for o in outcomes] == ["PASS/UE1/Anatomie.pdf", "PASS/UE2/Chimie.PDF"]
    assert all(o.error is None and o.chunks == 1 for o in outcomes)
    names = sorted(i.name for i in store.list_indexes())
    assert names == ["Anatomie", "Chimie"]
    chunk = store.load_chunks(outcomes[0].index_id)[0]
    assert chunk.meta == {"source": "PASS/UE1/Anatomie.pdf", "niveau": "PASS",
                          "matiere": "UE1", "cours": "Anatomie"}


def test_ingest_directory_continues_after_failure(tmp_path, store):
    _tree(tmp_path)

    def extractor(data):
        if extractor.calls == 0:
            extractor.calls += 1
            raise ExtractionFailed("Cannot open PDF")
        return [ExtractedPage(page=1, text="contenu")]
    extractor.calls = 0

    outcomes = ingest_directory(tmp_path, store, extractor=extractor)

    assert outcomes[0].error is not None
    assert outcomes[1].error is None
    assert len(store.list_indexes()) == 1


def test_ingest_directory_dry_run_writes_nothing(tmp_path):
    _tree(tmp_path)

    outcomes = ingest_directory(tmp_path, None, dry_run=True,
                                extractor=pages_extractor([PAGE_ONE]))

    assert [o.chunks for o in outcomes] == [2, 2]
    assert all(o.index_id is None for o in outcomes)


def test_ingest_directory_without_pdfs(tmp_path, store):
    assert ingest_directory(tmp_path, store) == []
