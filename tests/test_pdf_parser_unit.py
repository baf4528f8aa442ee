from __future__ import annotations

import json

import pytest

fitz = pytest.importorskip("fitz")

from extraction.pdf_parser import PdfDocumentProvider  # noqa: E402


def _write_pdf(path, lines, title="Sample"):
    doc = fitz.open()
    for text in lines:
        page = doc.new_page(width=595, height=842)
        page.insert_text((72, 72), text, fontsize=20, fontname="helv")
        page.insert_text((72, 400), f"Body of {text}", fontsize=10, fontname="helv")
    doc.set_metadata({"title": title, "author": "QA"})
    doc.save(str(path))
    doc.close()
    return path


def test_load_document(tmp_path):
    pdf = _write_pdf(tmp_path / "a.pdf", ["Annual Report", "Appendix"])
    document = PdfDocumentProvider().load_document(pdf)

    assert document.name == "a.pdf"
    assert document.page_count == 2
    assert document.metadata["title"] == "Sample"

    page = document.pages[0]
    assert page.width == pytest.approx(595)
    assert "Annual Report" in page.text
    heading = next(run for run in page.runs if run.text == "Annual Report")
    assert heading.font_size == pytest.approx(20, abs=0.5)
    assert heading.y < 100
    assert page.fonts
    assert not page.failed


def test_render_pages(tmp_path):
    pdf = _write_pdf(tmp_path / "a.pdf", ["One"])
    provider = PdfDocumentProvider()
    (image,) = provider.render_pages(pdf, dpi=72)
    assert image.size == (595, 842)
    (hires,) = provider.render_pages(pdf, dpi=144)
    assert hires.size == (1190, 1684)


def test_compare_pdfs_end_to_end(tmp_path):
    from pipeline import compare_pdfs

    a = _write_pdf(tmp_path / "a.pdf", ["Annual Report", "Appendix"])
    b = _write_pdf(tmp_path / "b.pdf", ["Annual Report", "Appendix"], title="Revised")
    result = compare_pdfs(a, b)

    assert result.complete
    assert [(p.base_index, p.compare_index) for p in result.page_pairs] == [(0, 0), (1, 1)]
    assert result.summary.identical_pages == 2
    assert "title" in {d.key for d in result.metadata_differences}


def test_cli_writes_report(tmp_path):
    from app import main

    a = _write_pdf(tmp_path / "a.pdf", ["Annual Report"])
    b = _write_pdf(tmp_path / "b.pdf", ["Annual Report"])
    out = tmp_path / "report.json"
    assert main([str(a), str(b), "--output", str(out), "--no-render"]) == 0
    report = json.loads(out.read_text(encoding="utf-8"))
    assert report["summary"]["matched_pages"] == 1
