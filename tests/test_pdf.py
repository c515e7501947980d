# tests/test_pdf.py
import re

from bookpress.lib.pdf import export_to_pdf

_PAGE = re.compile(rb"/Type /Page\b")
_MEDIABOX = re.compile(rb"/MediaBox \[\s*0 0 ([\d.]+) ([\d.]+)\s*\]")


def _page_sizes(path):
    with open(path, "rb") as f:
        raw = f.read()
    assert len(_PAGE.findall(raw)) == len(_MEDIABOX.findall(raw))
    return [(float(w), float(h)) for w, h in _MEDIABOX.findall(raw)]


def test_odd_book_is_padded_with_blank(tmp_path, png_bytes):
    pages = [png_bytes((120, 100), (i * 30, 0, 0)) for i in range(7)]
    out = tmp_path / "book" / "inside.pdf"

    res = export_to_pdf(pages, str(out))

    assert res.ok
    assert res.value.page_count == 8
    assert res.value.padded is True
    sizes = _page_sizes(out)
    assert len(sizes) == 8
    # native pixel size, padding page matches the last one
    assert set(sizes) == {(120.0, 100.0)}


def test_pages_keep_their_own_size(tmp_path, png_bytes):
    page_file = tmp_path / "p2.png"
    page_file.write_bytes(png_bytes((80, 80)))
    out = tmp_path / "mixed.pdf"

    res = export_to_pdf([png_bytes((200, 150)), str(page_file)], str(out))

    assert res.ok and res.value.padded is False
    assert _page_sizes(out) == [(200.0, 150.0), (80.0, 80.0)]


def test_cover_export_is_not_padded(tmp_path, png_bytes):
    out = tmp_path / "cover.pdf"
    res = export_to_pdf([png_bytes((300, 100))], str(out), pad_to_even=False, title="Cover")
    assert res.ok
    assert res.value.page_count == 1
    assert len(_page_sizes(out)) == 1


def test_bad_page_leaves_nothing_behind(tmp_path, png_bytes):
    out = tmp_path / "broken.pdf"
    res = export_to_pdf([png_bytes(), b"definitely not png", png_bytes()], str(out))

    assert not res.ok
    assert "page 2" in res.error
    assert not out.exists()
    assert not (tmp_path / "broken.pdf.part").exists()


def test_missing_icc_profile_still_exports(tmp_path, png_bytes):
    out = tmp_path / "noicc.pdf"
    res = export_to_pdf([png_bytes(), png_bytes()], str(out), icc_profile_path=str(tmp_path / "missing.icc"))
    assert res.ok
    assert res.value.icc_profile is None


def test_empty_book_is_an_error(tmp_path):
    assert not export_to_pdf([], str(tmp_path / "empty.pdf")).ok
