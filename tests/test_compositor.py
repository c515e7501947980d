# tests/test_compositor.py
import io
from pathlib import Path

import pytest
from PIL import Image, ImageDraw

from bookpress.lib.compositor import (
    OverlayCoordinates,
    PageCompositionOptions,
    TextConfig,
    analyze_optimal_overlay_position,
    book_page_count,
    calculate_cover_spread_dimensions,
    calculate_overlay_coordinates,
    compose_cover_spread,
    compose_page,
    create_dedication_page,
    create_promo_page,
    deterministic_strategy,
    ensure_even_page_count,
    load_font,
    normalize_position,
    overlay_path,
    render_overlay_with_text,
    wrap_text,
)


def _open(data: bytes) -> Image.Image:
    im = Image.open(io.BytesIO(data))
    im.load()
    return im


def test_bottom_overlay_on_print_canvas():
    c = calculate_overlay_coordinates("b")
    assert (c.x, c.y, c.width, c.height) == (243, 1654, 1946, 729)


@pytest.mark.parametrize("pos,expected", [
    ("t", (243, 50, 1946, 729)),
    ("tl", (50, 50, 1946, 729)),
    ("br", (437, 1654, 1946, 729)),
    ("topMAX", (243, 50, 1946, 1094)),
    ("bottomMAX", (243, 1289, 1946, 1094)),
])
def test_anchor_table(pos, expected):
    c = calculate_overlay_coordinates(pos)
    assert (c.x, c.y, c.width, c.height) == expected
    assert c.box[2] <= 2433 and c.box[3] <= 2433


@pytest.mark.parametrize("raw,expected", [
    ("bottom", "b"), ("top_left", "tl"), ("TR", "tr"), ("bottommax", "bottomMAX"), ("middle", "b"), ("", "b"),
])
def test_position_normalisation(raw, expected):
    assert normalize_position(raw) == expected


def test_unknown_position_resolves_as_bottom():
    assert calculate_overlay_coordinates("sideways") == OverlayCoordinates("b", 243, 1654, 1946, 729)


def test_position_choice_is_deterministic():
    assert analyze_optimal_overlay_position(451, 0) == "bottomMAX"
    assert analyze_optimal_overlay_position(451, 3) == "topMAX"
    assert [analyze_optimal_overlay_position(450, i) for i in range(5)] == ["b", "t", "bl", "br", "b"]
    assert deterministic_strategy(b"", "x" * 500, 2) == "bottomMAX"


def test_overlay_asset_paths():
    root = Path("/assets")
    assert overlay_path(root, "3-5", "bottom") == str(root / "overlays" / "3-5" / "V2" / "bottom.png")
    assert overlay_path(root, "Ages 6 to 8", "tl") == str(root / "overlays" / "ages-6-to-8" / "V2" / "top_left.png")
    assert overlay_path(root, "3-5", "bottomMAX") == str(root / "overlays" / "3-5" / "MAX" / "bottomMAX.png")


@pytest.mark.parametrize("n", [0, 1, 7, 8, 23])
def test_even_page_count(n):
    once = ensure_even_page_count(n)
    assert once % 2 == 0 and once in (n, n + 1)
    assert ensure_even_page_count(once) == once


def test_book_page_count_includes_extras():
    assert book_page_count(12, has_dedication=True) == 14
    assert book_page_count(12, has_dedication=False) == 14
    assert book_page_count(3, has_dedication=False) == 4


def test_wrapped_lines_fit_width():
    img = Image.new("RGB", (10, 10))
    draw = ImageDraw.Draw(img)
    font = load_font("Arial", 24)
    text = "Once upon a time a very small dragon found a supercalifragilisticexpialidocious kite"
    lines = wrap_text(draw, text, font, 150)
    assert len(lines) > 1
    assert all(draw.textlength(line, font=font) <= 150 for line in lines)
    assert "".join(lines).replace(" ", "") == text.replace(" ", "")


def test_compose_page_without_asset_draws_band(png_bytes):
    res = compose_page(PageCompositionOptions(
        base_image=png_bytes((400, 400), (0, 0, 0)),
        text="Maya ran to the hill.",
        position="b",
        overlay_path=None,
        text_config=TextConfig(font_size=24, line_spacing=28),
    ))
    assert res.ok
    assert res.meta["position"] == "b"
    im = _open(res.value).convert("RGB")
    assert im.size == (400, 400)
    # band sits in the lower part, the top stays untouched
    assert im.getpixel((200, 20)) == (0, 0, 0)
    assert sum(im.getpixel((50, 300))) > 300


def test_compose_page_with_asset(tmp_path, png_bytes):
    asset = tmp_path / "bottom.png"
    Image.new("RGBA", (50, 20), (255, 240, 200, 255)).save(asset)
    res = compose_page(PageCompositionOptions(
        base_image=png_bytes((400, 400), (0, 0, 0)),
        text="",
        position="t",
        overlay_path=str(asset),
    ))
    assert res.ok
    assert _open(res.value).convert("RGB").getpixel((200, 70)) == (255, 240, 200)


def test_missing_asset_and_bad_base_are_errors(tmp_path, png_bytes):
    missing = compose_page(PageCompositionOptions(
        base_image=png_bytes(), text="hi", overlay_path=str(tmp_path / "nope.png"),
    ))
    assert not missing.ok
    assert "not found" in missing.error

    broken = compose_page(PageCompositionOptions(base_image=b"\x00\x01", text="hi"))
    assert not broken.ok


def test_long_text_shrinks_to_fit(png_bytes):
    res = compose_page(PageCompositionOptions(
        base_image=png_bytes((300, 300)),
        text="word " * 200,
        position="bottomMAX",
        text_config=TextConfig(font_size=60, line_spacing=66),
    ))
    assert res.ok
    assert res.meta["position"] == "bottomMAX"
    assert res.meta["truncated_lines"] > 0


def test_overflowing_text_stays_inside_the_band():
    cfg = TextConfig(font_size=60, line_spacing=66, text_color="#ffffff", border_percent=20)
    band = Image.new("RGBA", (600, 300), (0, 0, 0, 255))

    layer, lines, dropped = render_overlay_with_text((600, 300), "word " * 400, cfg, band)

    assert dropped > 0
    assert lines
    # bottom border (60 px) keeps clear of glyphs apart from descenders
    bottom = layer.convert("RGB").crop((0, 260, 600, 300))
    assert all(hi == 0 for _, hi in bottom.getextrema())


def test_short_text_is_not_truncated(png_bytes):
    res = compose_page(PageCompositionOptions(base_image=png_bytes((400, 400)), text="The kite flew."))
    assert res.ok
    assert "truncated_lines" not in res.meta


def test_extra_pages_are_print_size():
    cfg = TextConfig(font_size=40, line_spacing=44)
    assert _open(create_dedication_page("For Maya", cfg)).size == (2433, 2433)
    assert _open(create_promo_page("bookpress.example", cfg, width=600, height=600)).size == (600, 600)


def test_spine_width_has_a_floor():
    assert calculate_cover_spread_dimensions(24)["spine_width"] == 100
    wide = calculate_cover_spread_dimensions(1000)
    assert wide["spine_width"] == 1181
    assert wide["total_width"] == 2 * 2433 + 1181


def test_cover_spread_layout(png_bytes):
    res = compose_cover_spread(
        png_bytes((2433, 2433), (200, 0, 0)),
        png_bytes((2433, 2433), (0, 0, 200)),
        page_count=14,
        spine_color="#00ff00",
    )
    assert res.ok
    im = _open(res.value).convert("RGB")
    assert im.size == (2433 * 2 + 100, 2433)
    assert im.getpixel((10, 10)) == (0, 0, 200)          # back on the left
    assert im.getpixel((2433 + 50, 10)) == (0, 255, 0)   # spine
    assert im.getpixel((2433 + 100 + 10, 10)) == (200, 0, 0)
