import pytest

from addon_catalog.sanitizer import sanitize_svg, sanitize_svg_text


def _clean(text: str) -> str:
    return sanitize_svg(text.encode("utf-8")).decode("utf-8")


def test_removes_script_blocks_across_lines():
    out = _clean('<svg><SCRIPT type="text/javascript">\nalert(1)\n</script><rect/></svg>')
    assert "script" not in out.lower()
    assert "<rect/>" in out


def test_removes_quoted_and_bare_event_handlers():
    out = _clean("<svg onload=\"alert(1)\"><rect onclick='x()' onmouseover=evil() width=\"2\"/></svg>")
    assert "onload" not in out
    assert "onclick" not in out
    assert "onmouseover" not in out
    assert 'width="2"' in out


def test_neutralizes_javascript_and_non_image_data_hrefs():
    out = _clean(
        '<svg><a href="javascript:alert(1)">x</a>'
        '<a xlink:href="data:text/html;base64,PHNjcmlwdD4=">y</a>'
        '<image href="data:image/png;base64,iVBORw0KGgo="/></svg>'
    )
    assert "javascript:" not in out
    assert 'href=""' in out
    assert 'xlink:href=""' in out
    assert "data:text/html" not in out
    assert "data:image/png;base64,iVBORw0KGgo=" in out


def test_removes_foreign_object_and_external_use():
    out = _clean(
        "<svg><foreignObject><body><p>hi</p></body></foreignObject>"
        '<use xlink:href="https://evil.example/sprite.svg#x"/>'
        '<use xlink:href="#local"/></svg>'
    )
    assert "foreignObject" not in out
    assert "evil.example" not in out
    assert '<use xlink:href="#local"/>' in out


@pytest.mark.parametrize(
    "fragment",
    [
        '<iframe src="https://evil.example"></iframe>',
        '<embed src="x.swf"/>',
        '<object data="x"></object>',
        '<set attributeName="x" to="1" onbegin="alert(1)"/>',
    ],
)
def test_removes_embedding_and_animation_with_handlers(fragment):
    out = _clean(f"<svg>{fragment}<circle r=\"1\"/></svg>")
    for tag in ("iframe", "embed", "object", "onbegin"):
        assert tag not in out
    assert '<circle r="1"/>' in out


def test_spliced_script_is_removed_and_output_is_a_fixed_point():
    dirty = "<svg><scr<script></script>ipt>alert(1)</script></svg>"
    once = sanitize_svg_text(dirty)
    assert "<script" not in once.lower()
    assert sanitize_svg_text(once) == once


@pytest.mark.parametrize(
    "dirty",
    [
        "<svg><rect/></svg>",
        '<svg onload="a()" onerror=b()><script>c()</script></svg>',
        '<svg><a href="javascript:void(0)">x</a><iframe/></svg>',
        "<svg><foreignObject><foreignObject></foreignObject></foreignObject></svg>",
    ],
)
def test_sanitize_is_idempotent(dirty):
    once = sanitize_svg(dirty.encode("utf-8"))
    assert sanitize_svg(once) == once


def test_invalid_utf8_is_replaced_not_raised():
    out = sanitize_svg(b"<svg>\xff\xfe<rect/></svg>")
    assert out.startswith(b"<svg>")
    assert b"<rect/>" in out
