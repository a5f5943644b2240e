"""Best-effort neutralisation of scriptable SVG constructs.

This is a textual filter over the decoded document, not an XML parser. It
does not defend against entity-encoded or CDATA-wrapped payloads; icons are
also served with their own image MIME type so browsers never execute them
inline as HTML.
"""

import re

_FLAGS = re.IGNORECASE

_SCRIPT_BLOCK = re.compile(r"<script[\s\S]*?</script>", _FLAGS)
_EVENT_ATTR_QUOTED = re.compile(r"\s+on\w+\s*=\s*[\"'][^\"']*[\"']", _FLAGS)
_EVENT_ATTR_BARE = re.compile(r"\s+on\w+\s*=\s*[^\s>]+", _FLAGS)
_JS_XLINK_HREF = re.compile(r"xlink:href\s*=\s*[\"']javascript:[^\"']*[\"']", _FLAGS)
_JS_HREF = re.compile(r"(?<![\w:])href\s*=\s*[\"']javascript:[^\"']*[\"']", _FLAGS)
_DATA_XLINK_HREF = re.compile(r"xlink:href\s*=\s*[\"']data:(?!image/)[^\"']*[\"']", _FLAGS)
_DATA_HREF = re.compile(r"(?<![\w:])href\s*=\s*[\"']data:(?!image/)[^\"']*[\"']", _FLAGS)
_FOREIGN_OBJECT = re.compile(r"<foreignObject[\s\S]*?</foreignObject>", _FLAGS)
_EXTERNAL_USE = re.compile(r"<use[^>]*xlink:href\s*=\s*[\"'](?!#)[^\"']*[\"'][^>]*/?>", _FLAGS)
_EMBED_PAIR = re.compile(r"<(iframe|embed|object)[\s\S]*?</\1>", _FLAGS)
_EMBED_TAG = re.compile(r"<(iframe|embed|object)[^>]*/?>", _FLAGS)
_SET_WITH_EVENT = re.compile(r"<set[^>]*on\w+[^>]*/?>", _FLAGS)
_ANIMATE_WITH_EVENT = re.compile(r"<animate[^>]*on\w+[^>]*/?>", _FLAGS)


def _single_pass(content: str) -> str:
    content = _SCRIPT_BLOCK.sub("", content)

    content = _EVENT_ATTR_QUOTED.sub("", content)
    content = _EVENT_ATTR_BARE.sub("", content)

    content = _JS_XLINK_HREF.sub('xlink:href=""', content)
    content = _JS_HREF.sub('href=""', content)
    content = _DATA_XLINK_HREF.sub('xlink:href=""', content)
    content = _DATA_HREF.sub('href=""', content)

    content = _FOREIGN_OBJECT.sub("", content)
    content = _EXTERNAL_USE.sub("", content)

    content = _EMBED_PAIR.sub("", content)
    content = _EMBED_TAG.sub("", content)

    content = _SET_WITH_EVENT.sub("", content)
    content = _ANIMATE_WITH_EVENT.sub("", content)
    return content


def sanitize_svg_text(content: str) -> str:
    """Apply the filter until nothing changes.

    A removal can splice together a new construct (``<scr<script></script>ipt>``),
    so a single pass is not a fixed point. Every substitution shortens the
    text, which bounds the loop.
    """
    while True:
        cleaned = _single_pass(content)
        if cleaned == content:
            return cleaned
        content = cleaned


def sanitize_svg(data: bytes) -> bytes:
    """Return a copy of the SVG document with scriptable constructs removed."""
    content = data.decode("utf-8", errors="replace")
    return sanitize_svg_text(content).encode("utf-8")
