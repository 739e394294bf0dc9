"""Extraction and rewriting of generated Three.js HTML documents.

The code model answers with free text: usually a fenced ``html`` block with
some prose around it, sometimes the bare document. This module pulls the
document out and applies two textual rewrites before it is embedded in the
sandboxed viewer:

* body prose (titles, instructions, captions) is hidden so only the canvas
  shows;
* camera construction is normalized to a fixed vantage point and field of
  view.

Both rewrites work on text only. They never execute the scene, and they leave
the document unchanged when nothing matches.
"""

import re

import structlog

logger = structlog.get_logger()

DEFAULT_CAMERA_POSITION: tuple[float, float, float] = (30.0, 30.0, 30.0)
DEFAULT_CAMERA_FOV: float = 45.0

HIDDEN_ATTR = "data-embed-hidden"
HIDDEN_STYLE_ATTR = "data-embed-hidden-style"
HIDDEN_STYLE = f"<style {HIDDEN_STYLE_ATTR}>[{HIDDEN_ATTR}]{{display:none !important;}}</style>"

# Elements that only carry human-readable text
PROSE_TAGS = frozenset(
    {
        "p", "h1", "h2", "h3", "h4", "h5", "h6",
        "span", "label", "small", "strong", "em", "b", "i", "a",
        "ul", "ol", "li", "dl", "dt", "dd",
        "blockquote", "figcaption", "pre", "code",
    }
)

ROOT_OPEN = r"<html(?:\s[^>]*)?>"
# An opener counts as the root only if no other opener precedes its closing
# tag, so a prose mention of <html> never swallows the real document
ROOT_PATTERN = re.compile(
    ROOT_OPEN + r"(?:(?!<html[\s>]).)*?</html\s*>", re.IGNORECASE | re.DOTALL
)
ROOT_OPEN_PATTERN = re.compile(ROOT_OPEN, re.IGNORECASE)
DOCTYPE_TAIL_PATTERN = re.compile(r"<!DOCTYPE\s+html[^>]*>\s*\Z", re.IGNORECASE)

BODY_PATTERN = re.compile(
    r"(?P<open><body(?:\s[^>]*)?>)(?P<content>.*)(?P<close></body\s*>)",
    re.IGNORECASE | re.DOTALL,
)
HEAD_CLOSE_PATTERN = re.compile(r"</head\s*>", re.IGNORECASE)

# Regions of the body that are never treated as prose
PROTECTED_PATTERN = re.compile(
    r"<!--.*?-->"
    r"|<(?P<tag>script|style|canvas|svg|template|noscript|textarea)(?:\s[^>]*)?>"
    r".*?(?:</(?P=tag)\s*>|\Z)",
    re.IGNORECASE | re.DOTALL,
)
OPEN_TAG_PATTERN = re.compile(r"<(?P<name>[a-zA-Z][a-zA-Z0-9]*)(?P<attrs>(?:\s[^<>]*)?)>")
HIDDEN_ATTR_PATTERN = re.compile(rf"(?<![\w-]){HIDDEN_ATTR}(?![\w-])", re.IGNORECASE)

SCRIPT_PATTERN = re.compile(
    r"(?P<open><script(?:\s[^>]*)?>)(?P<code>.*?)(?P<close></script\s*>)",
    re.IGNORECASE | re.DOTALL,
)

NUMBER = r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?"
CAMERA_NAME = r"(?<![\w$])[\w$]*camera[\w$]*"

# camera.position.set(x, y, z) with literal arguments only; animated cameras
# compute their arguments and are left alone
CAMERA_POSITION_PATTERN = re.compile(
    rf"(?P<call>{CAMERA_NAME}\s*\.\s*position\s*\.\s*set\s*\()"
    rf"\s*{NUMBER}\s*,\s*{NUMBER}\s*,\s*{NUMBER}\s*\)",
    re.IGNORECASE,
)
# new THREE.PerspectiveCamera(fov, aspect, near, far)
PERSPECTIVE_FOV_PATTERN = re.compile(
    rf"(?P<ctor>\bnew\s+(?:THREE\s*\.\s*)?PerspectiveCamera\s*\(\s*){NUMBER}(?P<rest>\s*[,)])"
)
# camera.fov = 75;
CAMERA_FOV_PATTERN = re.compile(
    rf"(?P<assign>{CAMERA_NAME}\s*\.\s*fov\s*=\s*){NUMBER}(?P<rest>\s*(?:;|$))",
    re.IGNORECASE | re.MULTILINE,
)
# camera.position.z = 20;
CAMERA_AXIS_PATTERN = re.compile(
    rf"(?P<assign>{CAMERA_NAME}\s*\.\s*position\s*\.\s*(?P<axis>[xyz])\s*=\s*)"
    rf"{NUMBER}(?P<rest>\s*(?:;|$))",
    re.IGNORECASE | re.MULTILINE,
)
AXES = {"x": 0, "y": 1, "z": 2}


class ExtractionError(Exception):
    """Raised when no embeddable document is present in the model output."""

    pass


def extract_html_from_text(text: str) -> str:
    """Return the first complete ``<html>...</html>`` document in ``text``.

    Code fences, their language tag and any prose around the document are
    discarded. A ``<!DOCTYPE html>`` directly in front of the root element is
    kept with it.

    Raises:
        ExtractionError: If no complete document root is found
    """
    match = ROOT_PATTERN.search(text)
    if match is None:
        if ROOT_OPEN_PATTERN.search(text):
            logger.error("extraction_failed", reason="truncated", chars=len(text))
            raise ExtractionError(
                "No embeddable document present: <html> element is never closed"
            )
        logger.error("extraction_failed", reason="no_root", chars=len(text))
        raise ExtractionError("No embeddable document present")

    start = match.start()
    doctype = DOCTYPE_TAIL_PATTERN.search(text[:start])
    if doctype is not None:
        start = doctype.start()

    html = text[start : match.end()]
    logger.debug(
        "document_extracted",
        raw_chars=len(text),
        html_chars=len(html),
        discarded_chars=len(text) - len(html),
    )
    return html


def hide_body_text(html: str) -> str:
    """Hide descriptive body text so only the rendered scene is visible.

    Prose elements in the body are tagged with ``data-embed-hidden`` and a
    single style rule hides tagged elements. Scripts, styles, the canvas and
    other non-prose regions are never touched, and nothing is removed.
    """
    body = BODY_PATTERN.search(html)
    if body is None:
        return html

    content = body.group("content")
    protected = [match.span() for match in PROTECTED_PATTERN.finditer(content)]
    hidden = 0
    parts = []
    cursor = 0
    for tag in OPEN_TAG_PATTERN.finditer(content):
        if _inside(protected, tag.start()) or not _is_prose(content, tag, protected):
            continue
        parts.append(content[cursor : tag.start()])
        parts.append(_hide_tag(tag))
        cursor = tag.end()
        hidden += 1
    parts.append(content[cursor:])

    if hidden:
        html = html[: body.start("content")] + "".join(parts) + html[body.end("content") :]
        logger.debug("body_text_hidden", elements=hidden)

    if HIDDEN_STYLE_ATTR in html or not HIDDEN_ATTR_PATTERN.search(html):
        return html
    return _inject_hidden_style(html)


def zoom_camera(
    html: str,
    position: tuple[float, float, float] = DEFAULT_CAMERA_POSITION,
    fov: float = DEFAULT_CAMERA_FOV,
) -> str:
    """Reframe the scene camera to a fixed vantage point and field of view.

    Only statements inside ``<script>`` blocks are rewritten:
    ``<camera>.position.set(x, y, z)`` and ``<camera>.position.x = n`` with
    literal values, the FOV argument of ``new THREE.PerspectiveCamera(...)``
    and ``<camera>.fov = n`` assignments. Everything else in the scene is left
    as generated.
    """
    coordinates = [_format_number(value) for value in position]
    position_args = ", ".join(coordinates)
    fov_value = _format_number(fov)
    rewrites = 0

    def reframe(match: re.Match) -> str:
        nonlocal rewrites
        code = match.group("code")
        code, moved = CAMERA_POSITION_PATTERN.subn(
            lambda m: f"{m.group('call')}{position_args})", code
        )
        code, shifted = CAMERA_AXIS_PATTERN.subn(
            lambda m: (
                f"{m.group('assign')}{coordinates[AXES[m.group('axis').lower()]]}"
                f"{m.group('rest')}"
            ),
            code,
        )
        code, widened = PERSPECTIVE_FOV_PATTERN.subn(
            lambda m: f"{m.group('ctor')}{fov_value}{m.group('rest')}", code
        )
        code, assigned = CAMERA_FOV_PATTERN.subn(
            lambda m: f"{m.group('assign')}{fov_value}{m.group('rest')}", code
        )
        rewrites += moved + shifted + widened + assigned
        return f"{match.group('open')}{code}{match.group('close')}"

    result = SCRIPT_PATTERN.sub(reframe, html)
    if rewrites:
        logger.debug("camera_reframed", statements=rewrites, position=position, fov=fov)
    else:
        logger.debug("camera_reframe_skipped", reason="no_camera_statement")
    return result


def build_embeddable_document(
    raw_text: str,
    camera_position: tuple[float, float, float] = DEFAULT_CAMERA_POSITION,
    camera_fov: float = DEFAULT_CAMERA_FOV,
) -> str:
    """Extract the document from raw model output and prepare it for embedding.

    Raises:
        ExtractionError: If no embeddable document is present
    """
    html = extract_html_from_text(raw_text)
    html = hide_body_text(html)
    return zoom_camera(html, position=camera_position, fov=camera_fov)


def _is_prose(content: str, tag: re.Match, protected: list[tuple[int, int]]) -> bool:
    """Whether an opening tag starts a prose element that may be hidden.

    Elements wrapping a protected region (the canvas, a script, an svg) stay
    visible even when they also hold text.
    """
    name = tag.group("name").lower()
    attrs = tag.group("attrs")
    if HIDDEN_ATTR_PATTERN.search(attrs):
        return False
    if name not in PROSE_TAGS and not (name == "div" and _leads_with_text(content, tag.end())):
        return False
    if attrs.rstrip().endswith("/"):
        return True

    end = _element_end(content, name, tag.end(), protected)
    return not any(tag.end() <= start < end for start, _ in protected)


def _element_end(content: str, name: str, offset: int, protected: list[tuple[int, int]]) -> int:
    """Offset of the tag closing the element opened just before ``offset``.

    Unclosed elements run to the end of ``content``.
    """
    pattern = re.compile(rf"<(/?){name}(?![\w-])[^<>]*>", re.IGNORECASE)
    depth = 1
    for match in pattern.finditer(content, offset):
        if _inside(protected, match.start()):
            continue
        if match.group(1):
            depth -= 1
            if depth == 0:
                return match.start()
        elif not match.group(0).endswith("/>"):
            depth += 1
    return len(content)


def _inside(spans: list[tuple[int, int]], offset: int) -> bool:
    return any(start <= offset < end for start, end in spans)


def _leads_with_text(content: str, offset: int) -> bool:
    end = content.find("<", offset)
    leading = content[offset:] if end == -1 else content[offset:end]
    return bool(leading.strip())


def _hide_tag(tag: re.Match) -> str:
    attrs = tag.group("attrs")
    stripped = attrs.rstrip()
    if stripped.endswith("/"):
        return f"<{tag.group('name')}{stripped[:-1].rstrip()} {HIDDEN_ATTR} />"
    return f"<{tag.group('name')}{attrs} {HIDDEN_ATTR}>"


def _inject_hidden_style(html: str) -> str:
    body = BODY_PATTERN.search(html)
    head_close = HEAD_CLOSE_PATTERN.search(html, 0, body.start() if body else len(html))
    if head_close is not None:
        at = head_close.start()
    elif body is not None:
        at = body.end("open")
    else:
        return html
    return html[:at] + HIDDEN_STYLE + html[at:]


def _format_number(value: float) -> str:
    return f"{value:g}"
