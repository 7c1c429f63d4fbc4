"""Lightweight HTML sanitizer for article bodies sent to the CMS.

Regex-based, matching the literal-rule Markdown conversion that produces
these bodies. Not a general HTML parser.
"""

import html
import re

ALLOWED_TAGS = frozenset({
    "p", "h1", "h2", "h3", "h4", "h5", "h6",
    "strong", "em", "b", "i",
    "ul", "ol", "li",
    "a", "blockquote", "br", "img",
    "figure", "figcaption",
    "table", "thead", "tbody", "tr", "td", "th",
})

ALLOWED_ATTRS = frozenset({"href", "src", "alt", "title", "class"})

_DANGEROUS_BLOCK_RES = [
    re.compile(r"<script[\s\S]*?</script\s*>", re.IGNORECASE),
    re.compile(r"<style[\s\S]*?</style\s*>", re.IGNORECASE),
    re.compile(r"<iframe[\s\S]*?</iframe\s*>", re.IGNORECASE),
    re.compile(r"<object[\s\S]*?</object\s*>", re.IGNORECASE),
    re.compile(r"<embed[\s\S]*?(?:/>|</embed\s*>)", re.IGNORECASE),
]
_DANGEROUS_SINGLE_RE = re.compile(
    r"<(?:script|style|iframe|object|embed)\b[^>]*/?>", re.IGNORECASE
)
_EVENT_ATTR_RE = re.compile(r"""\s+on\w+\s*=\s*(?:"[^"]*"|'[^']*'|[^\s>]+)""", re.IGNORECASE)
_JS_URL_RE = re.compile(
    r"""(href|src)\s*=\s*(?:"\s*javascript:[^"]*"|'\s*javascript:[^']*'|javascript:[^\s>]*)""",
    re.IGNORECASE,
)
_TAG_RE = re.compile(r"</?([a-zA-Z][a-zA-Z0-9]*)\b[^>]*/?>")
_ATTR_RE = re.compile(r"""\s+([a-zA-Z][\w-]*)\s*(?:=\s*(?:"([^"]*)"|'([^']*)'|(\S+)))?""")


def _filter_tag(match: re.Match) -> str:
    raw = match.group(0)
    tag = match.group(1).lower()
    if tag not in ALLOWED_TAGS:
        return ""
    if raw.startswith("</"):
        return f"</{tag}>"

    self_closing = raw.endswith("/>")
    attr_string = re.sub(r"/?>$", "", re.sub(r"^<[a-zA-Z][a-zA-Z0-9]*", "", raw))
    attrs = []
    for name, dq, sq, bare in _ATTR_RE.findall(attr_string):
        name = name.lower()
        if name in ALLOWED_ATTRS:
            value = html.unescape(dq or sq or bare)
            if name in ("href", "src") and value.strip().lower().startswith("javascript:"):
                value = ""
            attrs.append(f'{name}="{html.escape(value, quote=True)}"')

    attr_str = (" " + " ".join(attrs)) if attrs else ""
    return f"<{tag}{attr_str} />" if self_closing else f"<{tag}{attr_str}>"


def sanitize_html(markup: str) -> str:
    """Strip scripting-capable markup and anything outside the allowlist.

    - <script>, <style>, <iframe>, <object>, <embed> are removed with their content
    - on* event handler attributes are removed
    - javascript: URLs in href/src are emptied
    - other tags outside ALLOWED_TAGS are dropped (their text is kept)
    - attributes outside ALLOWED_ATTRS are dropped
    """
    result = markup
    for pattern in _DANGEROUS_BLOCK_RES:
        result = pattern.sub("", result)
    result = _DANGEROUS_SINGLE_RE.sub("", result)
    result = _EVENT_ATTR_RE.sub("", result)
    result = _JS_URL_RE.sub(lambda m: f'{m.group(1)}=""', result)
    result = _TAG_RE.sub(_filter_tag, result)
    return result.strip()
