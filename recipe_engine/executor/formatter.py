"""Output formatting for output_format steps.

Renders the running output as Markdown, paragraph HTML or a JSON
envelope, and builds the publish-ready `drupal_json` payload.

The drupal_json payload is assembled heuristically. It scans every
executed step and sniffs JSON shapes (SEO metadata, fact check,
sources, generated image) instead of relying on fixed step indices,
and converts the article's Markdown with a handful of literal rules.
It is best-effort extraction, not a Markdown parser.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from recipe_engine.executor.context import StepContext

SECTION_SEPARATOR = "\n\n---\n\n"
DEFAULT_AUTHOR = "AI uredništvo"

_HEADING_RE = re.compile(r"^#{1,3}\s+.+", re.MULTILINE)
_TITLE_RE = re.compile(r"^#\s+(.+)", re.MULTILINE)
_LEAD_RE = re.compile(r"^#\s+.+\n\n(.+)", re.MULTILINE)
_TITLE_LINE_RE = re.compile(r"^#\s+.+\n*", re.MULTILINE)
_LEGACY_SEO_RE = re.compile(r'\{[\s\S]*"titles"[\s\S]*\}')
_JSON_FENCE_RE = re.compile(r"```json[\s\S]*?```")

_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")
_ITALIC_RE = re.compile(r"(?<!\*)\*(?!\*)(.+?)(?<!\*)\*(?!\*)")
_ORDERED_RE = re.compile(r"^\d+\.\s")
_BULLET_PREFIX_RE = re.compile(r"^[-*]\s*")
_ORDERED_PREFIX_RE = re.compile(r"^\d+\.\s*")
_QUOTE_PREFIX_RE = re.compile(r"^>\s*")


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def find_step_json(
    context: StepContext,
    predicate: Callable[[dict], bool],
    last: bool = False,
) -> Optional[dict]:
    """First (or last) executed step whose parsed JSON object matches `predicate`.

    Steps are scanned in index order. Only dict-shaped JSON is considered.
    """
    found = None
    for index in sorted(context.steps):
        data = context.steps[index].parsed_json
        if isinstance(data, dict) and predicate(data):
            if not last:
                return data
            found = data
    return found


def inline(text: str) -> str:
    """Links, bold and italic."""
    text = _LINK_RE.sub(r'<a href="\2">\1</a>', text)
    text = _BOLD_RE.sub(r"<strong>\1</strong>", text)
    return _ITALIC_RE.sub(r"<em>\1</em>", text)


def _render_block(block: str) -> str:
    trimmed = block.strip()
    if not trimmed:
        return ""
    if trimmed.startswith("# "):
        return f"<h1>{inline(trimmed[2:])}</h1>"
    if trimmed.startswith("## "):
        return f"<h2>{inline(trimmed[3:])}</h2>"
    if trimmed.startswith("### "):
        return f"<h3>{inline(trimmed[4:])}</h3>"
    if trimmed.startswith("- ") or trimmed.startswith("* "):
        items = "\n".join(
            "<li>" + inline(_BULLET_PREFIX_RE.sub("", line)) + "</li>" for line in trimmed.split("\n")
        )
        return f"<ul>{items}</ul>"
    if _ORDERED_RE.match(trimmed):
        items = "\n".join(
            "<li>" + inline(_ORDERED_PREFIX_RE.sub("", line)) + "</li>" for line in trimmed.split("\n")
        )
        return f"<ol>{items}</ol>"
    if trimmed.startswith("> "):
        lines = "<br>".join(inline(_QUOTE_PREFIX_RE.sub("", line)) for line in trimmed.split("\n"))
        return f"<blockquote>{lines}</blockquote>"
    return f"<p>{inline(trimmed)}</p>"


def markdown_to_html(text: str) -> str:
    """Convert blank-line separated Markdown-like blocks to HTML."""
    blocks = (_render_block(block) for block in text.split("\n\n"))
    return "\n".join(b for b in blocks if b)


def _find_article_text(context: StepContext) -> str:
    """Last non-JSON step text with Markdown headings, else the first long non-JSON text."""
    article = ""
    for index in sorted(context.steps):
        step = context.steps[index]
        if step.parsed_json is not None or len(step.text) <= 50:
            continue
        if _HEADING_RE.search(step.text):
            article = step.text
        elif not article:
            article = step.text
    return article


def build_publish_payload(context: StepContext) -> dict[str, Any]:
    """Assemble the drupal_article payload from everything the run produced."""
    text = context.previous_output

    seo = find_step_json(context, lambda j: bool(j.get("meta_title") or j.get("titles")), last=True) or {}
    fact_check = find_step_json(
        context,
        lambda j: isinstance(j.get("confidence_score"), (int, float))
        and not isinstance(j.get("confidence_score"), bool),
        last=True,
    )
    research = find_step_json(context, lambda j: isinstance(j.get("sources"), list), last=True)
    image = find_step_json(context, lambda j: bool(j.get("imageFileId")), last=True)

    article_text = _find_article_text(context) or text

    # SEO JSON embedded in the running text (single combined article+SEO step)
    if not seo:
        match = _LEGACY_SEO_RE.search(text)
        if match:
            try:
                seo = json.loads(match.group(0))
                article_text = _LEGACY_SEO_RE.sub("", _JSON_FENCE_RE.sub("", text), count=1).strip()
            except ValueError:
                seo = {}
        if not isinstance(seo, dict):
            seo = {}

    title_match = _TITLE_RE.search(article_text)
    titles = seo.get("titles") if isinstance(seo.get("titles"), list) else []
    first_variant = titles[0].get("text") if titles and isinstance(titles[0], dict) else None
    raw_title = (
        (title_match.group(1) if title_match else None)
        or seo.get("meta_title")
        or first_variant
        or "Untitled"
    )
    title = str(raw_title).replace("*", "").strip()

    lead_match = _LEAD_RE.search(article_text)
    lead = (
        (lead_match.group(1) if lead_match else None)
        or seo.get("meta_description")
        or seo.get("metaDescription")
        or ""
    )

    body_text = article_text
    if title_match:
        body_text = _TITLE_LINE_RE.sub("", body_text, count=1)
    if lead_match and lead_match.group(1):
        body_text = re.sub(re.escape(lead_match.group(1)) + r"\n*", "", body_text, count=1)
    body_text = body_text.strip()

    body_html = markdown_to_html(body_text) if body_text else f"<p>{inline(text)}</p>"

    featured_image = None
    if image:
        featured_image = {
            "fileId": image.get("imageFileId"),
            "url": image.get("imageUrl"),
            "storageKey": image.get("storageKey"),
            "width": image.get("width"),
            "height": image.get("height"),
        }

    sources = []
    for source in (research or {}).get("sources", []):
        if isinstance(source, dict):
            sources.append({"title": source.get("title"), "url": source.get("url")})

    payload: dict[str, Any] = {
        "title": title,
        "subtitle": lead,
        "body": body_html,
        "summary": lead,
        "meta": {
            "meta_title": seo.get("meta_title") or title,
            "meta_description": seo.get("meta_description") or seo.get("metaDescription") or lead,
            "keywords": seo.get("keywords") or [],
            "slug": seo.get("slug") or "",
            "social_title": seo.get("social_title") or title,
            "social_description": seo.get("social_description") or lead,
            "category_suggestion": seo.get("category_suggestion") or "",
            "titleVariants": titles,
            "tags": seo.get("tags") or [],
        },
        "sources": sources,
        "author": DEFAULT_AUTHOR,
        "status": "draft",
        "confidence_score": fact_check["confidence_score"] if fact_check else None,
        "format": "drupal_article",
        "generatedAt": _iso_now(),
    }
    if featured_image:
        payload["featuredImage"] = featured_image
    return payload


def format_output(context: StepContext, formats: list[str]) -> str:
    """Render the requested formats, one section each."""
    text = context.previous_output
    sections = []
    for fmt in formats:
        if fmt == "markdown":
            sections.append(f"## Markdown\n\n{text}")
        elif fmt == "html":
            html = "\n".join(f"<p>{p}</p>" for p in text.split("\n\n"))
            sections.append(f"## HTML\n\n{html}")
        elif fmt == "json":
            envelope = json.dumps({"content": text, "generatedAt": _iso_now()}, indent=2, ensure_ascii=False)
            sections.append(f"## JSON\n\n```json\n{envelope}\n```")
        elif fmt == "drupal_json":
            sections.append(json.dumps(build_publish_payload(context), indent=2, ensure_ascii=False))
    return SECTION_SEPARATOR.join(sections)
