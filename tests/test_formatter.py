"""Tests for output formatting and the drupal_json payload."""

import json

from recipe_engine.executor.context import StepContext
from recipe_engine.executor.formatter import (
    DEFAULT_AUTHOR,
    SECTION_SEPARATOR,
    build_publish_payload,
    find_step_json,
    format_output,
    markdown_to_html,
)
from recipe_engine.executor.schemas import ExecutionInput

ARTICLE = (
    "# Novi most čez Savo\n\n"
    "Občina je odprla nov most.\n\n"
    "## Podrobnosti\n\n"
    "Most je **dolg** 120 metrov in stane *pet* milijonov.\n\n"
    "- prvi pas\n- drugi pas"
)


def _context(*outputs, text="input"):
    context = StepContext.from_input(ExecutionInput(text=text))
    for i, output in enumerate(outputs):
        context.record(i, output)
    return context


def test_markdown_to_html_blocks():
    html = markdown_to_html("## Head\n\nA [link](https://x.example) here.\n\n1. one\n2. two\n\n> quoted")
    assert html == (
        "<h2>Head</h2>\n"
        '<p>A <a href="https://x.example">link</a> here.</p>\n'
        "<ol><li>one</li>\n<li>two</li></ol>\n"
        "<blockquote>quoted</blockquote>"
    )


def test_find_step_json_first_and_last():
    context = _context('{"a": 1}', "text", '{"a": 2}')
    assert find_step_json(context, lambda j: "a" in j) == {"a": 1}
    assert find_step_json(context, lambda j: "a" in j, last=True) == {"a": 2}
    assert find_step_json(context, lambda j: "b" in j) is None


def test_payload_from_article_seo_and_fact_check():
    seo = json.dumps({"meta_title": "SEO naslov", "keywords": ["most"], "slug": "novi-most"})
    fact_check = json.dumps({"confidence_score": 87, "overall_verdict": "safe"})
    context = _context(ARTICLE, seo, fact_check)

    payload = build_publish_payload(context)

    assert payload["format"] == "drupal_article"
    assert payload["title"] == "Novi most čez Savo"
    assert payload["subtitle"] == "Občina je odprla nov most."
    assert payload["summary"] == payload["subtitle"]
    assert payload["body"].startswith("<h2>Podrobnosti</h2>")
    assert "<strong>dolg</strong>" in payload["body"]
    assert "<em>pet</em>" in payload["body"]
    assert "<ul><li>prvi pas</li>\n<li>drugi pas</li></ul>" in payload["body"]
    assert "Novi most" not in payload["body"]
    assert payload["meta"]["meta_title"] == "SEO naslov"
    assert payload["meta"]["slug"] == "novi-most"
    assert payload["confidence_score"] == 87
    assert payload["author"] == DEFAULT_AUTHOR
    assert payload["status"] == "draft"
    assert "featuredImage" not in payload


def test_payload_includes_generated_image_and_sources():
    image = json.dumps({
        "imageFileId": "f1", "imageUrl": "/api/files/f1", "storageKey": "image/output/r/x.jpg",
        "width": 1024, "height": 576,
    })
    research = json.dumps({"sources": [{"title": "STA", "url": "https://sta.example", "extra": 1}]})
    context = _context(research, ARTICLE, image)

    payload = build_publish_payload(context)

    assert payload["featuredImage"]["storageKey"] == "image/output/r/x.jpg"
    assert payload["sources"] == [{"title": "STA", "url": "https://sta.example"}]
    assert payload["title"] == "Novi most čez Savo"


def test_payload_recovers_seo_embedded_in_article_text():
    text = ARTICLE + '\n\n```json\n{"titles": [{"text": "Varianta"}], "meta_description": "Opis"}\n```'
    context = _context(text)

    payload = build_publish_payload(context)

    assert payload["meta"]["titleVariants"] == [{"text": "Varianta"}]
    assert payload["meta"]["meta_description"] == "Opis"
    assert payload["title"] == "Novi most čez Savo"


def test_payload_without_headings_uses_seo_title():
    context = _context("short", '{"meta_title": "From SEO"}')
    payload = build_publish_payload(context)
    assert payload["title"] == "From SEO"


def test_format_output_sections():
    context = _context("Para one\n\nPara two")
    output = format_output(context, ["markdown", "html", "json"])
    sections = output.split(SECTION_SEPARATOR)
    assert sections[0] == "## Markdown\n\nPara one\n\nPara two"
    assert sections[1] == "## HTML\n\n<p>Para one</p>\n<p>Para two</p>"
    assert sections[2].startswith("## JSON\n\n```json\n")
    assert '"content": "Para one\\n\\nPara two"' in sections[2]


def test_drupal_json_output_is_parseable():
    context = _context(ARTICLE)
    output = format_output(context, ["drupal_json"])
    payload = json.loads(output)
    assert payload["title"] == "Novi most čez Savo"
    assert "č" in output
