"""Tests for section markdown transforms."""

import pytest

from dealmemo.core.memo_format import (
    bold_amounts,
    bold_label_lines,
    collapse_blank_lines,
    format_section_content,
    normalize_list_spacing,
    strip_duplicate_title,
)

TITLES = ["Market Analysis", "market analysis"]


@pytest.mark.parametrize(
    "first_line",
    ["## Market Analysis", "# Market Analysis", "**Market Analysis**", "Market Analysis:", "MARKET ANALYSIS"],
)
def test_strip_duplicate_title_variants(first_line):
    assert strip_duplicate_title(f"{first_line}\n\nBody.", TITLES) == "Body."


def test_strip_duplicate_title_keeps_other_headers():
    content = "## Market Sizing\nBody."
    assert strip_duplicate_title(content, TITLES) == content


def test_list_spacing_inserts_blank_line_once():
    content = "Intro:\n- a\n- b\nAfter.\n1. one"
    assert normalize_list_spacing(content) == "Intro:\n\n- a\n- b\nAfter.\n\n1. one"


def test_list_spacing_leaves_existing_blank_line():
    content = "Intro\n\n- a"
    assert normalize_list_spacing(content) == content


def test_bold_label_lines_short_labels_only():
    content = "Key Risks:\nThis is a long sentence that happens to end with a colon and is not a label:"
    result = bold_label_lines(content)
    assert result.split("\n")[0] == "**Key Risks:**"
    assert result.split("\n")[1].startswith("This is a long sentence")


def test_bold_label_lines_ignores_already_bold():
    assert bold_label_lines("**Key Risks:**") == "**Key Risks:**"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Raised $2M last year", "Raised **$2M** last year"),
        ("TAM of $4.5 billion", "TAM of **$4.5 billion**"),
        ("Revenue was $1,250,000, up", "Revenue was **$1,250,000**, up"),
        ("Margins near 63.5% today", "Margins near **63.5%** today"),
        ("Already **$3M** bold", "Already **$3M** bold"),
        ("No amounts here", "No amounts here"),
    ],
)
def test_bold_amounts(text, expected):
    assert bold_amounts(text) == expected


def test_collapse_blank_lines():
    assert collapse_blank_lines("a\n\n\n\nb\n\nc") == "a\n\nb\n\nc"


def test_format_section_content_order():
    content = "# Market Analysis\n\n\nMarket Size:\nTAM is $10B [1].\n- CAGR 12%\n"

    result = format_section_content(content, TITLES)

    assert result == "**Market Size:**\nTAM is **$10B** <sup>[1]</sup>.\n\n- CAGR **12%**"


def test_format_section_content_is_stable():
    once = format_section_content("Team:\n- CEO built $50M company [2]", TITLES)
    assert format_section_content(once, TITLES) == once
