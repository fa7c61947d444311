"""Markdown clean-up applied to each section before assembly.

Transforms run in a fixed order (see ``format_section_content``); later
patterns assume the earlier ones already ran.
"""

import re

from dealmemo.core.citations import canonicalize_citation_markers

_LIST_ITEM = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")
_LABEL_LINE = re.compile(r"^([A-Z][A-Za-z0-9 &/'(),-]{0,58}[A-Za-z0-9)]):\s*$")
_AMOUNT = re.compile(
    r"\$\d+(?:,\d{3})*(?:\.\d+)?(?:[MBK]\b|\s?(?:million|billion|thousand)\b)?"
    r"|(?<![\w.$])\d+(?:\.\d+)?%"
)
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


def _title_key(line: str) -> str:
    stripped = line.strip().strip("#").strip().strip("*").strip().rstrip(":")
    return stripped.lower()


def strip_duplicate_title(content: str, titles: list[str]) -> str:
    """Drop a leading line that repeats the section's own header."""
    lines = content.lstrip("\n").split("\n")
    if lines and _title_key(lines[0]) in {t.lower() for t in titles}:
        return "\n".join(lines[1:]).lstrip("\n")
    return content


def normalize_list_spacing(content: str) -> str:
    """Ensure a blank line precedes every run of list items."""
    out: list[str] = []
    for line in content.split("\n"):
        if _LIST_ITEM.match(line) and out:
            previous = out[-1]
            if previous.strip() and not _LIST_ITEM.match(previous):
                out.append("")
        out.append(line)
    return "\n".join(out)


def bold_label_lines(content: str) -> str:
    """Bold short stand-alone ``Label:`` lines used as sub-headers."""
    lines = []
    for line in content.split("\n"):
        match = _LABEL_LINE.match(line.strip())
        if match and len(match.group(1).split()) <= 6:
            line = f"**{match.group(1)}:**"
        lines.append(line)
    return "\n".join(lines)


def _inside_bold(text: str, position: int) -> bool:
    line_start = text.rfind("\n", 0, position) + 1
    return text.count("**", line_start, position) % 2 == 1


def bold_amounts(content: str) -> str:
    """Bold currency amounts and percentages that are not already bold."""

    def _replace(match: re.Match) -> str:
        if _inside_bold(match.string, match.start()):
            return match.group(0)
        return f"**{match.group(0)}**"

    return _AMOUNT.sub(_replace, content)


def collapse_blank_lines(content: str) -> str:
    return _EXCESS_NEWLINES.sub("\n\n", content)


def format_section_content(content: str, titles: list[str]) -> str:
    """
    Run the section transforms in order.

    1. strip a duplicated leading title
    2. blank line before list runs
    3. bold short label lines
    4. bold currency amounts and percentages
    5. canonical citation markers
    6. collapse 3+ newlines to 2

    Args:
        content: Stored section content
        titles: Header spellings the content might repeat

    Returns:
        Formatted content
    """
    content = strip_duplicate_title(content, titles)
    content = normalize_list_spacing(content)
    content = bold_label_lines(content)
    content = bold_amounts(content)
    content = canonicalize_citation_markers(content)
    content = collapse_blank_lines(content)
    return content.strip()
