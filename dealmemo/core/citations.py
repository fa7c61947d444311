"""Citation markers: provisional insertion, global renumbering, canonical form.

Generators insert section-local markers ``[N]`` after each cited span. At
assembly time markers are renumbered across the whole memo (first-seen order,
deduplicated by URL) and every marker is rendered as ``<sup>[N]</sup>``.
"""

import re
from dataclasses import dataclass, field

from dealmemo.core.schemas_memos import Citation, SectionSource

# <sup>1</sup>, <sup>[1]</sup>, <sup> [1] </sup>, <sup>[1][2]</sup>, <sup>[1, 2]</sup>
_SUP_MARKER = re.compile(
    r"<sup>\s*(\[?\s*\d+\s*\]?(?:\s*,?\s*\[?\s*\d+\s*\]?)*)\s*</sup>", re.IGNORECASE
)

# [1, 2, 3] not already inside <sup>
_BARE_GROUP = re.compile(r"(?<!<sup>)\[(\d+(?:\s*,\s*\d+)+)\](?!\()")

# [1] not already inside <sup> and not a markdown link label
_BARE_MARKER = re.compile(r"(?<!<sup>)\[(\d+)\](?!</sup>)(?!\()")

# Any single marker, canonical or bare, for renumbering
_ANY_MARKER = re.compile(r"<sup>\s*\[(\d+)\]\s*</sup>|(?<!<sup>)\[(\d+)\](?!\()", re.IGNORECASE)

_DIGITS = re.compile(r"\d+")


def apply_edits(text: str, edits: list[tuple[int, str]]) -> str:
    """
    Apply (offset, inserted_text) edits to text and return a new string.

    Edits are applied in descending offset order so earlier offsets stay valid.
    Edits sharing an offset keep their list order in the result.

    Args:
        text: Source text (not modified)
        edits: Insertions keyed by character offset

    Returns:
        Text with all insertions applied
    """
    ordered = sorted(enumerate(edits), key=lambda item: (item[1][0], item[0]), reverse=True)
    result = text
    for _, (offset, inserted) in ordered:
        offset = max(0, min(offset, len(result)))
        result = result[:offset] + inserted + result[offset:]
    return result


def insert_citation_markers(
    text: str, citations: list[Citation]
) -> tuple[str, list[SectionSource]]:
    """
    Insert provisional ``[N]`` markers after each cited span.

    Numbers are local to the text: sources are numbered in order of first
    appearance and a URL cited twice reuses its number.

    Args:
        text: Generated text
        citations: Citation annotations with character offsets into text

    Returns:
        Tuple of (text with markers, local sources)
    """
    if not citations:
        return text, []

    sources: list[SectionSource] = []
    index_by_url: dict[str, int] = {}
    edits: list[tuple[int, str]] = []
    seen: set[tuple[int, int]] = set()

    for citation in sorted(citations, key=lambda c: (c.start_offset, c.end_offset)):
        index = index_by_url.get(citation.url)
        if index is None:
            index = len(sources) + 1
            index_by_url[citation.url] = index
            sources.append(SectionSource(index=index, url=citation.url, title=citation.title))

        offset = min(max(citation.end_offset, citation.start_offset), len(text))
        if (offset, index) in seen:
            continue
        seen.add((offset, index))
        edits.append((offset, f"[{index}]"))

    return apply_edits(text, edits), sources


def normalize_sup_markers(text: str) -> str:
    """
    Rewrite every <sup>-wrapped marker to the canonical ``<sup>[N]</sup>``.

    A tag holding several numbers becomes one canonical tag per number.
    """
    return _SUP_MARKER.sub(
        lambda m: "".join(f"<sup>[{n}]</sup>" for n in _DIGITS.findall(m.group(1))),
        text,
    )


def canonicalize_citation_markers(text: str) -> str:
    """
    Convert all marker forms to ``<sup>[N]</sup>``.

    Handles <sup>-wrapped numbers, bare ``[N]`` and grouped ``[1, 2]`` markers.
    Already-canonical markers are left alone, so the transform is idempotent.
    """
    text = normalize_sup_markers(text)
    text = _BARE_GROUP.sub(
        lambda m: "".join(f"<sup>[{n.strip()}]</sup>" for n in m.group(1).split(",")),
        text,
    )
    return _BARE_MARKER.sub(lambda m: f"<sup>[{m.group(1)}]</sup>", text)


@dataclass
class CitationRegistry:
    """Memo-wide source list, deduplicated by URL in first-seen order."""

    sources: list[SectionSource] = field(default_factory=list)
    _index_by_url: dict[str, int] = field(default_factory=dict)

    def register(self, url: str, title: str = "") -> int:
        index = self._index_by_url.get(url)
        if index is None:
            index = len(self.sources) + 1
            self._index_by_url[url] = index
            self.sources.append(SectionSource(index=index, url=url, title=title))
        return index

    def renumber(self, content: str, local_sources: list[SectionSource]) -> str:
        """
        Replace section-local marker numbers with memo-wide numbers.

        Markers whose number has no local source are left untouched.
        """
        if not local_sources:
            return content

        by_local = {source.index: source for source in local_sources}

        def _replace(match: re.Match) -> str:
            canonical = match.group(1) is not None
            local = int(match.group(1) if canonical else match.group(2))
            source = by_local.get(local)
            if source is None:
                return match.group(0)
            global_index = self.register(source.url, source.title)
            return f"<sup>[{global_index}]</sup>" if canonical else f"[{global_index}]"

        return _ANY_MARKER.sub(_replace, normalize_sup_markers(content))
