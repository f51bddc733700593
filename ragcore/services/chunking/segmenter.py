"""Document segmentation into sections, paragraphs and sentence units.

The chunker never looks at raw text directly; it works on the
:class:`Segmentation` produced here:

1. **Paragraphs** -- blocks separated by blank lines.  A heading line at the
   top of a block is split off into its own paragraph.
2. **Sections** -- a new section starts at every heading.  Headings are
   markdown ``#`` lines, numbered titles (``2.``, ``3.1 Scope``), short
   ALL-CAPS lines, or lines the loader listed in ``structural_hints``.
3. **Units** -- the atomic pieces the chunker groups: sentences (split with
   an abbreviation-aware splitter), list items, and headings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from ragcore.utils.text import content_words, normalize_text

# Common abbreviations that should NOT trigger a sentence split.
_ABBREVIATIONS = frozenset(
    {
        "Dr", "Mr", "Mrs", "Ms", "Prof", "Jr", "Sr", "St", "No", "vs", "etc",
        "approx", "dept", "est", "govt", "inc", "Inc", "ltd", "Ltd", "co", "Co",
        "Corp", "e.g", "i.e", "Fig", "Jan", "Feb", "Mar", "Apr", "Jun", "Jul",
        "Aug", "Sep", "Sept", "Oct", "Nov", "Dec",
    }
)

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
_SENTENCE_END_RE = re.compile(r"[.!?][\"')\]]*(?:\s|$)")
_MARKDOWN_HEADING_RE = re.compile(r"^(#{1,6})\s+(\S.*)$")
_NUMBERED_HEADING_RE = re.compile(r"^(\d+(?:\.\d+)*)\.?\s+([A-Z].*)$")
_LIST_ITEM_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+\S")

_MAX_HEADING_WORDS = 12


@dataclass(frozen=True)
class Unit:
    """An atomic span the chunker groups into chunks."""

    index: int
    text: str
    words: tuple[str, ...]
    paragraph_index: int
    section_index: int
    is_heading: bool = False
    is_list_item: bool = False

    @property
    def token_count(self) -> int:
        return len(self.words)


@dataclass
class Paragraph:
    index: int
    section_index: int
    unit_indices: list[int] = field(default_factory=list)
    is_heading: bool = False
    _words: set[str] | None = field(default=None, repr=False)


@dataclass
class Section:
    index: int
    heading: str | None
    level: int
    path: list[str] = field(default_factory=list)
    paragraph_indices: list[int] = field(default_factory=list)


@dataclass
class Segmentation:
    units: list[Unit]
    paragraphs: list[Paragraph]
    sections: list[Section]

    def paragraph_words(self, paragraph_index: int) -> set[str]:
        """Content words of a whole paragraph (cached)."""
        para = self.paragraphs[paragraph_index]
        if para._words is None:
            para._words = set().union(
                *(content_words(self.units[i].text) for i in para.unit_indices)
            )
        return para._words


# ---------------------------------------------------------------------------
# Heading detection
# ---------------------------------------------------------------------------

def detect_heading(line: str, hints: frozenset[str] = frozenset()) -> tuple[str, int] | None:
    """Return ``(heading_text, level)`` if *line* looks like a heading."""
    stripped = line.strip()
    if not stripped or "\n" in stripped:
        return None

    md = _MARKDOWN_HEADING_RE.match(stripped)
    if md:
        return md.group(2).strip(), len(md.group(1))

    if normalize_text(stripped).lower() in hints:
        return stripped, 1

    words = stripped.split()
    if len(words) > _MAX_HEADING_WORDS or stripped.endswith((".", ",", ";", ":")):
        return None

    numbered = _NUMBERED_HEADING_RE.match(stripped)
    if numbered and len(words) > 1:
        return stripped, numbered.group(1).count(".") + 1

    letters = [ch for ch in stripped if ch.isalpha()]
    if len(letters) >= 3 and stripped.upper() == stripped and len(words) <= 10:
        return stripped, 1

    return None


# ---------------------------------------------------------------------------
# Sentence splitting
# ---------------------------------------------------------------------------

def split_sentences(text: str) -> list[str]:
    """Split *text* at sentence boundaries while respecting abbreviations.

    Periods after known abbreviations are masked (same length, so indices
    stay aligned with the original text) before matching sentence ends.
    """
    masked = text
    for abbr in _ABBREVIATIONS:
        masked = re.sub(rf"\b{re.escape(abbr)}\.", abbr.replace(".", "\x00") + "\x00", masked)

    sentences: list[str] = []
    last = 0
    for match in _SENTENCE_END_RE.finditer(masked):
        end = match.end()
        sentence = text[last:end].strip()
        if sentence:
            sentences.append(sentence)
        last = end

    remainder = text[last:].strip()
    if remainder:
        sentences.append(remainder)
    return sentences


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------

def segment(text: str, structural_hints: list[str] | None = None) -> Segmentation:
    """Segment *text* into sections, paragraphs and units.

    Parameters
    ----------
    text:
        Raw document text.
    structural_hints:
        Heading lines known to the loader; matched after whitespace
        normalization, case-insensitively.

    Returns
    -------
    Segmentation
        Empty (no units) for blank input.
    """
    hints = frozenset(normalize_text(h).lower() for h in (structural_hints or []) if h.strip())
    units: list[Unit] = []
    paragraphs: list[Paragraph] = []
    sections: list[Section] = []
    heading_stack: list[tuple[int, str]] = []

    def current_section() -> Section:
        if not sections:
            sections.append(Section(index=0, heading=None, level=0))
        return sections[-1]

    def start_section(heading: str, level: int) -> Section:
        while heading_stack and heading_stack[-1][0] >= level:
            heading_stack.pop()
        heading_stack.append((level, heading))
        section = Section(
            index=len(sections),
            heading=heading,
            level=level,
            path=[h for _, h in heading_stack],
        )
        sections.append(section)
        return section

    def add_paragraph(section: Section, is_heading: bool = False) -> Paragraph:
        para = Paragraph(index=len(paragraphs), section_index=section.index, is_heading=is_heading)
        paragraphs.append(para)
        section.paragraph_indices.append(para.index)
        return para

    def add_unit(para: Paragraph, unit_text: str, *, heading: bool = False, list_item: bool = False) -> None:
        words = tuple(unit_text.split())
        if not words:
            return
        unit = Unit(
            index=len(units),
            text=" ".join(words),
            words=words,
            paragraph_index=para.index,
            section_index=para.section_index,
            is_heading=heading,
            is_list_item=list_item,
        )
        units.append(unit)
        para.unit_indices.append(unit.index)

    for block in _PARAGRAPH_SPLIT_RE.split(text):
        lines = [ln for ln in block.strip().splitlines() if ln.strip()]
        if not lines:
            continue

        in_list = len(lines) > 1 and all(_LIST_ITEM_RE.match(ln) for ln in lines[:2])
        heading = None if in_list else detect_heading(lines[0], hints)
        if heading is not None:
            heading_text, level = heading
            section = start_section(heading_text, level)
            add_unit(add_paragraph(section, is_heading=True), heading_text, heading=True)
            lines = lines[1:]
            if not lines:
                continue

        section = current_section()
        para = add_paragraph(section)
        if any(_LIST_ITEM_RE.match(ln) for ln in lines):
            for line in lines:
                add_unit(para, line.strip(), list_item=bool(_LIST_ITEM_RE.match(line)))
        else:
            for sentence in split_sentences(" ".join(ln.strip() for ln in lines)):
                add_unit(para, sentence)

    return Segmentation(units=units, paragraphs=paragraphs, sections=sections)
