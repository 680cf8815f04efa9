"""
Text normalization for indexing and querying.

Markdown and chat content is reduced to lowercase plain text before it is
embedded: code, markup, links, HTML tags, mentions and decorative rules are
removed while the words themselves (in any script) are preserved.
"""

import logging
import re
from typing import List

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "does", "for", "from",
    "had", "has", "have", "he", "her", "his", "how", "hey", "i", "in", "is",
    "it", "its", "of", "on", "or", "that", "the", "this", "to", "was", "what",
    "when", "where", "which", "who", "will", "with", "would", "there",
    "their", "they", "your", "you",
})

# Query terms of this length or shorter carry no lexical signal
MIN_TERM_LENGTH = 2

# Applied in order; later patterns rely on earlier ones having run.
_SUBSTITUTIONS = [
    (re.compile(r"```[\s\S]*?```"), ""),  # fenced code
    (re.compile(r"`[^`\n]*`"), ""),  # inline code
    (re.compile(r"^[ \t]*#{1,6}[ \t]*(.*)$", re.MULTILINE), r"\1"),  # headings
    (re.compile(r"!\[([^\]]*)\]\([^)]*\)"), r"\1"),  # images
    (re.compile(r"\[([^\]]*)\]\([^)]*\)"), r"\1"),  # links
    (re.compile(r"(https?://)?(www\.)?(\S+\.\S+)"), r"\3"),  # bare urls
    (re.compile(r"<@[!&]?\d+>"), ""),  # chat mentions
    (re.compile(r"<[^>]*>"), ""),  # html tags
    (re.compile(r"^\s*[-*_]{3,}\s*$", re.MULTILINE), ""),  # decorative rules
    (re.compile(r"/\*[\s\S]*?\*/"), ""),  # block comments
    (re.compile(r"//.*"), ""),  # line comments
]

_HORIZONTAL_SPACE_RE = re.compile(r"[^\S\n]+")
_SPACE_AROUND_NEWLINE_RE = re.compile(r" ?\n ?")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def preprocess(text: str) -> str:
    """
    Normalize raw text for embedding and keyword matching.

    Runs of blank lines collapse to a single blank line so paragraph
    boundaries survive for the chunker. Empty or non-string input yields an
    empty string.
    """
    if not isinstance(text, str) or not text.strip():
        logger.warning("Invalid or empty input for preprocessing")
        return ""

    for pattern, replacement in _SUBSTITUTIONS:
        text = pattern.sub(replacement, text)

    text = _HORIZONTAL_SPACE_RE.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE_RE.sub("\n", text)
    text = _BLANK_LINES_RE.sub("\n\n", text)

    return text.strip().lower()


def get_query_terms(query: str) -> List[str]:
    """
    Extract the meaningful lowercase terms of a query.

    Stop words and terms of two characters or fewer are dropped; order is
    kept and duplicates removed.
    """
    terms: List[str] = []
    for term in query.lower().split():
        if len(term) <= MIN_TERM_LENGTH or term in STOP_WORDS:
            continue
        if term not in terms:
            terms.append(term)
    return terms
