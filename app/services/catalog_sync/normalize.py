"""
Name normalization for exact-only catalog matching.

Both sides of a comparison (local entity, remote record) go through the same
pipeline, so any change here changes every normalized lookup at once:

1. Unicode NFKD decomposition (combining marks dropped)
2. Synonym folding ("Pokémon" -> "pokemon", "&" -> "and")
3. Strip a leading short code prefix ("SV5a: ")
4. Strip bracketed / parenthetical segments
5. Collapse non-alphanumeric runs to single spaces
6. Trim and lower-case
"""
import re
import unicodedata
from typing import Optional

# 1-3 letters + digits + optional letter, followed by ':'
CODE_PREFIX_RE = re.compile(r"^\s*([A-Za-z]{1,3}\d+[A-Za-z]?)\s*:\s*")

BRACKETED_RE = re.compile(r"\([^)]*\)|\[[^\]]*\]")
NON_ALNUM_RE = re.compile(r"[\W_]+", re.UNICODE)

SYNONYMS = [
    (re.compile(r"pok[eé]\s?mon", re.IGNORECASE), "pokemon"),
    (re.compile(r"\s*&\s*"), " and "),
]


def extract_code_prefix(name: Optional[str]) -> Optional[str]:
    """Return the short code at the start of a name ("SV5a: Foo" -> "SV5a")."""
    if not name:
        return None
    match = CODE_PREFIX_RE.match(name)
    return match.group(1) if match else None


def _strip_marks(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_name(name: Optional[str]) -> str:
    if not name:
        return ""

    text = _strip_marks(name)
    for pattern, replacement in SYNONYMS:
        text = pattern.sub(replacement, text)
    text = CODE_PREFIX_RE.sub("", text)
    text = BRACKETED_RE.sub(" ", text)
    text = NON_ALNUM_RE.sub(" ", text)
    return text.strip().lower()


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().lower()
