"""
Identifier and value normalization utilities.

Used for natural-key matching, fuzzy scoring and change detection.
Each step is a small function; the key forms below chain them.

Two key forms exist:
  - the *normalized key*: whitespace-collapsed, case-folded. Equality
    here is an exact match.
  - the *comparable form*: a lossier form used only for fuzzy scoring
    (registrations keep alphanumerics only, organization names lose
    legal suffixes and punctuation).
"""

import re


def normalize_whitespace(value: str) -> str:
    """Collapse whitespace and strip."""
    return re.sub(r"\s+", " ", value.strip())


def normalize_case(value: str) -> str:
    """Case-fold for case-insensitive comparison."""
    return value.casefold()


def normalize_identifier(value: str) -> str:
    """
    Standard natural-key normalization chain.
    '  n12345 ' → 'n12345'
    'Air  Canada' → 'air canada'
    """
    return normalize_case(normalize_whitespace(value))


def is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


# ─── Comparable Forms ─────────────────────────────────────────

def strip_to_alphanum(value: str) -> str:
    """Strip all non-alphanumeric characters and lowercase. 'N-123 45' → 'n12345'."""
    return re.sub(r"[^a-z0-9]", "", value.casefold())


_LEGAL_SUFFIX = re.compile(
    r"\b(inc|ltd|llc|corp|corporation|limited|plc|gmbh|sa|ag)\b\.?",
    re.IGNORECASE,
)
_PUNCTUATION = re.compile(r"[^\w\s]")


def normalize_organization_name(value: str) -> str:
    """
    Organization name form for fuzzy comparison.
    'Air Canada, Inc.' → 'air canada'
    'Cargo-Lux Ltd'    → 'cargolux'
    """
    v = normalize_identifier(value)
    v = _LEGAL_SUFFIX.sub("", v)
    v = _PUNCTUATION.sub("", v)
    return normalize_whitespace(v)


COMPARABLE_FORMS = {
    "alphanumeric": strip_to_alphanum,
    "organization": normalize_organization_name,
}


def comparable_form(value: str, kind: str) -> str:
    """Apply the named comparable form; unknown kinds fall back to the normalized key."""
    fn = COMPARABLE_FORMS.get(kind, normalize_identifier)
    return fn(value)


# ─── Provenance ────────────────────────────────────────────────

SOURCE_RANK = {
    "inferred": 0,
    "seed": 1,
    "imported": 2,
    "confirmed": 3,
}


def stronger_source(current: str | None, incoming: str) -> str:
    """Return whichever provenance ranks higher; provenance never weakens."""
    if current is None:
        return incoming
    if SOURCE_RANK.get(current, -1) >= SOURCE_RANK.get(incoming, -1):
        return current
    return incoming


# ─── Value Comparison ─────────────────────────────────────────

def values_match(val_a: str | None, val_b: str | None) -> bool:
    """
    Compare two field values with normalization.

    Blank and None are equivalent. Otherwise whitespace-collapsed,
    case-insensitive comparison.
    """
    a_blank = is_blank(val_a)
    b_blank = is_blank(val_b)
    if a_blank and b_blank:
        return True
    if a_blank or b_blank:
        return False
    return normalize_identifier(str(val_a)) == normalize_identifier(str(val_b))
