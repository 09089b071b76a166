"""Slug derivation for group names.

A slug is the normalized identifier used to de-duplicate active orders and
to look an order up by a name typed on another terminal. It is a pure
function of the display name: lower-cased, accents folded to their base
letter, and every run of non-alphanumeric characters collapsed into a
single ``_``.
"""

import re
import unicodedata

SEPARATOR = "_"
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Return the slug of ``name``.

    Examples:
        >>> slugify("Table 5")
        'table_5'
        >>> slugify("  Famille Côté -- 2e tour ")
        'famille_cote_2e_tour'

    An empty or punctuation-only name yields an empty string; callers that
    need a usable identifier must reject that case themselves.
    """
    raw = (name or "").strip().lower()
    folded = unicodedata.normalize("NFKD", raw)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return _NON_ALNUM_RE.sub(SEPARATOR, folded).strip(SEPARATOR)
