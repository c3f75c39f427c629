"""Strip invisible Unicode and fold compatibility characters.

Pattern matching over untrusted text is only meaningful once zero-width
insertions, direction overrides and look-alike encodings are gone.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Any

# Invisible or formatting code points, as inclusive ranges
INVISIBLE_RANGES = [
    (0x00AD, 0x00AD),  # soft hyphen
    (0x061C, 0x061C),  # arabic letter mark
    (0x180E, 0x180E),  # mongolian vowel separator
    (0x200B, 0x200F),  # zero-width space/joiners, LRM/RLM
    (0x2028, 0x2029),  # line/paragraph separators
    (0x202A, 0x202E),  # directional embeddings and overrides
    (0x2060, 0x2064),  # word joiner, invisible operators
    (0x2066, 0x2069),  # directional isolates
    (0xFEFF, 0xFEFF),  # byte-order mark / ZWNBSP
    (0xE0000, 0xE007F),  # tag characters
]

INVISIBLE_CHARS = re.compile(
    "[" + "".join(f"{re.escape(chr(lo))}-{re.escape(chr(hi))}" for lo, hi in INVISIBLE_RANGES) + "]"
)


def strip_invisible(text: str) -> str:
    return INVISIBLE_CHARS.sub("", text)


def sanitize(text: Any) -> str:
    """Return ``text`` without invisible code points, NFKC-normalised.

    Total and idempotent: never raises, and ``sanitize(sanitize(x)) == sanitize(x)``.
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)
    # Strip before normalising so removed characters cannot block composition
    text = strip_invisible(text)
    text = unicodedata.normalize("NFKC", text)
    return strip_invisible(text)
