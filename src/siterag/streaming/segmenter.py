"""Re-segmentation of large tokens for smoother delivery."""

from __future__ import annotations

import re
from typing import List

_WORD = re.compile(r"\s*\S+\s*")


def segment_token(token: str, *, threshold: int = 20, words_per_group: int = 3) -> List[str]:
    """Split ``token`` into groups of a few words once it exceeds ``threshold`` chars.

    Whitespace is kept with the preceding word so the groups concatenate back
    to the original token.
    """

    if len(token) <= threshold:
        return [token]
    words = _WORD.findall(token)
    if len(words) <= 1:
        return [token]
    size = max(1, words_per_group)
    return ["".join(words[index : index + size]) for index in range(0, len(words), size)]
