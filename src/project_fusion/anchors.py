from __future__ import annotations

import re

_UNSAFE_CHARS = re.compile(r"[^\w\s-]", re.UNICODE)
_WHITESPACE_RUN = re.compile(r"\s+")
FALLBACK_SLUG = "file"


def normalize_slug(raw: str) -> str:
    """Lower-case ``raw``, drop characters outside ``[\\w\\s-]`` and hyphen-join whitespace runs.

    Args:
        raw (str): a file path or title

    Returns:
        str: the normalized slug, ``"file"`` when nothing survives
    """
    text = _UNSAFE_CHARS.sub("", raw.lower()).strip()
    text = _WHITESPACE_RUN.sub("-", text)
    return text or FALLBACK_SLUG


class AnchorAllocator:
    """Hands out unique anchors within one render pass.

    Repeats of the same normalized slug get ``-1``, ``-2``... appended, counted
    per slug. A suffixed candidate that has already been issued (for instance
    because a file is literally named ``a-1``) is skipped. Call ``reset`` at
    the start of every pass so the table of contents and the body agree.
    """

    def __init__(self) -> None:
        self._next_suffix: dict[str, int] = {}
        self._issued: set[str] = set()

    def reset(self) -> None:
        self._next_suffix.clear()
        self._issued.clear()

    def slug(self, raw: str) -> str:
        base = normalize_slug(raw)
        suffix = self._next_suffix.get(base, 0)
        candidate = base if suffix == 0 else f"{base}-{suffix}"
        while candidate in self._issued:
            suffix += 1
            candidate = f"{base}-{suffix}"
        self._next_suffix[base] = suffix + 1
        self._issued.add(candidate)
        return candidate
