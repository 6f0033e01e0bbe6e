"""Fenced script block extraction.

A block opens with three backticks immediately followed by the ``nushell``
tag (``nu`` is accepted as the short spelling of the same tag) and a
newline, and closes at the next three backticks. Only the first block in a
reply is honored; a reply without one is a final answer.
"""

from __future__ import annotations

import re

FENCE = "```"
FENCE_TAGS = ("nushell", "nu")

# Longest tag first so "nushell" is not read as "nu" + "shell"
_BLOCK_PATTERN = re.compile(
    re.escape(FENCE)
    + "(?:"
    + "|".join(re.escape(tag) for tag in sorted(FENCE_TAGS, key=len, reverse=True))
    + r")\n(.*?)"
    + re.escape(FENCE),
    re.DOTALL,
)


def extract_script_block(content: str) -> str | None:
    """Return the trimmed body of the first fenced script block, if any.

    An empty block counts as no block.
    """
    match = _BLOCK_PATTERN.search(content)
    if not match:
        return None
    body = match.group(1).strip()
    return body or None


def format_script_block(script: str) -> str:
    """Render a script as a fenced block the extractor will accept."""
    return f"{FENCE}{FENCE_TAGS[0]}\n{script}\n{FENCE}"
