"""Text helpers for the notes this package writes into the vault."""

from __future__ import annotations

import re
from typing import List, Optional

from canvas_ask.core.canvas import first_line

UNSAFE_FILENAME_CHARS = re.compile(r"[\\/#%&{}<>*?$!'\":@+`|=]")
TRAILING_DOTS_SPACES = re.compile(r"[.\s]+$")
MAX_FILENAME_CHARS = 180
H1_LINE = re.compile(r"^\s*#\s+(.+?)\s*$", re.MULTILINE)
FENCE_LINE = re.compile(r"^(\s*)(`{3,}|~{3,})(.*)$")
SETEXT_UNDERLINE = re.compile(r"^[ \t]*[=-]{3,}[ \t]*$")
ATX_HEADING = re.compile(r"^(\s{0,3})(#{1,6})\s+(.+?)\s*#*\s*$")

# Windows reserved device names, reserved even with an extension
WINDOWS_RESERVED_BASENAMES = frozenset(
    ["con", "prn", "aux", "nul"]
    + [f"com{i}" for i in range(1, 10)]
    + [f"lpt{i}" for i in range(1, 10)]
)


def sanitize_filename(value: Optional[str]) -> str:
    """Make `value` safe as a file name on every common filesystem.

    Interior spaces are kept for readability.
    """
    out = UNSAFE_FILENAME_CHARS.sub("_", (value or "").strip())
    out = TRAILING_DOTS_SPACES.sub("", out)
    if not out:
        return "untitled"

    stem = out.split(".")[0].lower()
    if stem in WINDOWS_RESERVED_BASENAMES:
        out = f"_{out}"

    out = TRAILING_DOTS_SPACES.sub("", out[:MAX_FILENAME_CHARS])
    return out or "untitled"


def truncate_words(value: Optional[str], max_words: int) -> str:
    """Keep the first `max_words` words, adding an ellipsis when cut."""
    text = (value or "").strip()
    if not text:
        return ""
    words = text.split()
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words]) + "…"


def answer_title(answer: str, question: str) -> str:
    """The answer's first H1, else the question's first line."""
    match = H1_LINE.search(answer or "")
    if match:
        return match.group(1)
    return first_line(question)


def build_answer_note(answer: str, sources_markdown: str) -> str:
    return (
        f"{answer}\n\n"
        f"---\n\n"
        f"### Sources (selected + upstream)\n"
        f"{sources_markdown}\n"
    )


def join_vault_path(folder: str, filename: str) -> str:
    folder = (folder or "").strip().strip("/")
    return f"{folder}/{filename}" if folder else filename


def demote_headings(markdown: str) -> str:
    """Demote every heading by one level for embedding into another note.

    ATX (`#`) and Setext (underlined) headings are handled; anything that
    would reach level 5 or deeper becomes bold text. Fenced code blocks and
    a leading front matter block are left untouched.
    """
    lines = re.split(r"\r?\n", markdown)
    out: List[str] = []
    in_fence = False
    fence_char = ""
    fence_len = 0

    i = 0
    if lines and lines[0].strip() == "---":
        # leading front matter is copied verbatim
        for j in range(1, len(lines)):
            if lines[j].strip() in ("---", "..."):
                out.extend(lines[:j + 1])
                i = j + 1
                break

    while i < len(lines):
        line = lines[i]

        fence = FENCE_LINE.match(line)
        if fence:
            ticks = fence.group(2)
            if not in_fence:
                in_fence, fence_char, fence_len = True, ticks[0], len(ticks)
            elif ticks[0] == fence_char and len(ticks) >= fence_len:
                in_fence, fence_char, fence_len = False, "", 0
            out.append(line)
            i += 1
            continue

        if not in_fence:
            nxt = lines[i + 1] if i + 1 < len(lines) else None
            if nxt is not None and SETEXT_UNDERLINE.match(nxt):
                text = line.rstrip()
                if text and not text.lstrip().startswith("#"):
                    level = (1 if nxt.strip().startswith("=") else 2) + 1
                    out.append(_heading(level, text.strip()))
                    i += 2
                    continue

            atx = ATX_HEADING.match(line)
            if atx:
                indent, hashes, content = atx.group(1), atx.group(2), atx.group(3).strip()
                out.append(indent + _heading(len(hashes) + 1, content))
                i += 1
                continue

        out.append(line)
        i += 1

    return "\n".join(out)


def _heading(level: int, text: str) -> str:
    if level >= 5:
        return f"**{text}**"
    return f"{'#' * level} {text}"


def quote_block(text: str) -> str:
    """Prefix every line with `> `."""
    return "\n".join(f"> {line}" for line in re.split(r"\r?\n", text))


__all__ = [
    "sanitize_filename",
    "truncate_words",
    "answer_title",
    "build_answer_note",
    "join_vault_path",
    "demote_headings",
    "quote_block",
    "first_line",
]
