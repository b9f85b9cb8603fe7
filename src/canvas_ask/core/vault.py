"""Filesystem vault access.

The vault is a folder of markdown notes plus `.canvas` documents. This module
covers path safety, whole-document reads and writes, and the cheap
structured metadata (title, aliases, headings, tags) the search engine ranks
on before it ever opens a note body.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

import frontmatter

logger = logging.getLogger(__name__)

INVALID_PATH_CHARS = {'<', '>', ':', '"', '|', '?', '*'}
H1_PATTERN = re.compile(r"^\s*#\s+(.+)$", re.MULTILINE)
HEADING_PATTERN = re.compile(r"^ {0,3}(#{1,6})\s+(.+?)\s*#*\s*$")
FENCE_PATTERN = re.compile(r"^\s*(`{3,}|~{3,})")
INLINE_TAG_PATTERN = re.compile(r"(?<![\w#/])#([A-Za-z0-9_][\w/-]*)")


@dataclass
class DocumentMetadata:
    """Structured signals for one note."""
    path: str
    title: str
    aliases: List[str] = field(default_factory=list)
    headings: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)  # lower-case, no leading '#'
    frontmatter_title: Optional[str] = None


def validate_note_path(note_path: str) -> Tuple[bool, str]:
    """
    Validate a vault-relative path.

    Returns (is_valid, message). Message is empty when valid.
    """
    if not note_path or len(note_path) > 256:
        return False, "Path must be 1-256 characters"
    if ".." in PurePosixPath(note_path).parts:
        return False, "Path must not contain '..'"
    if "\\" in note_path:
        return False, "Path must use Unix separators (/)"
    if note_path.startswith("/"):
        return False, "Path must be relative (no leading /)"
    if any(char in INVALID_PATH_CHARS for char in note_path):
        return False, "Path contains invalid characters"
    return True, ""


def sanitize_path(vault_root: Path, note_path: str) -> Path:
    """
    Resolve a note path within the vault.

    Raises ValueError if the resolved path escapes the vault root.
    """
    vault = vault_root.resolve()
    full_path = (vault / note_path).resolve()
    if full_path != vault and vault not in full_path.parents:
        raise ValueError(f"Path escapes vault root: {note_path}")
    return full_path


def normalize_vault_path(path: str) -> str:
    """Normalize a canvas-supplied reference to a clean vault-relative path."""
    cleaned = (path or "").strip().replace("\\", "/")
    parts = [p for p in cleaned.split("/") if p not in ("", ".")]
    return "/".join(parts)


def _as_string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None]
    return []


def _normalize_tag(tag: str) -> str:
    return tag.strip().lstrip("#").lower()


def extract_headings(body: str) -> List[str]:
    """ATX headings in document order, skipping fenced code blocks."""
    headings: List[str] = []
    in_fence = False
    for line in body.splitlines():
        if FENCE_PATTERN.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = HEADING_PATTERN.match(line)
        if match:
            headings.append(match.group(2).strip())
    return headings


def extract_tags(metadata: Dict[str, Any], body: str) -> List[str]:
    """Front-matter tags (list or comma/space separated string) plus inline #tags."""
    tags: List[str] = []
    fm_tags = metadata.get("tags")
    if isinstance(fm_tags, str):
        tags.extend(_normalize_tag(t) for t in re.split(r"[,\s]+", fm_tags))
    else:
        tags.extend(_normalize_tag(t) for t in _as_string_list(fm_tags))

    in_fence = False
    for line in body.splitlines():
        if FENCE_PATTERN.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        tags.extend(_normalize_tag(m.group(1)) for m in INLINE_TAG_PATTERN.finditer(line))

    seen = set()
    unique: List[str] = []
    for tag in tags:
        if tag and tag not in seen:
            seen.add(tag)
            unique.append(tag)
    return unique


def parse_metadata(note_path: str, raw: str) -> DocumentMetadata:
    """Build metadata for a note from its raw text.

    Malformed front matter is treated as absent.
    """
    try:
        post = frontmatter.loads(raw)
        metadata = dict(post.metadata or {})
        body = post.content or ""
    except Exception as e:
        logger.debug(f"Unreadable front matter in {note_path}: {e}")
        metadata, body = {}, raw

    fm_title = metadata.get("title")
    fm_title = fm_title.strip() if isinstance(fm_title, str) and fm_title.strip() else None

    return DocumentMetadata(
        path=note_path,
        title=fm_title or PurePosixPath(note_path).stem,
        aliases=_as_string_list(metadata.get("aliases")),
        headings=extract_headings(body),
        tags=extract_tags(metadata, body),
        frontmatter_title=fm_title,
    )


class VaultService:
    """Read/write access to a vault rooted at a local folder."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser().resolve()
        self._metadata_cache: Dict[str, Tuple[int, DocumentMetadata]] = {}

    def resolve(self, note_path: str) -> Path:
        """
        Validate and resolve a vault-relative path.

        Raises ValueError for invalid paths.
        """
        is_valid, message = validate_note_path(note_path)
        if not is_valid:
            raise ValueError(message)
        return sanitize_path(self.root, note_path)

    def exists(self, note_path: str) -> bool:
        try:
            return self.resolve(note_path).is_file()
        except ValueError:
            return False

    def relative(self, absolute: Path) -> str:
        """Vault-relative POSIX path for an absolute path inside the vault."""
        return absolute.resolve().relative_to(self.root).as_posix()

    def read(self, note_path: str) -> str:
        """Read a whole document.

        Raises:
            FileNotFoundError: If the document does not exist
            ValueError: If the path is invalid
        """
        absolute_path = self.resolve(note_path)
        if not absolute_path.is_file():
            raise FileNotFoundError(f"Note not found: {note_path}")
        return absolute_path.read_text(encoding="utf-8")

    async def aread(self, note_path: str) -> str:
        """Read a whole document without blocking the event loop."""
        return await asyncio.to_thread(self.read, note_path)

    def write(self, note_path: str, body: str) -> str:
        """Create or overwrite a document, creating parent folders as needed.

        Returns:
            The vault-relative path written
        """
        absolute_path = self.resolve(note_path)
        self.ensure_folder(absolute_path.parent)
        absolute_path.write_text(body, encoding="utf-8")
        self._metadata_cache.pop(note_path, None)
        logger.info(f"Wrote {note_path} ({len(body)} chars)")
        return note_path

    def ensure_folder(self, folder: Path) -> None:
        if not folder.exists():
            folder.mkdir(parents=True, exist_ok=True)

    def list_markdown(self) -> List[str]:
        """All markdown notes, as vault-relative paths in a stable order."""
        files = [p for p in self.root.rglob("*.md") if p.is_file()]
        paths = [self.relative(p) for p in files]
        return sorted(p for p in paths if not any(part.startswith(".") for part in p.split("/")))

    def metadata(self, note_path: str) -> Optional[DocumentMetadata]:
        """Cached structured metadata for a note, or None if it cannot be read."""
        try:
            absolute_path = self.resolve(note_path)
            mtime = absolute_path.stat().st_mtime_ns
        except (OSError, ValueError):
            return None

        cached = self._metadata_cache.get(note_path)
        if cached and cached[0] == mtime:
            return cached[1]

        try:
            raw = absolute_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Cannot read metadata for {note_path}: {e}")
            return None

        meta = parse_metadata(note_path, raw)
        self._metadata_cache[note_path] = (mtime, meta)
        return meta

    def title_or_h1(self, note_path: str) -> Optional[str]:
        """Front-matter title, else first H1, else file stem; None if missing."""
        meta = self.metadata(note_path)
        if meta is None:
            return None
        if meta.frontmatter_title:
            return meta.frontmatter_title
        try:
            content = self.read(note_path)
        except (OSError, UnicodeDecodeError, ValueError):
            return None
        match = H1_PATTERN.search(content)
        if match:
            return match.group(1).strip()
        stem = PurePosixPath(note_path).stem.strip()
        return stem or None


__all__ = [
    "VaultService",
    "DocumentMetadata",
    "validate_note_path",
    "sanitize_path",
    "normalize_vault_path",
    "parse_metadata",
    "extract_headings",
    "extract_tags",
]
