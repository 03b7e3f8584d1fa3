"""
Unified diff selection: split by file, drop ignored and binary files, cap
the file count and pack what is left into prompt-sized chunks.
"""

import re
from dataclasses import dataclass
from fnmatch import fnmatchcase

FILE_HEADER = re.compile(r"^diff --git ", re.MULTILINE)
PATH_LINE = re.compile(r"^a/(.+?)\s+b/(.+)$", re.MULTILINE)

MAX_CHARS_PER_CHUNK = 30_000


@dataclass(frozen=True)
class FileDiff:
    path: str
    hunks: str


def parse_diff(raw_diff: str) -> list[FileDiff]:
    """Files with at least one hunk, in diff order. Binary files are skipped."""
    files = []
    for section in FILE_HEADER.split(raw_diff):
        if not section:
            continue

        match = PATH_LINE.search(section)
        if match is None or "Binary files" in section:
            continue

        hunk_start = section.find("@@")
        if hunk_start == -1:
            continue

        files.append(FileDiff(path=match.group(2), hunks=section[hunk_start:]))

    return files


def is_ignored(path: str, ignore_paths: list[str]) -> bool:
    return any(fnmatchcase(path, pattern) for pattern in ignore_paths)


def filter_files(
    files: list[FileDiff], ignore_paths: list[str], max_files: int
) -> list[FileDiff]:
    """Drop files matching an ignore glob, then keep the first max_files."""
    kept = [f for f in files if not is_ignored(f.path, ignore_paths)]
    return kept[:max_files]


def chunk_diffs(
    files: list[FileDiff], max_chars: int = MAX_CHARS_PER_CHUNK
) -> list[str]:
    """
    Group files into chunks of at most max_chars characters.

    A single file larger than max_chars still gets a chunk of its own.
    """
    chunks: list[str] = []
    current = ""

    for f in files:
        block = f"### {f.path}\n{f.hunks}\n\n"
        if current and len(current) + len(block) > max_chars:
            chunks.append(current)
            current = ""
        current += block

    if current:
        chunks.append(current)

    return chunks
