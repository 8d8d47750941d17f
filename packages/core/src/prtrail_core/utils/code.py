from __future__ import annotations

import posixpath

NON_CODE_EXTENSIONS = {
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".ico",
    ".webp",
    ".bmp",
    ".pdf",
    ".woff",
    ".woff2",
    ".ttf",
    ".eot",
    ".otf",
    ".mp4",
    ".mp3",
    ".wav",
    ".ogg",
    ".zip",
    ".tar",
    ".gz",
    ".rar",
    ".7z",
    ".lock",  # e.g. package-lock.json, Pipfile.lock
    ".lockb",
}

# Extensions tried, in order, when an import specifier omits one.
RESOLVABLE_EXTENSIONS = (
    ".ts",
    ".tsx",
    ".js",
    ".jsx",
    ".mjs",
    ".cjs",
    ".py",
    ".go",
    ".rs",
    ".rb",
    ".java",
    ".kt",
    ".c",
    ".h",
    ".cc",
    ".cpp",
    ".hpp",
    ".css",
    ".scss",
    ".vue",
    ".svelte",
)

# Module files that stand for their directory.
INDEX_STEMS = ("index", "__init__", "mod")


def is_code_file(file_name: str) -> bool:
    return not any(file_name.lower().endswith(ext) for ext in NON_CODE_EXTENSIONS)


def strip_extension(path: str) -> str:
    root, _ = posixpath.splitext(path)
    return root


def file_stem(path: str) -> str:
    return posixpath.basename(strip_extension(path))


def parent_dir(path: str) -> str:
    """Parent directory of a repo-relative path; ``""`` for root-level files."""
    return posixpath.dirname(path)
