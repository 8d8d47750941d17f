"""Heuristic pairing of implementation files with their tests.

We match on paths only, never file content, so this works the same for
every language. A pairing only produces an annotation; it never moves a
file between clusters or changes the review order.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from prtrail_core.diff import ChangedFile
from prtrail_core.utils.code import file_stem, parent_dir

logger = logging.getLogger(__name__)

# Filename conventions, ordered by prevalence. Each pattern captures the
# stem of the file under test.
_TEST_NAME_PATTERNS = [
    re.compile(r"^test_(?P<stem>.+)$"),  # Python:      test_reviewer.py
    re.compile(r"^(?P<stem>.+)_test$"),  # Go / Rust:   reviewer_test.go
    re.compile(r"^(?P<stem>.+)\.test$"),  # JS / TS:     reviewer.test.ts
    re.compile(r"^(?P<stem>.+)\.spec$"),  # JS / TS:     reviewer.spec.js
    re.compile(r"^(?P<stem>.+)_spec$"),  # Ruby:        reviewer_spec.rb
    re.compile(r"^(?P<stem>.+?)Tests?$"),  # Java / C#:  ReviewerTest.java
]

TEST_DIRECTORIES = {"test", "tests", "__tests__", "spec", "specs", "testing"}

# Segments stripped when comparing a test tree against a source tree.
_SOURCE_ROOTS = {"src", "lib", "app", "pkg", "source"}


@dataclass(frozen=True)
class TestPair:
    source: str
    test: str

    __test__ = False  # not a pytest class


def _test_stem(path: str) -> str | None:
    """Stem of the file a test covers, or None when ``path`` is not a test by name."""
    name = file_stem(path)
    for pattern in _TEST_NAME_PATTERNS:
        match = pattern.match(name)
        if match and match.group("stem"):
            return match.group("stem")
    return None


def is_test_file(path: str) -> bool:
    if _test_stem(path) is not None:
        return True
    return any(segment in TEST_DIRECTORIES for segment in parent_dir(path).split("/"))


def _normalized_dir(path: str) -> tuple[str, ...]:
    return tuple(
        s for s in parent_dir(path).split("/") if s and s not in TEST_DIRECTORIES and s not in _SOURCE_ROOTS
    )


def _shared_prefix(a: str, b: str) -> int:
    count = 0
    for left, right in zip(a.split("/"), b.split("/")):
        if left != right:
            break
        count += 1
    return count


def _closeness(test: str, source: str) -> tuple[int, int, int, str]:
    same_dir = parent_dir(test) == parent_dir(source)
    parallel = _normalized_dir(test) == _normalized_dir(source)
    # Negated so that min() picks the closest candidate.
    return (-int(same_dir), -int(parallel), -_shared_prefix(test, source), source)


def detect_test_pairs(files: Sequence[ChangedFile]) -> list[TestPair]:
    """Pair changed test files with changed implementation files.

    Resolution for each test file:
      1. implementation files with the same stem; the closest one wins
         (same directory, then a parallel tree such as ``tests/x`` ↔ ``src/x``,
         then the longest shared path prefix);
      2. otherwise, a test named after a directory (``tests/auth.test.ts``)
         pairs with every changed file directly inside that directory.

    Deleted files are never paired. No match is not an error.
    """
    live = [f.path for f in files if f.change_type != "deleted"]
    tests = [p for p in live if is_test_file(p)]
    sources = [p for p in live if not is_test_file(p)]

    by_stem: dict[str, list[str]] = {}
    by_dirname: dict[str, list[str]] = {}
    for source in sources:
        by_stem.setdefault(file_stem(source).lower(), []).append(source)
        directory = parent_dir(source)
        if directory:
            by_dirname.setdefault(directory.rsplit("/", 1)[-1].lower(), []).append(source)

    pairs: list[TestPair] = []
    for test in tests:
        stem = (_test_stem(test) or file_stem(test)).lower()
        candidates = by_stem.get(stem)
        if candidates:
            best = min(candidates, key=lambda s: _closeness(test, s))
            pairs.append(TestPair(source=best, test=test))
            continue
        for source in by_dirname.get(stem, []):
            pairs.append(TestPair(source=source, test=test))

    logger.debug("Detected %d test pair(s) across %d test file(s)", len(pairs), len(tests))
    return pairs


def pair_annotations(pairs: Sequence[TestPair]) -> dict[str, str]:
    """Render pairs as per-file annotation text for both sides of each pair."""
    tests_for: dict[str, list[str]] = {}
    sources_for: dict[str, list[str]] = {}
    for pair in pairs:
        tests_for.setdefault(pair.source, []).append(pair.test)
        sources_for.setdefault(pair.test, []).append(pair.source)

    notes: dict[str, str] = {}
    for source, tests in tests_for.items():
        notes[source] = "has paired test: " + ", ".join(tests)
    for test, sources in sources_for.items():
        notes[test] = "tests: " + ", ".join(sources)
    return notes
