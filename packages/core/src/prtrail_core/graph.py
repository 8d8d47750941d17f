"""Intra-PR dependency discovery and ordering.

Only references between *changed* files are kept: an import of an unchanged
module carries no ordering information for this pull request. The scan is a
best-effort, language-agnostic regex pass over file content; it will miss
references hidden behind path aliases or build tooling, and that is fine,
because a missed edge only costs ordering quality, never correctness.

Edges point from dependent to dependency: ``A -> B`` means "A imports B",
so B must be reviewed first. Import cycles are condensed with Tarjan's
strongly-connected-components algorithm before a Kahn topological sort, so
cyclic input can never stall or loop the ordering.
"""

from __future__ import annotations

import heapq
import logging
import posixpath
import re
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from prtrail_core.diff import ChangedFile
from prtrail_core.errors import CycleError
from prtrail_core.utils.code import INDEX_STEMS, RESOLVABLE_EXTENSIONS, file_stem, is_code_file, parent_dir, strip_extension

logger = logging.getLogger(__name__)

ContentReader = Callable[[str], "str | None"]

# Quoted path specifiers, used verbatim.
_QUOTED_PATTERNS = [
    re.compile(r"""\b(?:import|export)\b[^'";]*?\bfrom\s*['"]([^'"\n]+)['"]"""),  # ES modules
    re.compile(r"""^\s*import\s+['"]([^'"\n]+)['"]""", re.MULTILINE),  # side-effect import / Go single import
    re.compile(r"""\brequire\s*\(\s*['"]([^'"\n]+)['"]\s*\)"""),  # CommonJS
    re.compile(r"""\bimport\s*\(\s*['"]([^'"\n]+)['"]\s*\)"""),  # dynamic import()
    re.compile(r"""^\s*#\s*include\s+"([^"\n]+)\"""", re.MULTILINE),  # C / C++
    re.compile(r"""\brequire_relative\s*\(?\s*['"]([^'"\n]+)['"]"""),  # Ruby
    re.compile(r"""@import\s+(?:url\(\s*)?['"]([^'"\n]+)['"]"""),  # CSS / SCSS
]

_GO_IMPORT_BLOCK = re.compile(r"^\s*import\s*\(([^)]*)\)", re.MULTILINE)
_GO_BLOCK_ENTRY = re.compile(r'"([^"\n]+)"')

# Dotted module names (Python, Java, Kotlin, Scala).
_DOTTED_IMPORT = re.compile(
    r"^\s*import\s+(?:static\s+)?([\w.]+(?:\s+as\s+\w+)?(?:\s*,\s*[\w.]+(?:\s+as\s+\w+)?)*)\s*;?\s*(?:#.*)?$",
    re.MULTILINE,
)
_PY_FROM_IMPORT = re.compile(r"^\s*from\s+(\.+[\w.]*|[\w.]+)\s+import\s+\(?([^\n#)]*)", re.MULTILINE)

# Rust.
_RUST_MOD = re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?mod\s+(\w+)\s*;", re.MULTILINE)
_RUST_USE_CRATE = re.compile(r"^\s*(?:pub\s+)?use\s+crate::([\w:]+)", re.MULTILINE)

_ALIAS_PREFIXES = ("@/", "~/", "#/")


def _python_module_path(module: str) -> str:
    """Turn ``..pkg.mod`` into ``../pkg/mod`` and ``pkg.mod`` into ``pkg/mod``."""
    dots = len(module) - len(module.lstrip("."))
    rest = module[dots:].replace(".", "/")
    if dots == 0:
        return rest
    prefix = "./" if dots == 1 else "../" * (dots - 1)
    return prefix + rest if rest else prefix.rstrip("/")


def _split_names(names: str) -> list[str]:
    result = []
    for part in names.split(","):
        name = part.strip().split(" as ")[0].strip()
        if name and name != "*" and re.fullmatch(r"[\w.]+", name):
            result.append(name)
    return result


def extract_specifiers(path: str, content: str) -> list[str]:
    """Return import-style specifiers found in ``content``, in first-seen order.

    Specifiers are normalized to slash-separated form: dotted module names
    become paths, Python relative imports keep their leading ``./`` or ``../``.
    """
    found: list[str] = []

    def add(spec: str) -> None:
        spec = spec.strip()
        if spec and spec not in found:
            found.append(spec)

    for pattern in _QUOTED_PATTERNS:
        for match in pattern.finditer(content):
            add(match.group(1))

    for block in _GO_IMPORT_BLOCK.finditer(content):
        for entry in _GO_BLOCK_ENTRY.finditer(block.group(1)):
            add(entry.group(1))

    for match in _DOTTED_IMPORT.finditer(content):
        for name in _split_names(match.group(1)):
            add(name.replace(".", "/"))

    for match in _PY_FROM_IMPORT.finditer(content):
        module = match.group(1)
        base = _python_module_path(module)
        if module.strip("."):
            add(base)
        # `from pkg import mod` may name a submodule rather than an attribute.
        for name in _split_names(match.group(2)):
            add(f"{base}/{name}" if base else name)

    for match in _RUST_MOD.finditer(content):
        add(f"./{match.group(1)}")
    for match in _RUST_USE_CRATE.finditer(content):
        segments = [s for s in match.group(1).split("::") if s]
        if len(segments) >= 2:
            add("/".join(segments))
            if len(segments) > 2:
                add("/".join(segments[:-1]))

    return found


def _common_prefix_len(a: str, b: str) -> int:
    count = 0
    for left, right in zip(a.split("/"), b.split("/")):
        if left != right:
            break
        count += 1
    return count


class _PathIndex:
    """Lookup structure over the changed-path set."""

    def __init__(self, paths: Iterable[str]):
        self.paths = set(paths)
        self.by_module: dict[str, list[str]] = defaultdict(list)
        self.by_dir: dict[str, list[str]] = defaultdict(list)
        for path in sorted(self.paths):
            self.by_module[strip_extension(path)].append(path)
            self.by_dir[parent_dir(path)].append(path)
            if file_stem(path) in INDEX_STEMS:
                self.by_module[parent_dir(path)].append(path)

    def _exact(self, candidate: str) -> list[str]:
        if candidate in self.paths:
            return [candidate]
        hits = self.by_module.get(candidate)
        if hits:
            return list(hits)
        # `./user.js` written against a `user.ts` source (TypeScript ESM style).
        stripped = strip_extension(candidate)
        if stripped != candidate:
            return list(self.by_module.get(stripped, []))
        return []

    def _suffix(self, spec: str) -> list[str]:
        stripped = strip_extension(spec) if posixpath.splitext(spec)[1] in RESOLVABLE_EXTENSIONS else spec
        hits = []
        for module, paths in self.by_module.items():
            if module == stripped or module.endswith("/" + stripped):
                hits.extend(paths)
        if not hits and spec in self.paths:
            hits.append(spec)
        return sorted(set(hits))

    def _closest(self, candidates: list[str], importer: str) -> list[str]:
        candidates = [c for c in candidates if c != importer]
        if len(candidates) <= 1:
            return candidates
        best = max(_common_prefix_len(c, importer) for c in candidates)
        return [min(c for c in candidates if _common_prefix_len(c, importer) == best)]

    def resolve(self, spec: str, importer: str) -> list[str]:
        importer_dir = parent_dir(importer)

        if spec.startswith("."):
            joined = posixpath.normpath(posixpath.join(importer_dir, spec))
            if joined.startswith(".."):
                return []
            return self._closest(self._exact("" if joined == "." else joined), importer)

        if spec.startswith("/"):
            return self._closest(self._exact(spec.lstrip("/")), importer)

        for prefix in _ALIAS_PREFIXES:
            if spec.startswith(prefix):
                spec = spec[len(prefix) :]
                break

        if "/" not in spec:
            # A bare single name only resolves against the importer's siblings;
            # matching it repo-wide would wire every `import os` to some os.py.
            sibling = posixpath.join(importer_dir, spec) if importer_dir else spec
            return self._closest(self._exact(sibling), importer)

        hits = self._closest(self._suffix(spec), importer)
        if hits:
            return hits

        # Go imports name a package directory, not a file.
        if importer.endswith(".go"):
            for directory, paths in self.by_dir.items():
                if directory and (directory == spec or spec.endswith("/" + directory) or directory.endswith("/" + spec)):
                    return [p for p in paths if p.endswith(".go") and p != importer]
        return []


@dataclass
class ImportGraph:
    """Dependency graph over changed files, plus its condensed ordering.

    ``components`` lists the strongly connected components in review order
    (dependencies first); a component with more than one member is an import
    cycle whose files are co-equal.
    """

    nodes: list[str]
    edges: dict[str, set[str]]
    components: list[list[str]] = field(init=False)
    _rank: dict[str, int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.components = dependency_order(self.nodes, self.edges)
        self._rank = {path: i for i, component in enumerate(self.components) for path in component}

    def rank(self, path: str) -> int:
        return self._rank.get(path, len(self.components))

    def dependencies(self, path: str) -> set[str]:
        return set(self.edges.get(path, ()))

    def edge_list(self) -> list[tuple[str, str]]:
        return sorted((a, b) for a, targets in self.edges.items() for b in targets)

    def same_component(self, a: str, b: str) -> bool:
        return a in self._rank and self._rank.get(a) == self._rank.get(b)

    @property
    def cycles(self) -> list[list[str]]:
        return [c for c in self.components if len(c) > 1]


def build_import_graph(files: Sequence[ChangedFile], read_content: ContentReader | None = None) -> ImportGraph:
    """Scan changed files for references to other changed files.

    ``read_content`` returns a file's text at the PR head, or None when it is
    unavailable. Without a reader the graph has nodes but no edges and the
    ordering degrades to plain diff order.
    """
    paths = [f.path for f in files]
    edges: dict[str, set[str]] = {path: set() for path in paths}
    if read_content is None:
        return ImportGraph(nodes=paths, edges=edges)

    index = _PathIndex(paths)
    scanned = 0
    for changed in files:
        if changed.change_type == "deleted" or not is_code_file(changed.path):
            continue
        content = read_content(changed.path)
        if not content:
            continue
        scanned += 1
        for spec in extract_specifiers(changed.path, content):
            for target in index.resolve(spec, changed.path):
                if target != changed.path:
                    edges[changed.path].add(target)

    graph = ImportGraph(nodes=paths, edges=edges)
    logger.debug(
        "Scanned %d file(s): %d intra-PR edge(s), %d cycle(s)",
        scanned,
        sum(len(t) for t in edges.values()),
        len(graph.cycles),
    )
    return graph


def strongly_connected_components(nodes: Sequence[str], edges: Mapping[str, Iterable[str]]) -> list[list[str]]:
    """Tarjan's algorithm, iterative so deep import chains cannot hit the recursion limit.

    Edges to nodes outside ``nodes`` are ignored. Components come out in
    reverse topological order of the condensed graph.
    """
    node_set = set(nodes)
    index: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    components: list[list[str]] = []
    counter = 0

    def successors(v: str):
        return iter(sorted(w for w in edges.get(v, ()) if w in node_set))

    for root in nodes:
        if root in index:
            continue
        index[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        work = [(root, successors(root))]

        while work:
            v, children = work[-1]
            descended = False
            for w in children:
                if w not in index:
                    index[w] = lowlink[w] = counter
                    counter += 1
                    stack.append(w)
                    on_stack.add(w)
                    work.append((w, successors(w)))
                    descended = True
                    break
                if w in on_stack:
                    lowlink[v] = min(lowlink[v], index[w])
            if descended:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[v])

            if lowlink[v] == index[v]:
                component: list[str] = []
                while True:
                    w = stack.pop()
                    on_stack.discard(w)
                    component.append(w)
                    if w == v:
                        break
                components.append(component)

    return components


def dependency_order(
    nodes: Sequence[str],
    edges: Mapping[str, Iterable[str]],
    node_key: Callable[[str], tuple] | None = None,
) -> list[list[str]]:
    """Topologically order the SCC condensation, dependencies first.

    Whenever several components are ready at once, the one with the smallest
    ``node_key`` member goes first. The default key is (diff position, path),
    i.e. original diff order then lexical path. Members of a component are
    sorted by the same key.
    """
    position = {node: i for i, node in enumerate(nodes)}
    key = node_key or (lambda node: (position[node], node))

    components = [sorted(c, key=key) for c in strongly_connected_components(nodes, edges)]
    component_of = {node: ci for ci, component in enumerate(components) for node in component}

    depends_on: list[set[int]] = [set() for _ in components]
    dependents: list[set[int]] = [set() for _ in components]
    for source, targets in edges.items():
        if source not in component_of:
            continue
        for target in targets:
            if target not in component_of:
                continue
            a, b = component_of[source], component_of[target]
            if a != b:
                depends_on[a].add(b)
                dependents[b].add(a)

    waiting = [len(d) for d in depends_on]
    ready = [(key(components[ci][0]), ci) for ci in range(len(components)) if waiting[ci] == 0]
    heapq.heapify(ready)

    ordered: list[list[str]] = []
    while ready:
        _, ci = heapq.heappop(ready)
        ordered.append(components[ci])
        for dependent in dependents[ci]:
            waiting[dependent] -= 1
            if waiting[dependent] == 0:
                heapq.heappush(ready, (key(components[dependent][0]), dependent))

    if len(ordered) != len(components):
        stuck = sorted(n for ci, c in enumerate(components) if waiting[ci] for n in c)
        raise CycleError(f"Dependency cycle survived condensation: {', '.join(stuck)}", identifier=stuck[0])
    return ordered
