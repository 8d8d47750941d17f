"""Grouping of changed files into ordered review clusters.

The pipeline is a chain of pure functions over immutable FileGroup values,
each testable on its own:

    split_cross_cutting -> group_by_directory -> merge_sibling_groups
        -> subdivide_groups -> assign_priorities

``build_clusters`` runs the whole chain.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace

from prtrail_core.config import DEFAULT_CROSS_CUTTING
from prtrail_core.diff import ChangedFile, normalize_diff
from prtrail_core.graph import ContentReader, ImportGraph, build_import_graph, dependency_order
from prtrail_core.pairing import TestPair, detect_test_pairs, pair_annotations
from prtrail_core.session import ClusterFile, FileCluster
from prtrail_core.utils.code import parent_dir

logger = logging.getLogger(__name__)

# Normalized paths never start with "/", so this cannot collide with a directory key.
CROSS_CUTTING_KEY = "/cross-cutting"
ROOT_KEY = "."

# Conventional directory names -> (layer, rank). Rank orders clusters that
# are otherwise tied: data shapes before the code that uses them, tests and
# docs after.
_LAYERS = {
    "types": ("models", 1),
    "models": ("models", 1),
    "entities": ("models", 1),
    "schemas": ("models", 1),
    "schema": ("models", 1),
    "interfaces": ("models", 1),
    "dto": ("models", 1),
    "utils": ("utilities", 2),
    "util": ("utilities", 2),
    "helpers": ("utilities", 2),
    "common": ("utilities", 2),
    "shared": ("utilities", 2),
    "core": ("core", 3),
    "services": ("services", 4),
    "controllers": ("api", 5),
    "routes": ("api", 5),
    "api": ("api", 5),
    "handlers": ("api", 5),
    "components": ("ui", 6),
    "views": ("ui", 6),
    "pages": ("ui", 6),
    "tests": ("tests", 7),
    "test": ("tests", 7),
    "__tests__": ("tests", 7),
    "spec": ("tests", 7),
    "docs": ("docs", 8),
}
_DEFAULT_LAYER = (None, 5)
_NAME_SKIP_SEGMENTS = {"src", "lib"}


def _compile(patterns: Mapping[str, Iterable[str]]) -> tuple:
    return tuple((category, tuple(re.compile(p) for p in regexes)) for category, regexes in patterns.items())


@dataclass(frozen=True)
class ClusterOptions:
    max_cluster_size: int = 50
    merge_threshold: int = 8
    group_depth: int = 2
    large_change_lines: int = 100
    cross_cutting: tuple = field(default_factory=lambda: _compile(DEFAULT_CROSS_CUTTING))

    def __post_init__(self) -> None:
        for name in ("max_cluster_size", "group_depth"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")

    @classmethod
    def from_config(cls, config: Mapping) -> ClusterOptions:
        return cls(
            max_cluster_size=int(config.get("max_cluster_size", 50)),
            merge_threshold=int(config.get("merge_threshold", 8)),
            group_depth=int(config.get("group_depth", 2)),
            large_change_lines=int(config.get("large_change_lines", 100)),
            cross_cutting=_compile(config.get("cross_cutting") or DEFAULT_CROSS_CUTTING),
        )

    def concern_of(self, path: str) -> str | None:
        for category, patterns in self.cross_cutting:
            if any(p.search(path) for p in patterns):
                return category
        return None


@dataclass(frozen=True)
class FileGroup:
    key: str
    files: tuple[ChangedFile, ...]
    cross_cutting: bool = False
    oversized: bool = False

    def __len__(self) -> int:
        return len(self.files)


@dataclass(frozen=True)
class ClusterResult:
    clusters: tuple[FileCluster, ...]
    cross_cutting_concerns: tuple[str, ...]
    graph: ImportGraph
    pairs: tuple[TestPair, ...] = ()

    @property
    def total_files(self) -> int:
        return sum(len(c.files) for c in self.clusters)


def layer_of(key: str) -> tuple[str | None, int]:
    """Conventional layer of a group key.

    Test and docs trees win wherever they appear (``tests/api`` is tests);
    otherwise the deepest recognised segment decides (``src/auth/models``
    is models).
    """
    segments = [s.lower() for s in key.split("/") if s and s != ROOT_KEY]
    for segment in segments:
        layer = _LAYERS.get(segment)
        if layer and layer[0] in ("tests", "docs"):
            return layer
    for segment in reversed(segments):
        if segment in _LAYERS:
            return _LAYERS[segment]
    return _DEFAULT_LAYER


def _sorted_files(files: Iterable[ChangedFile]) -> tuple[ChangedFile, ...]:
    return tuple(sorted(files, key=lambda f: f.path))


def split_cross_cutting(
    files: Sequence[ChangedFile], options: ClusterOptions
) -> tuple[tuple[ChangedFile, ...], tuple[ChangedFile, ...], tuple[str, ...]]:
    """Separate cross-cutting files (manifests, migrations, config) from the rest.

    Returns (regular files, cross-cutting files, matched concern categories).
    """
    regular: list[ChangedFile] = []
    cross: list[ChangedFile] = []
    concerns: list[str] = []
    for f in files:
        category = options.concern_of(f.path)
        if category is None:
            regular.append(f)
            continue
        cross.append(f)
        if category not in concerns:
            concerns.append(category)
    # Report categories in configuration order, not discovery order.
    ordered = tuple(c for c, _ in options.cross_cutting if c in concerns)
    return tuple(regular), tuple(cross), ordered


def group_by_directory(files: Sequence[ChangedFile], depth: int = 2) -> list[FileGroup]:
    """Group files by parent directory, truncated to ``depth`` segments.

    Root-level files have no directory to group by and fall back to the
    top-level ``.`` group.
    """
    buckets: dict[str, list[ChangedFile]] = defaultdict(list)
    for f in files:
        directory = parent_dir(f.path)
        key = "/".join(directory.split("/")[:depth]) if directory else ROOT_KEY
        buckets[key].append(f)
    return [FileGroup(key=key, files=_sorted_files(buckets[key])) for key in sorted(buckets)]


def merge_sibling_groups(groups: Sequence[FileGroup], threshold: int) -> list[FileGroup]:
    """Fold small sibling groups into their parent directory.

    Siblings (same parent, parent not the repo root) of the same conventional
    layer merge when their combined size, including any group already keyed
    by the parent, is at most ``threshold``. Repeats until nothing changes,
    so merges cascade upward. Cross-cutting groups never merge.
    """
    current = {g.key: g for g in groups}
    changed = True
    while changed:
        changed = False
        by_parent: dict[str, list[FileGroup]] = defaultdict(list)
        for group in current.values():
            if group.cross_cutting or group.key == ROOT_KEY or "/" not in group.key:
                continue
            by_parent[parent_dir(group.key)].append(group)

        for parent in sorted(by_parent, key=lambda p: (-p.count("/"), p)):
            by_layer: dict[str | None, list[FileGroup]] = defaultdict(list)
            for group in by_parent[parent]:
                by_layer[layer_of(group.key)[0]].append(group)

            for layer in sorted(by_layer, key=lambda item: item or ""):
                members = by_layer[layer]
                if len(members) < 2:
                    continue
                own = current.get(parent)
                if own is not None:
                    if own.cross_cutting or layer_of(own.key)[0] != layer:
                        continue
                    members = members + [own]
                if sum(len(m) for m in members) > threshold:
                    continue
                for member in members:
                    current.pop(member.key, None)
                merged_files = _sorted_files(f for m in members for f in m.files)
                current[parent] = FileGroup(key=parent, files=merged_files)
                logger.debug("Merged %s into %s", ", ".join(sorted(m.key for m in members)), parent)
                changed = True
                break
            if changed:
                break

    return [current[key] for key in sorted(current)]


def _common_root(files: Sequence[ChangedFile]) -> list[str]:
    split = [parent_dir(f.path).split("/") if parent_dir(f.path) else [] for f in files]
    root: list[str] = []
    for segments in zip(*split):
        if len(set(segments)) != 1:
            break
        root.append(segments[0])
    return root


def _subdivide(group: FileGroup, max_size: int) -> list[FileGroup]:
    if len(group) <= max_size:
        return [group]

    root = _common_root(group.files)
    depth = len(root)
    buckets: dict[str, list[ChangedFile]] = defaultdict(list)
    for f in group.files:
        segments = parent_dir(f.path).split("/") if parent_dir(f.path) else []
        bucket = "/".join(segments[: depth + 1]) if len(segments) > depth else ("/".join(root) or ROOT_KEY)
        buckets[bucket].append(f)

    if len(buckets) < 2:
        logger.info("Cluster %s has %d files and cannot be split further", group.key, len(group))
        return [replace(group, oversized=True)]

    result: list[FileGroup] = []
    for bucket in sorted(buckets):
        key = f"{CROSS_CUTTING_KEY}/{bucket}" if group.cross_cutting else bucket
        child = FileGroup(key=key, files=_sorted_files(buckets[bucket]), cross_cutting=group.cross_cutting)
        result.extend(_subdivide(child, max_size))
    return result


def subdivide_groups(groups: Sequence[FileGroup], max_size: int = 50) -> list[FileGroup]:
    """Split groups larger than ``max_size`` by the next path segment under their common root.

    Applied recursively. A group whose files all share one directory cannot
    be split and is returned flagged ``oversized``.
    """
    result: list[FileGroup] = []
    for group in groups:
        result.extend(_subdivide(group, max_size))
    return result


def cluster_name(group: FileGroup) -> str:
    if group.cross_cutting:
        if group.key == CROSS_CUTTING_KEY:
            return "Cross-Cutting Concerns"
        return f"Cross-Cutting Concerns ({group.key[len(CROSS_CUTTING_KEY) + 1 :]})"
    if group.key == ROOT_KEY:
        return "Root Files"
    if layer_of(group.key)[0] == "models":
        return "Data Models"

    parts = [p for p in group.key.split("/") if p and p not in _NAME_SKIP_SEGMENTS]
    last = parts[-1] if parts else group.key
    return " ".join(word[:1].upper() + word[1:].lower() for word in re.split(r"[-_.]", last) if word)


def cluster_description(files: Sequence[ChangedFile], oversized: bool = False, max_size: int = 50) -> str:
    count = len(files)
    additions = sum(f.additions for f in files)
    deletions = sum(f.deletions for f in files)
    change_types = ", ".join(dict.fromkeys(f.change_type for f in files))

    description = f"{count} file{'s' if count != 1 else ''} ({change_types})"
    if additions or deletions:
        description += f" - +{additions}/-{deletions} lines"
    if oversized:
        description += f" - over {max_size} files in a single directory, could not be split further"
    return description


def _annotation(f: ChangedFile, pair_notes: Mapping[str, str], large_change_lines: int) -> str | None:
    notes = []
    if f.path in pair_notes:
        notes.append(pair_notes[f.path])
    if f.change_type == "added":
        notes.append("new file")
    if f.churn > large_change_lines:
        notes.append("large change")
    return "; ".join(notes) or None


def assign_priorities(
    groups: Sequence[FileGroup],
    graph: ImportGraph,
    pair_notes: Mapping[str, str] | None = None,
    options: ClusterOptions | None = None,
) -> tuple[FileCluster, ...]:
    """Order groups into clusters with dense priorities starting at 1.

    Dependency order comes first: a group is only placed after every group
    it imports from. Among groups that are ready at the same time, fewer
    files go first, then conventional layer, then diff order. Groups that
    import each other are condensed and become co-equal, with the edges
    between them dropped so ``depends_on`` stays acyclic. Cross-cutting
    groups always come last, and edges into them are not recorded.
    """
    options = options or ClusterOptions()
    pair_notes = pair_notes or {}
    position = {path: i for i, path in enumerate(graph.nodes)}
    by_key = {g.key: g for g in groups}
    group_of = {f.path: g.key for g in groups for f in g.files}

    def first_position(group: FileGroup) -> int:
        return min((position.get(f.path, len(position)) for f in group.files), default=len(position))

    def node_key(key: str) -> tuple:
        group = by_key[key]
        return (len(group), layer_of(key)[1], first_position(group), key)

    regular = [g.key for g in groups if not g.cross_cutting]
    cross = sorted((g.key for g in groups if g.cross_cutting), key=node_key)
    cross_set = set(cross)

    edges: dict[str, set[str]] = {key: set() for key in by_key}
    for source, target in graph.edge_list():
        a, b = group_of.get(source), group_of.get(target)
        if a is None or b is None or a == b or b in cross_set:
            continue
        edges[a].add(b)

    components = dependency_order(regular, {k: edges[k] for k in regular}, node_key)
    component_of = {key: i for i, component in enumerate(components) for key in component}
    ordered = [key for component in components for key in component] + cross

    ids = {key: f"cluster-{i}" for i, key in enumerate(ordered, 1)}
    names = {key: cluster_name(by_key[key]) for key in ordered}
    seen: dict[str, int] = defaultdict(int)
    for key in ordered:
        seen[names[key]] += 1
    for key in ordered:
        if seen[names[key]] > 1 and not by_key[key].cross_cutting:
            names[key] = f"{names[key]} ({key})"

    clusters = []
    for priority, key in enumerate(ordered, 1):
        group = by_key[key]
        depends_on = sorted(
            (ids[d] for d in edges[key] if key in cross_set or component_of.get(d) != component_of.get(key)),
            key=lambda cid: int(cid.rsplit("-", 1)[1]),
        )
        files = sorted(group.files, key=lambda f: (graph.rank(f.path), position.get(f.path, 0), f.path))
        clusters.append(
            FileCluster(
                id=ids[key],
                name=names[key],
                description=cluster_description(files, group.oversized, options.max_cluster_size),
                files=[
                    ClusterFile(
                        path=f.path,
                        change_type=f.change_type,
                        additions=f.additions,
                        deletions=f.deletions,
                        annotation=_annotation(f, pair_notes, options.large_change_lines),
                    )
                    for f in files
                ],
                priority=priority,
                depends_on=depends_on,
                status="pending",
                oversized=group.oversized,
            )
        )
    return tuple(clusters)


def build_clusters(
    files: Iterable,
    read_content: ContentReader | None = None,
    options: ClusterOptions | None = None,
) -> ClusterResult:
    """Turn a changed-file list into an ordered, annotated cluster plan."""
    options = options or ClusterOptions()
    changed = normalize_diff(files)
    graph = build_import_graph(changed, read_content)
    if not changed:
        return ClusterResult(clusters=(), cross_cutting_concerns=(), graph=graph)

    pairs = tuple(detect_test_pairs(changed))
    regular, cross, concerns = split_cross_cutting(changed, options)

    groups = merge_sibling_groups(group_by_directory(regular, options.group_depth), options.merge_threshold)
    if cross:
        groups.append(FileGroup(key=CROSS_CUTTING_KEY, files=_sorted_files(cross), cross_cutting=True))
    groups = subdivide_groups(groups, options.max_cluster_size)

    clusters = assign_priorities(groups, graph, pair_annotations(pairs), options)
    logger.debug("Built %d cluster(s) from %d file(s)", len(clusters), len(changed))
    return ClusterResult(clusters=clusters, cross_cutting_concerns=concerns, graph=graph, pairs=pairs)
