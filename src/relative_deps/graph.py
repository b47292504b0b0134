"""Dependency graph between the declared local dependencies."""

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Set, Tuple

from .errors import ManifestError
from .manifest import read_manifest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyDeclaration:
    """A ``relativeDependencies`` entry of the consuming project."""

    name: str
    path: str


@dataclass(frozen=True)
class TaskNode:
    """Unit of scheduling work for one declared local dependency.

    ``dependencies`` only names other declared dependencies; registry
    packages are not represented.
    """

    name: str
    lib_dir: Path
    dependencies: Tuple[str, ...] = ()


def declarations_from_mapping(relative_dependencies: Mapping[str, str]) -> List[DependencyDeclaration]:
    return [DependencyDeclaration(name, path) for name, path in relative_dependencies.items()]


def build_dependency_graph(
    declarations: Iterable[DependencyDeclaration],
    target_dir: Path,
) -> List[TaskNode]:
    """Build one TaskNode per declaration, in declared order.

    An edge ``A -> B`` exists iff B appears in A's dependencies,
    devDependencies or peerDependencies and B is itself declared. A library
    whose manifest cannot be read is assumed independent.
    """
    declarations = list(declarations)
    declared = {d.name for d in declarations}
    nodes: List[TaskNode] = []

    for decl in declarations:
        lib_dir = (Path(target_dir) / decl.path).resolve()
        edges: List[str] = []
        try:
            manifest = read_manifest(lib_dir)
        except ManifestError as e:
            logger.debug("No internal dependencies for %s: %s", decl.name, e)
        else:
            edges = [
                dep for dep in manifest.all_dependency_names()
                if dep in declared and dep != decl.name
            ]
        nodes.append(TaskNode(name=decl.name, lib_dir=lib_dir, dependencies=tuple(edges)))

    return nodes


def topological_order(nodes: Iterable[TaskNode]) -> List[TaskNode]:
    """Order nodes so every node follows the nodes it depends on.

    Depth-first over the nodes in input order. An edge that leads back to a
    node still on the DFS stack closes a cycle: it is dropped with a warning,
    so the returned nodes always form an acyclic graph.
    """
    nodes = list(nodes)
    by_name: Dict[str, TaskNode] = {node.name: node for node in nodes}
    visited: Set[str] = set()
    on_stack: Set[str] = set()
    kept_edges: Dict[str, List[str]] = {}
    result: List[str] = []

    def visit(name: str) -> None:
        on_stack.add(name)
        kept: List[str] = []
        for dep in by_name[name].dependencies:
            if dep not in by_name:
                continue
            if dep in on_stack:
                logger.warning(
                    "Circular dependency detected involving %s; ignoring edge %s -> %s",
                    dep, name, dep,
                )
                continue
            kept.append(dep)
            if dep not in visited:
                visit(dep)
        kept_edges[name] = kept
        on_stack.discard(name)
        visited.add(name)
        result.append(name)

    for node in nodes:
        if node.name not in visited:
            visit(node.name)

    return [replace(by_name[name], dependencies=tuple(kept_edges[name])) for name in result]
