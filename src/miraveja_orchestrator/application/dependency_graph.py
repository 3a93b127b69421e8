"""Application layer - Dependency graph, topological order and cycle detection."""

from typing import Dict, Iterable, List, Optional, Tuple

from miraveja_orchestrator.domain import CircularDependencyError

_UNVISITED = 0
_VISITING = 1
_VISITED = 2


class DependencyGraph:
    """Directed graph of depends-on edges between service names.

    Nodes keep their registration order, which is used to break ties so that
    the computed startup order is reproducible.

    Attributes:
        _edges: Mapping of service name to the ordered names it depends on.
    """

    def __init__(self) -> None:
        """Initialize an empty graph."""
        self._edges: Dict[str, List[str]] = {}

    def register(self, name: str, dependencies: Iterable[str]) -> None:
        """Add a node or replace its outgoing edges.

        Args:
            name: The service name.
            dependencies: Names the service depends on.
        """
        self._edges[name] = list(dict.fromkeys(dependencies))

    def add_edge(self, name: str, dependency: str) -> None:
        """Add a single depends-on edge from an existing node."""
        edges = self._edges.setdefault(name, [])
        if dependency not in edges:
            edges.append(dependency)

    def remove(self, name: str) -> None:
        """Remove a node and every edge referencing it.

        Args:
            name: The service name to remove.
        """
        self._edges.pop(name, None)
        for edges in self._edges.values():
            if name in edges:
                edges.remove(name)

    def clear(self) -> None:
        self._edges.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._edges

    def dependencies_of(self, name: str) -> Tuple[str, ...]:
        return tuple(self._edges.get(name, ()))

    def dependents_of(self, name: str) -> Tuple[str, ...]:
        """Return the nodes with an edge to ``name``, in registration order."""
        return tuple(node for node, edges in self._edges.items() if name in edges)

    def find_cycle(self) -> Optional[List[str]]:
        """Search the graph for a cycle.

        Returns:
            The cycle as a list of names starting and ending with the same name,
            or None when the graph is acyclic.
        """
        colors: Dict[str, int] = {}
        path: List[str] = []

        def visit(node: str) -> Optional[List[str]]:
            colors[node] = _VISITING
            path.append(node)
            for dependency in self._edges.get(node, ()):
                color = colors.get(dependency, _UNVISITED)
                if color == _VISITING:
                    # Revisiting a node still on the stack closes a cycle
                    return path[path.index(dependency) :] + [dependency]
                if color == _UNVISITED:
                    cycle = visit(dependency)
                    if cycle:
                        return cycle
            path.pop()
            colors[node] = _VISITED
            return None

        for node in self._edges:
            if colors.get(node, _UNVISITED) == _UNVISITED:
                cycle = visit(node)
                if cycle:
                    return cycle
        return None

    def detect_cycle(self) -> None:
        """Raise if the graph contains a cycle.

        Raises:
            CircularDependencyError: Naming the services on the first cycle found.

        Example:
            >>> graph = DependencyGraph()
            >>> graph.register("a", ["b"])
            >>> graph.register("b", ["a"])
            >>> graph.detect_cycle()  # Raises CircularDependencyError(a -> b -> a)
        """
        cycle = self.find_cycle()
        if cycle:
            raise CircularDependencyError(cycle)

    def order(self) -> List[str]:
        """Compute a startup order where every dependency precedes its dependents.

        Three-colour depth-first search appending each node after all of its
        dependencies (post-order). Back-edges of a cycle are skipped, so a cycle
        never prevents ordering the rest of the graph. Names that are only
        referenced as dependencies, and never registered, are left out.

        Returns:
            Registered service names in startup order.
        """
        colors: Dict[str, int] = {}
        result: List[str] = []

        def visit(node: str) -> None:
            colors[node] = _VISITING
            for dependency in self._edges.get(node, ()):
                if dependency in self._edges and colors.get(dependency, _UNVISITED) == _UNVISITED:
                    visit(dependency)
            colors[node] = _VISITED
            result.append(node)

        for node in self._edges:
            if colors.get(node, _UNVISITED) == _UNVISITED:
                visit(node)
        return result

    def as_dict(self) -> Dict[str, List[str]]:
        """Return a copy of the adjacency mapping."""
        return {node: list(edges) for node, edges in self._edges.items()}
