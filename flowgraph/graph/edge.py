"""
Edge Protocol - How nodes connect in a graph.

A Connection is a plain directed edge: no weight, no label, no condition.
Whether data actually crosses it is decided at run time by the
type-compatibility gate.

GraphSpec owns the nodes and connections and provides:
1. Lookups (node by id, outgoing/incoming connections in insertion order)
2. The editor-side mutation interface, which keeps referential integrity
3. Structural validation

Outgoing order matters: splitter and conditional fan-out follow it, so
connections are always kept in the order they were added.
"""

from pydantic import BaseModel, Field, PrivateAttr, model_validator

from flowgraph.graph.errors import GraphBusyError, GraphError
from flowgraph.graph.node import AnyNode, CollectorNodeSpec, ConditionalNodeSpec


class Connection(BaseModel):
    """
    A directed edge from one node's output to another node's input.

    Example:
        Connection(source="draft", target="review")
    """

    source: str = Field(description="Source node ID")
    target: str = Field(description="Target node ID")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _no_self_loop(self) -> "Connection":
        if self.source == self.target:
            raise ValueError(f"Self-loop on node '{self.source}' is not allowed")
        return self

    @property
    def id(self) -> str:
        return f"{self.source}->{self.target}"


class GraphSpec(BaseModel):
    """
    Complete specification of a flow graph.

    Example:
        GraphSpec(
            id="blog-pipeline",
            nodes=[
                NodeSpec(id="outline", instruction="Write an outline"),
                SplitterNodeSpec(id="sections"),
                NodeSpec(id="writer", instruction="Expand this section"),
            ],
            connections=[
                Connection(source="outline", target="sections"),
                Connection(source="sections", target="writer"),
            ],
        )

    The mutation methods must not be called while an execution is in
    flight; they raise GraphBusyError if they are.
    """

    id: str = "graph"
    description: str = ""

    nodes: list[AnyNode] = Field(default_factory=list, description="All nodes")
    connections: list[Connection] = Field(default_factory=list, description="All edges")

    model_config = {"extra": "allow"}

    _active_executions: int = PrivateAttr(default=0)

    # === LOOKUPS ===

    def get_node(self, node_id: str) -> AnyNode | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def require_node(self, node_id: str) -> AnyNode:
        """Get a node by ID, raising GraphError if it does not exist."""
        node = self.get_node(node_id)
        if node is None:
            raise GraphError(f"Node '{node_id}' not found in graph '{self.id}'", node_id=node_id)
        return node

    def get_outgoing(self, node_id: str) -> list[Connection]:
        """Get all connections leaving a node, in insertion order."""
        return [c for c in self.connections if c.source == node_id]

    def get_incoming(self, node_id: str) -> list[Connection]:
        """Get all connections entering a node, in insertion order."""
        return [c for c in self.connections if c.target == node_id]

    def conditional_nodes(self) -> list[ConditionalNodeSpec]:
        return [n for n in self.nodes if isinstance(n, ConditionalNodeSpec)]

    def collector_nodes(self) -> list[CollectorNodeSpec]:
        return [n for n in self.nodes if isinstance(n, CollectorNodeSpec)]

    # === EXECUTION GUARD ===

    @property
    def is_executing(self) -> bool:
        return self._active_executions > 0

    def begin_execution(self) -> None:
        self._active_executions += 1

    def end_execution(self) -> None:
        self._active_executions = max(0, self._active_executions - 1)

    def _check_mutable(self) -> None:
        if self.is_executing:
            raise GraphBusyError(
                f"Graph '{self.id}' cannot be modified while an execution is running"
            )

    # === MUTATION ===

    def add_node(self, node: AnyNode) -> AnyNode:
        """Add a node. Its id must be unique within the graph."""
        self._check_mutable()
        if self.get_node(node.id) is not None:
            raise GraphError(f"Duplicate node ID: '{node.id}'", node_id=node.id)
        self.nodes.append(node)
        return node

    def remove_node(self, node_id: str) -> list[Connection]:
        """
        Remove a node and every connection that references it.

        Returns:
            The connections that were removed along with the node
        """
        self._check_mutable()
        node = self.require_node(node_id)
        removed = [c for c in self.connections if node_id in (c.source, c.target)]
        self.connections = [c for c in self.connections if node_id not in (c.source, c.target)]
        self.nodes = [n for n in self.nodes if n is not node]
        return removed

    def add_connection(self, source: str, target: str) -> Connection:
        """Connect two existing nodes. Duplicates and self-loops are rejected."""
        self._check_mutable()
        if source == target:
            raise GraphError(f"Cannot connect node '{source}' to itself", node_id=source)
        self.require_node(source)
        self.require_node(target)
        for existing in self.connections:
            if existing.source == source and existing.target == target:
                raise GraphError(f"Connection '{existing.id}' already exists", node_id=source)
        connection = Connection(source=source, target=target)
        self.connections.append(connection)
        return connection

    def remove_connection(self, source: str, target: str) -> Connection:
        """Remove the connection between two nodes."""
        self._check_mutable()
        for connection in self.connections:
            if connection.source == source and connection.target == target:
                self.connections.remove(connection)
                return connection
        raise GraphError(f"Connection '{source}->{target}' not found", node_id=source)

    # === VALIDATION ===

    def validate(self) -> list[str]:
        """Validate the graph structure."""
        errors = []

        seen_ids: set[str] = set()
        for node in self.nodes:
            if node.id in seen_ids:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen_ids.add(node.id)

        seen_connections: set[str] = set()
        for connection in self.connections:
            if connection.source not in seen_ids:
                errors.append(
                    f"Connection '{connection.id}' references missing source '{connection.source}'"
                )
            if connection.target not in seen_ids:
                errors.append(
                    f"Connection '{connection.id}' references missing target '{connection.target}'"
                )
            if connection.id in seen_connections:
                errors.append(f"Duplicate connection: '{connection.id}'")
            seen_connections.add(connection.id)

        return errors
