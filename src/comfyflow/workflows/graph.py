"""Contenedor del grafo de nodos que se envía a ComfyUI."""

from typing import Iterator

from comfyflow.workflows.nodes import Node, NodeRef, Sampler, Save


class GraphError(ValueError):
    """Raised when a node is wired to a missing node or slot."""


class WorkflowGraph:
    """
    Ordered mapping of node id -> typed node.

    Ids are assigned sequentially on insertion and every ``NodeRef`` input must
    point to a node already in the graph, so the graph cannot contain cycles.
    Once frozen (at submission time) no more nodes can be added.
    """

    def __init__(self):
        self._nodes: dict[str, Node] = {}
        self._next_id = 1
        self._frozen = False

    def add(self, node: Node) -> str:
        if self._frozen:
            raise GraphError("Workflow graph is frozen")
        for name, ref in node.references():
            self._check_ref(node, name, ref)
        node_id = str(self._next_id)
        self._next_id += 1
        self._nodes[node_id] = node
        return node_id

    def _check_ref(self, node: Node, name: str, ref: NodeRef):
        source = self._nodes.get(ref.node_id)
        if source is None:
            raise GraphError(
                f"{node.class_type}.{name} references unknown node {ref.node_id}"
            )
        if not 0 <= ref.slot < len(source.outputs):
            raise GraphError(
                f"{node.class_type}.{name} references slot {ref.slot} of "
                f"{source.class_type} ({ref.node_id}), which has {len(source.outputs)} outputs"
            )

    def freeze(self):
        self.validate()
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __getitem__(self, node_id: str) -> Node:
        return self._nodes[node_id]

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)

    def items(self):
        return self._nodes.items()

    def nodes_of(self, node_type: type) -> list[tuple[str, Node]]:
        return [(i, n) for i, n in self._nodes.items() if isinstance(n, node_type)]

    @property
    def terminal_id(self) -> str:
        saves = self.nodes_of(Save)
        if len(saves) != 1:
            raise GraphError(f"Expected exactly one save node, found {len(saves)}")
        return saves[0][0]

    @property
    def seed(self) -> int | None:
        samplers = self.nodes_of(Sampler)
        return samplers[0][1].seed if samplers else None

    def validate(self):
        for node in self._nodes.values():
            for name, ref in node.references():
                self._check_ref(node, name, ref)
        self.terminal_id

    def to_prompt(self) -> dict:
        """Serialize to the backend's JSON prompt format."""
        return {
            node_id: {"inputs": node.inputs(), "class_type": node.class_type}
            for node_id, node in self._nodes.items()
        }
