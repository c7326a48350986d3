"""
Logical BPMN graph and the builder that allocates its nodes and flows.

The builder only knows about ids, names and the incoming/outgoing linkage.
Geometry is assigned afterwards by ``bpmn_layout.HorizontalLayout``.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from conversion_errors import GraphConsistencyError


class NodeKind(str, Enum):
    # Values are the BPMN element tag names.
    START_EVENT = "startEvent"
    END_EVENT = "endEvent"
    INTERMEDIATE_EVENT = "intermediateCatchEvent"
    TASK = "task"
    EXCLUSIVE_GATEWAY = "exclusiveGateway"

    @property
    def id_prefix(self) -> str:
        return ID_PREFIXES[self]


ID_PREFIXES = {
    NodeKind.START_EVENT: "StartEvent",
    NodeKind.END_EVENT: "EndEvent",
    NodeKind.INTERMEDIATE_EVENT: "IntermediateEvent",
    NodeKind.TASK: "Task",
    NodeKind.EXCLUSIVE_GATEWAY: "Gateway",
}


@dataclass
class BPMNNode:
    id: str
    kind: NodeKind
    name: str = ""
    documentation: Optional[str] = None
    incoming: List[str] = field(default_factory=list)
    outgoing: List[str] = field(default_factory=list)


@dataclass
class SequenceFlow:
    id: str
    source_ref: str
    target_ref: str
    name: Optional[str] = None
    condition_expression: Optional[str] = None


class BPMNGraph:
    """Append-only node and flow collections, kept in creation order."""

    def __init__(self):
        self._nodes: Dict[str, BPMNNode] = {}
        self._flows: Dict[str, SequenceFlow] = {}

    @property
    def nodes(self) -> List[BPMNNode]:
        return list(self._nodes.values())

    @property
    def flows(self) -> List[SequenceFlow]:
        return list(self._flows.values())

    def get_node(self, node_id: str) -> BPMNNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise GraphConsistencyError(f"Unknown node id '{node_id}'") from None

    def get_flow(self, flow_id: str) -> SequenceFlow:
        try:
            return self._flows[flow_id]
        except KeyError:
            raise GraphConsistencyError(f"Unknown flow id '{flow_id}'") from None

    def nodes_of_kind(self, kind: NodeKind) -> List[BPMNNode]:
        return [node for node in self._nodes.values() if node.kind == kind]

    def add_node(self, node: BPMNNode):
        if node.id in self._nodes or node.id in self._flows:
            raise GraphConsistencyError(f"Duplicate element id '{node.id}'")
        self._nodes[node.id] = node

    def add_flow(self, flow: SequenceFlow):
        if flow.id in self._flows or flow.id in self._nodes:
            raise GraphConsistencyError(f"Duplicate element id '{flow.id}'")
        self._flows[flow.id] = flow

    def check_consistency(self):
        """
        Verifies that every flow id sits exactly once in its source's outgoing
        list and once in its target's incoming list, that no node references a
        flow it is not an endpoint of, and that start/end events have no
        incoming/outgoing flows respectively.
        """
        for flow in self._flows.values():
            source = self.get_node(flow.source_ref)
            target = self.get_node(flow.target_ref)
            if source.outgoing.count(flow.id) != 1:
                raise GraphConsistencyError(f"Flow '{flow.id}' is not listed once in outgoing of '{source.id}'")
            if target.incoming.count(flow.id) != 1:
                raise GraphConsistencyError(f"Flow '{flow.id}' is not listed once in incoming of '{target.id}'")

        for node in self._nodes.values():
            for flow_id in node.outgoing:
                if self.get_flow(flow_id).source_ref != node.id:
                    raise GraphConsistencyError(f"Node '{node.id}' lists foreign outgoing flow '{flow_id}'")
            for flow_id in node.incoming:
                if self.get_flow(flow_id).target_ref != node.id:
                    raise GraphConsistencyError(f"Node '{node.id}' lists foreign incoming flow '{flow_id}'")
            if node.kind == NodeKind.START_EVENT and node.incoming:
                raise GraphConsistencyError(f"Start event '{node.id}' has incoming flows")
            if node.kind == NodeKind.END_EVENT and node.outgoing:
                raise GraphConsistencyError(f"End event '{node.id}' has outgoing flows")


class BPMNGraphBuilder:
    """
    Allocates nodes and sequence flows with stable ids.

    Node ids are ``{Prefix}_{n}`` from one counter shared by all node kinds,
    flow ids are ``Flow_{n}`` from a separate counter. A fresh builder starts
    both counters at zero, so identical input always yields identical ids.
    """

    def __init__(self):
        self.graph = BPMNGraph()
        self._element_counter = 0
        self._flow_counter = 0

    def _generate_id(self, kind: NodeKind) -> str:
        self._element_counter += 1
        return f"{kind.id_prefix}_{self._element_counter}"

    def _generate_flow_id(self) -> str:
        self._flow_counter += 1
        return f"Flow_{self._flow_counter}"

    def _create_node(self, kind: NodeKind, name: str, documentation: Optional[str] = None) -> str:
        node = BPMNNode(id=self._generate_id(kind), kind=kind, name=name, documentation=documentation or None)
        self.graph.add_node(node)
        return node.id

    def create_start_event(self) -> str:
        return self._create_node(NodeKind.START_EVENT, "Start")

    def create_end_event(self) -> str:
        return self._create_node(NodeKind.END_EVENT, "End")

    def create_task(self, name: str, documentation: Optional[str] = None) -> str:
        return self._create_node(NodeKind.TASK, name, documentation)

    def create_exclusive_gateway(self, name: str) -> str:
        return self._create_node(NodeKind.EXCLUSIVE_GATEWAY, name)

    def create_intermediate_event(self, name: str, documentation: Optional[str] = None) -> str:
        return self._create_node(NodeKind.INTERMEDIATE_EVENT, name, documentation)

    def create_sequence_flow(
        self,
        source_id: str,
        target_id: str,
        condition_expression: Optional[str] = None,
        name: Optional[str] = None,
    ) -> str:
        source = self.graph.get_node(source_id)
        target = self.graph.get_node(target_id)
        if source.kind == NodeKind.END_EVENT:
            raise GraphConsistencyError(f"End event '{source_id}' cannot have outgoing flows")
        if target.kind == NodeKind.START_EVENT:
            raise GraphConsistencyError(f"Start event '{target_id}' cannot have incoming flows")

        flow = SequenceFlow(
            id=self._generate_flow_id(),
            source_ref=source_id,
            target_ref=target_id,
            name=name or None,
            condition_expression=condition_expression or None,
        )
        self.graph.add_flow(flow)
        source.outgoing.append(flow.id)
        target.incoming.append(flow.id)
        return flow.id
