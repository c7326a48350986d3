from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from bpmn_graph import BPMNGraph, NodeKind
from conversion_errors import GraphConsistencyError


# --- 1. Konfiguration und Konstanten ---
class LayoutConfig:
    START_X = 100
    CENTER_Y = 150
    HORIZONTAL_SPACING = 180

    TASK_WIDTH, TASK_HEIGHT = 120, 80
    GATEWAY_WIDTH, GATEWAY_HEIGHT = 50, 50
    EVENT_WIDTH, EVENT_HEIGHT = 36, 36


Point = Tuple[float, float]


@dataclass
class LayoutShape:
    element_id: str
    x: float
    y: float
    width: float
    height: float

    @property
    def di_id(self) -> str:
        return f"{self.element_id}_di"

    def right_middle(self) -> Point:
        return (self.x + self.width, self.y + self.height / 2)

    def left_middle(self) -> Point:
        return (self.x, self.y + self.height / 2)


@dataclass
class LayoutEdge:
    element_id: str
    waypoints: List[Point] = field(default_factory=list)

    @property
    def di_id(self) -> str:
        return f"{self.element_id}_di"


@dataclass
class DiagramLayout:
    shapes: Dict[str, LayoutShape] = field(default_factory=dict)
    edges: Dict[str, LayoutEdge] = field(default_factory=dict)


# --- 2. Hauptklasse: HorizontalLayout ---
class HorizontalLayout:
    """
    Places every node of a finished graph in one horizontal lane.

    Nodes are laid out left to right in creation order, each vertically
    centred on ``CENTER_Y``. After a node is placed the cursor moves right by
    the node width plus ``HORIZONTAL_SPACING``. Every flow becomes a straight
    edge from the middle of the source's right side to the middle of the
    target's left side.
    """

    def __init__(self, config: Optional[LayoutConfig] = None):
        self.config = config or LayoutConfig()

    def _get_node_dimensions(self, kind: NodeKind) -> Tuple[int, int]:
        if kind == NodeKind.TASK:
            return self.config.TASK_WIDTH, self.config.TASK_HEIGHT
        if kind == NodeKind.EXCLUSIVE_GATEWAY:
            return self.config.GATEWAY_WIDTH, self.config.GATEWAY_HEIGHT
        return self.config.EVENT_WIDTH, self.config.EVENT_HEIGHT

    def _calculate_node_positions(self, graph: BPMNGraph) -> Dict[str, LayoutShape]:
        shapes: Dict[str, LayoutShape] = {}
        x_cursor = self.config.START_X
        for node in graph.nodes:
            width, height = self._get_node_dimensions(node.kind)
            y_pos = self.config.CENTER_Y - height / 2
            shapes[node.id] = LayoutShape(node.id, x_cursor, y_pos, width, height)
            x_cursor += width + self.config.HORIZONTAL_SPACING
        return shapes

    def _calculate_all_edge_waypoints(self, graph: BPMNGraph, shapes: Dict[str, LayoutShape]) -> Dict[str, LayoutEdge]:
        edges: Dict[str, LayoutEdge] = {}
        for flow in graph.flows:
            source_shape = shapes.get(flow.source_ref)
            target_shape = shapes.get(flow.target_ref)
            if source_shape is None or target_shape is None:
                raise GraphConsistencyError(f"Flow '{flow.id}' connects a node without a shape")
            edges[flow.id] = LayoutEdge(flow.id, [source_shape.right_middle(), target_shape.left_middle()])
        return edges

    def apply(self, graph: BPMNGraph) -> DiagramLayout:
        shapes = self._calculate_node_positions(graph)
        edges = self._calculate_all_edge_waypoints(graph, shapes)
        return DiagramLayout(shapes=shapes, edges=edges)
