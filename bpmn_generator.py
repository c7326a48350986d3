from typing import Dict, Iterable, Optional
from xml.etree.ElementTree import Element, SubElement
from xml.sax.saxutils import escape

from bpmn_graph import BPMNNode, NodeKind, SequenceFlow
from bpmn_layout import LayoutEdge, LayoutShape

# --- 1. Konfiguration und Konstanten ---
NAMESPACES = {
    'bpmn': "http://www.omg.org/spec/BPMN/20100524/MODEL",
    'bpmndi': "http://www.omg.org/spec/BPMN/20100524/DI",
    'dc': "http://www.omg.org/spec/DD/20100524/DC",
    'di': "http://www.omg.org/spec/DD/20100524/DI",
    'xsi': "http://www.w3.org/2001/XMLSchema-instance",
}
TARGET_NAMESPACE = "http://bpmn.io/schema/bpmn"
DEFINITIONS_ID = "Definitions_1"
DIAGRAM_ID = "BPMNDiagram_1"
PLANE_ID = "BPMNPlane_1"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

TEXT_ENTITIES = {'"': "&quot;", "'": "&apos;"}
ATTRIBUTE_ENTITIES = {**TEXT_ENTITIES, "\n": "&#10;", "\r": "&#13;", "\t": "&#9;"}


def escape_text(value: str) -> str:
    return escape(value, TEXT_ENTITIES)


def escape_attribute(value: str) -> str:
    return escape(value, ATTRIBUTE_ENTITIES)


# --- 2. Hauptklasse: BPMNXmlSerializer ---
class BPMNXmlSerializer:
    """
    Renders a finished node/flow collection and its layout as BPMN 2.0 XML.

    Output is deterministic: nodes, flows, shapes and edges are written in the
    order they are given. Every attribute and text value is escaped for all five
    XML reserved characters when the tree is written, with `'` as `&apos;`.
    """

    def __init__(self, process_id: str, process_name: str, process_description: Optional[str] = None):
        self.process_id = process_id
        self.process_name = process_name
        self.process_description = process_description

    def _create_definitions(self) -> Element:
        root_attrs = {
            **{f'xmlns:{prefix}': uri for prefix, uri in NAMESPACES.items()},
            'id': DEFINITIONS_ID,
            'targetNamespace': TARGET_NAMESPACE,
        }
        return Element('bpmn:definitions', root_attrs)

    def _create_node(self, process: Element, node: BPMNNode):
        elem = SubElement(process, f'bpmn:{node.kind.value}', {'id': node.id, 'name': node.name or ''})
        if node.documentation:
            SubElement(elem, 'bpmn:documentation').text = node.documentation
        if node.kind != NodeKind.START_EVENT:
            for flow_id in node.incoming:
                SubElement(elem, 'bpmn:incoming').text = flow_id
        if node.kind != NodeKind.END_EVENT:
            for flow_id in node.outgoing:
                SubElement(elem, 'bpmn:outgoing').text = flow_id

    def _create_flow(self, process: Element, flow: SequenceFlow):
        attrs = {'id': flow.id, 'sourceRef': flow.source_ref, 'targetRef': flow.target_ref}
        if flow.name:
            attrs['name'] = flow.name
        elem = SubElement(process, 'bpmn:sequenceFlow', attrs)
        if flow.condition_expression:
            condition = SubElement(elem, 'bpmn:conditionExpression', {'xsi:type': 'bpmn:tFormalExpression'})
            condition.text = flow.condition_expression

    def _create_process(self, definitions: Element, nodes: Iterable[BPMNNode], flows: Iterable[SequenceFlow]):
        process = SubElement(definitions, 'bpmn:process', {
            'id': self.process_id,
            'name': self.process_name,
            'isExecutable': 'true',
        })
        if self.process_description:
            SubElement(process, 'bpmn:documentation').text = self.process_description
        for node in nodes:
            self._create_node(process, node)
        for flow in flows:
            self._create_flow(process, flow)

    def _create_diagram(self, definitions: Element, shapes: Iterable[LayoutShape], edges: Iterable[LayoutEdge]):
        diagram = SubElement(definitions, 'bpmndi:BPMNDiagram', {'id': DIAGRAM_ID})
        plane = SubElement(diagram, 'bpmndi:BPMNPlane', {'id': PLANE_ID, 'bpmnElement': self.process_id})
        for shape in shapes:
            shape_elem = SubElement(plane, 'bpmndi:BPMNShape', {'id': shape.di_id, 'bpmnElement': shape.element_id})
            SubElement(shape_elem, 'dc:Bounds', {
                'x': str(int(shape.x)),
                'y': str(int(shape.y)),
                'width': str(int(shape.width)),
                'height': str(int(shape.height)),
            })
        for edge in edges:
            edge_elem = SubElement(plane, 'bpmndi:BPMNEdge', {'id': edge.di_id, 'bpmnElement': edge.element_id})
            for p in edge.waypoints:
                SubElement(edge_elem, 'di:waypoint', {'x': str(round(p[0])), 'y': str(round(p[1]))})

    def _write_element(self, elem: Element, depth: int, lines: list):
        indent = "  " * depth
        attrs = "".join(f' {name}="{escape_attribute(value)}"' for name, value in elem.attrib.items())
        children = list(elem)
        if children:
            lines.append(f"{indent}<{elem.tag}{attrs}>")
            for child in children:
                self._write_element(child, depth + 1, lines)
            lines.append(f"{indent}</{elem.tag}>")
        elif elem.text:
            lines.append(f"{indent}<{elem.tag}{attrs}>{escape_text(elem.text)}</{elem.tag}>")
        else:
            lines.append(f"{indent}<{elem.tag}{attrs} />")

    def generate_bpmn_xml(
        self,
        nodes: Iterable[BPMNNode],
        flows: Iterable[SequenceFlow],
        shapes: Dict[str, LayoutShape],
        edges: Dict[str, LayoutEdge],
    ) -> str:
        nodes, flows = list(nodes), list(flows)
        definitions = self._create_definitions()
        self._create_process(definitions, nodes, flows)
        self._create_diagram(
            definitions,
            [shapes[node.id] for node in nodes],
            [edges[flow.id] for flow in flows],
        )
        lines = [XML_DECLARATION]
        self._write_element(definitions, 0, lines)
        return "\n".join(lines) + "\n"


def serialize_bpmn(
    process_id: str,
    process_name: str,
    process_description: Optional[str],
    nodes: Iterable[BPMNNode],
    flows: Iterable[SequenceFlow],
    shapes: Dict[str, LayoutShape],
    edges: Dict[str, LayoutEdge],
) -> str:
    return BPMNXmlSerializer(process_id, process_name, process_description).generate_bpmn_xml(
        nodes, flows, shapes, edges
    )
