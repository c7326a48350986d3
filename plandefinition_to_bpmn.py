"""
Converts a FHIR PlanDefinition into a BPMN 2.0 process.

Pipeline: validate the document, walk the action tree into a logical graph,
lay the graph out, then serialize graph and layout to XML.
"""
import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from bpmn_generator import serialize_bpmn
from bpmn_graph import BPMNGraph, BPMNGraphBuilder
from bpmn_layout import DiagramLayout, HorizontalLayout
from conversion_errors import PlanDefinitionConversionError
from plandefinition_models import Action, PlanDefinition, Trigger, parse_plan_definition

logger = logging.getLogger(__name__)

DEFAULT_PROCESS_ID = "Process_1"
DEFAULT_PROCESS_NAME = "PlanDefinition Process"
NO_ACTIONS_WARNING = "PlanDefinition has no actions"


# --- 1. Dokumentation ---
def _language_suffix(language: Optional[str]) -> str:
    return f" ({language})" if language else ""


def compose_action_documentation(action: Action) -> str:
    """Builds the multi-line annotation attached to an action's task or event."""
    doc_parts: List[str] = []

    if action.description:
        doc_parts.append(f"Description: {action.description}")

    if action.text_equivalent:
        doc_parts.append(f"Text: {action.text_equivalent}")

    if action.type and action.type.coding:
        types = ", ".join(c.display or c.code for c in action.type.coding if c.display or c.code)
        if types:
            doc_parts.append(f"Type: {types}")

    if action.trigger:
        triggers = "; ".join(f"{t.type or 'event'}: {t.name or 'unnamed'}" for t in action.trigger)
        doc_parts.append(f"Triggers: {triggers}")

    for idx, cond in enumerate(action.condition, start=1):
        expression = cond.expression
        cond_text = (expression.expression if expression else None) or 'condition'
        cond_lang = _language_suffix(expression.language if expression else None)
        doc_parts.append(f"Condition {idx}: {cond_text}{cond_lang}")

    for idx, dv in enumerate(action.dynamic_value, start=1):
        expression = dv.expression
        expr = (expression.expression if expression else None) or 'expression'
        lang = _language_suffix(expression.language if expression else None)
        doc_parts.append(f"Dynamic Value {idx}: {dv.path or 'path'} = {expr}{lang}")

    for idx, doc in enumerate(action.documentation, start=1):
        if doc.display:
            doc_parts.append(f"Documentation {idx}: {doc.display}")

    return "\n".join(doc_parts)


# --- 2. Traversierung des Aktionsbaums ---
def trigger_event_name(triggers: Sequence[Trigger]) -> str:
    names = ", ".join(name for name in (t.name or t.type for t in triggers) if name)
    return f"Trigger: {names}"


class PlanDefinitionWalker:
    """
    Walks a PlanDefinition action tree and emits nodes and flows on a builder.

    Sibling actions are always chained one after another. Every action ends
    in exactly one task; a trigger adds an intermediate event in front of it
    and a condition adds an exclusive gateway whose "Yes" flow leads to it.
    Only the first condition of an action is modelled.
    """

    def __init__(self, builder: BPMNGraphBuilder):
        self.builder = builder
        self.warnings: List[str] = []

    def walk(self, actions: Sequence[Action], predecessor_id: str) -> str:
        """Chains ``actions`` after ``predecessor_id`` and returns the new frontier node."""
        last_element_id = predecessor_id
        for index, action in enumerate(actions, start=1):
            last_element_id = self._process_action(action, index, last_element_id)
        return last_element_id

    def _process_action(self, action: Action, index: int, predecessor_id: str) -> str:
        builder = self.builder
        action_name = action.title or action.description or f"Action {index}"
        documentation = compose_action_documentation(action)
        last_element_id = predecessor_id

        if action.trigger:
            event_id = builder.create_intermediate_event(trigger_event_name(action.trigger), documentation)
            builder.create_sequence_flow(last_element_id, event_id)
            last_element_id = event_id

        if action.condition:
            condition_text = action.condition[0].expression_text
            gateway_id = builder.create_exclusive_gateway(f"Decision: {condition_text or 'Check Condition'}")
            builder.create_sequence_flow(last_element_id, gateway_id)
            task_id = builder.create_task(action_name, documentation)
            builder.create_sequence_flow(gateway_id, task_id, condition_text, "Yes")
        else:
            task_id = builder.create_task(action_name, documentation)
            builder.create_sequence_flow(last_element_id, task_id)
        last_element_id = task_id

        if action.action:
            last_element_id = self.walk(action.action, last_element_id)

        return last_element_id

    def walk_plan_definition(self, plan_definition: PlanDefinition) -> str:
        """Wraps the top-level actions between a start and an end event; returns the end event id."""
        start_event_id = self.builder.create_start_event()
        last_element_id = start_event_id

        if plan_definition.action:
            last_element_id = self.walk(plan_definition.action, start_event_id)
        else:
            logger.warning(NO_ACTIONS_WARNING)
            self.warnings.append(NO_ACTIONS_WARNING)

        end_event_id = self.builder.create_end_event()
        self.builder.create_sequence_flow(last_element_id, end_event_id)
        return end_event_id


# --- 3. Konvertierung ---
@dataclass
class ConversionResult:
    xml: str
    graph: BPMNGraph
    layout: DiagramLayout
    process_id: str
    process_name: str
    warnings: List[str] = field(default_factory=list)


def convert(document: Any, layout: Optional[HorizontalLayout] = None) -> ConversionResult:
    try:
        plan_definition = parse_plan_definition(document)

        builder = BPMNGraphBuilder()
        walker = PlanDefinitionWalker(builder)
        walker.walk_plan_definition(plan_definition)

        graph = builder.graph
        graph.check_consistency()
        diagram_layout = (layout or HorizontalLayout()).apply(graph)

        process_id = plan_definition.id or DEFAULT_PROCESS_ID
        process_name = plan_definition.title or DEFAULT_PROCESS_NAME
        xml = serialize_bpmn(
            process_id,
            process_name,
            plan_definition.description,
            graph.nodes,
            graph.flows,
            diagram_layout.shapes,
            diagram_layout.edges,
        )
    except PlanDefinitionConversionError as e:
        logger.error(f"Error converting PlanDefinition to BPMN: {e}")
        raise

    logger.info(f"Converted PlanDefinition '{process_id}' into {len(graph.nodes)} nodes and {len(graph.flows)} flows.")
    return ConversionResult(
        xml=xml,
        graph=graph,
        layout=diagram_layout,
        process_id=process_id,
        process_name=process_name,
        warnings=walker.warnings,
    )


def convert_plan_definition(document: Any) -> str:
    return convert(document).xml


def generate_bpmn_xml_from_file(input_path: str) -> str:
    with open(input_path, 'r', encoding='utf-8') as f:
        plan_definition_data = json.load(f)
    return convert_plan_definition(plan_definition_data)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Convert a FHIR PlanDefinition (JSON) into BPMN 2.0 XML.")
    parser.add_argument("input", help="Path to the PlanDefinition JSON file")
    parser.add_argument("-o", "--output", help="Write the BPMN XML to this file instead of stdout")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    args = parser.parse_args(argv)

    if not logging.getLogger().handlers:
        logging.basicConfig(level=args.log_level.upper(), format='%(asctime)s - %(levelname)s - %(message)s')

    try:
        final_xml = generate_bpmn_xml_from_file(args.input)
    except json.JSONDecodeError as e:
        print(f"Invalid JSON in '{args.input}': {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Cannot read '{args.input}': {e}", file=sys.stderr)
        return 1
    except PlanDefinitionConversionError as e:
        print(f"Conversion failed: {e}", file=sys.stderr)
        return 1

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(final_xml)
        print(f"BPMN written to '{args.output}'.", file=sys.stderr)
    else:
        sys.stdout.write(final_xml)
    return 0


if __name__ == "__main__":
    sys.exit(main())
