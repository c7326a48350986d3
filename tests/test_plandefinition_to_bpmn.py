import json
import logging

import pytest

from bpmn_graph import BPMNGraphBuilder, NodeKind
from conversion_errors import InvalidPlanDefinitionError
from plandefinition_models import Action, parse_plan_definition
from plandefinition_to_bpmn import (
    NO_ACTIONS_WARNING,
    PlanDefinitionWalker,
    compose_action_documentation,
    convert,
    convert_plan_definition,
    generate_bpmn_xml_from_file,
    main,
)

NS = {"bpmn": "http://www.omg.org/spec/BPMN/20100524/MODEL"}


def _plan(*actions, **fields):
    return {"resourceType": "PlanDefinition", "action": list(actions), **fields}


def _flow_between(graph, source_id, target_id):
    return next(f for f in graph.flows if f.source_ref == source_id and f.target_ref == target_id)


# ===========================
# Documentation
# ===========================


def test_documentation_lists_fields_in_fixed_order():
    action = Action.model_validate({
        "title": "Give dose",
        "description": "Administer the first dose",
        "textEquivalent": "Give 5mg",
        "type": {"coding": [{"code": "create"}, {"display": "Medication", "code": "med"}, {}]},
        "trigger": [{"type": "named-event", "name": "admission"}, {}],
        "condition": [
            {"expression": {"language": "text/cql", "expression": "Weight > 50"}},
            {"kind": "start"},
        ],
        "dynamicValue": [{"path": "dosage", "expression": {"expression": "5 mg", "language": "text/fhirpath"}}, {}],
        "documentation": [{"display": "Protocol A"}, {"type": "citation"}, {"display": "Protocol C"}],
    })
    assert compose_action_documentation(action).split("\n") == [
        "Description: Administer the first dose",
        "Text: Give 5mg",
        "Type: create, Medication",
        "Triggers: named-event: admission; event: unnamed",
        "Condition 1: Weight > 50 (text/cql)",
        "Condition 2: condition",
        "Dynamic Value 1: dosage = 5 mg (text/fhirpath)",
        "Dynamic Value 2: path = expression",
        "Documentation 1: Protocol A",
        "Documentation 3: Protocol C",
    ]


def test_documentation_is_empty_without_descriptive_fields():
    assert compose_action_documentation(Action(title="Only a title")) == ""


def test_type_without_usable_codings_is_omitted():
    action = Action.model_validate({"type": {"coding": [{"system": "http://example.org"}]}})
    assert compose_action_documentation(action) == ""


# ===========================
# Walker
# ===========================


def test_walk_chains_siblings_and_returns_frontier():
    builder = BPMNGraphBuilder()
    start = builder.create_start_event()
    plan = parse_plan_definition(_plan({"title": "A"}, {"title": "B"}))

    frontier = PlanDefinitionWalker(builder).walk(plan.action, start)

    tasks = builder.graph.nodes_of_kind(NodeKind.TASK)
    assert [t.name for t in tasks] == ["A", "B"]
    assert frontier == tasks[1].id
    _flow_between(builder.graph, start, tasks[0].id)
    _flow_between(builder.graph, tasks[0].id, tasks[1].id)


def test_walk_of_empty_list_returns_predecessor():
    builder = BPMNGraphBuilder()
    start = builder.create_start_event()
    assert PlanDefinitionWalker(builder).walk([], start) == start


def test_action_name_falls_back_to_description_then_index():
    result = convert(_plan({"title": "First"}, {"description": "Second by description"}, {}))
    names = [t.name for t in result.graph.nodes_of_kind(NodeKind.TASK)]
    assert names == ["First", "Second by description", "Action 3"]


def test_nested_action_index_is_local_to_its_siblings():
    result = convert(_plan({"title": "Parent", "action": [{"title": "Child"}, {}]}))
    names = [t.name for t in result.graph.nodes_of_kind(NodeKind.TASK)]
    assert names == ["Parent", "Child", "Action 2"]


def test_condition_creates_gateway_with_yes_flow():
    result = convert(_plan({
        "title": "Adult care",
        "condition": [
            {"kind": "applicability", "expression": {"expression": "patient.age >= 18"}},
            {"kind": "applicability", "expression": {"expression": "ignored"}},
        ],
    }))
    graph = result.graph
    gateways = graph.nodes_of_kind(NodeKind.EXCLUSIVE_GATEWAY)
    assert len(gateways) == 1
    gateway = gateways[0]
    assert gateway.name == "Decision: patient.age >= 18"

    task = graph.nodes_of_kind(NodeKind.TASK)[0]
    yes_flow = _flow_between(graph, gateway.id, task.id)
    assert yes_flow.name == "Yes"
    assert yes_flow.condition_expression == "patient.age >= 18"
    assert gateway.outgoing == [yes_flow.id]
    assert task.incoming == [yes_flow.id]


def test_condition_without_expression_uses_placeholder_name():
    result = convert(_plan({"title": "Check", "condition": [{"kind": "applicability"}]}))
    graph = result.graph
    gateway = graph.nodes_of_kind(NodeKind.EXCLUSIVE_GATEWAY)[0]
    assert gateway.name == "Decision: Check Condition"
    yes_flow = graph.get_flow(gateway.outgoing[0])
    assert yes_flow.name == "Yes"
    assert yes_flow.condition_expression is None


def test_trigger_creates_intermediate_event_before_task():
    result = convert(_plan({
        "title": "Review labs",
        "trigger": [{"type": "named-event", "name": "lab-result"}, {"type": "periodic"}, {"name": ""}],
    }))
    graph = result.graph
    event = graph.nodes_of_kind(NodeKind.INTERMEDIATE_EVENT)[0]
    task = graph.nodes_of_kind(NodeKind.TASK)[0]
    assert event.name == "Trigger: lab-result, periodic"
    assert event.documentation == "Triggers: named-event: lab-result; periodic: unnamed; event: unnamed"
    assert task.documentation == event.documentation
    _flow_between(graph, event.id, task.id)


def test_trigger_and_condition_are_applied_in_sequence():
    result = convert(_plan({
        "title": "Escalate",
        "trigger": [{"name": "deterioration"}],
        "condition": [{"expression": {"expression": "score > 5"}}],
    }))
    kinds = [n.kind for n in result.graph.nodes]
    assert kinds == [
        NodeKind.START_EVENT,
        NodeKind.INTERMEDIATE_EVENT,
        NodeKind.EXCLUSIVE_GATEWAY,
        NodeKind.TASK,
        NodeKind.END_EVENT,
    ]
    event, gateway = result.graph.nodes[1], result.graph.nodes[2]
    assert event.name == "Trigger: deterioration"
    _flow_between(result.graph, event.id, gateway.id)


def test_sub_actions_of_conditioned_action_follow_the_task(care_pathway):
    graph = convert(care_pathway).graph
    eligibility = next(t for t in graph.nodes_of_kind(NodeKind.TASK) if t.name == "Check Eligibility")
    adult = next(t for t in graph.nodes_of_kind(NodeKind.TASK) if t.name == "Adult Treatment Protocol")
    _flow_between(graph, eligibility.id, adult.id)
    gateway = graph.nodes_of_kind(NodeKind.EXCLUSIVE_GATEWAY)[0]
    assert len(gateway.outgoing) == 1


def test_care_pathway_ids_and_sequence(care_pathway):
    graph = convert(care_pathway).graph
    assert [n.id for n in graph.nodes] == [
        "StartEvent_1", "Task_2", "Gateway_3", "Task_4", "Task_5",
        "IntermediateEvent_6", "Task_7", "EndEvent_8",
    ]
    assert [(f.id, f.source_ref, f.target_ref) for f in graph.flows] == [
        ("Flow_1", "StartEvent_1", "Task_2"),
        ("Flow_2", "Task_2", "Gateway_3"),
        ("Flow_3", "Gateway_3", "Task_4"),
        ("Flow_4", "Task_4", "Task_5"),
        ("Flow_5", "Task_5", "IntermediateEvent_6"),
        ("Flow_6", "IntermediateEvent_6", "Task_7"),
        ("Flow_7", "Task_7", "EndEvent_8"),
    ]


def test_every_leaf_action_contributes_one_task():
    result = convert(_plan(
        {"title": "A", "action": [{"title": "A1"}, {"title": "A2", "action": [{"title": "A2a"}]}]},
        {"title": "B", "condition": [{"expression": {"expression": "x"}}]},
    ))
    assert len(result.graph.nodes_of_kind(NodeKind.TASK)) == 5


# ===========================
# Whole conversion
# ===========================


def test_endpoint_and_linkage_invariants(care_pathway):
    graph = convert(care_pathway).graph
    start = graph.nodes_of_kind(NodeKind.START_EVENT)
    end = graph.nodes_of_kind(NodeKind.END_EVENT)
    assert len(start) == 1 and start[0].incoming == []
    assert len(end) == 1 and end[0].outgoing == []

    for flow in graph.flows:
        assert sum(n.outgoing.count(flow.id) for n in graph.nodes) == 1
        assert sum(n.incoming.count(flow.id) for n in graph.nodes) == 1


@pytest.mark.parametrize("document", [_plan(), {"resourceType": "PlanDefinition"}])
def test_empty_actions_yield_start_end_and_warning(document, caplog):
    with caplog.at_level(logging.WARNING, logger="plandefinition_to_bpmn"):
        result = convert(document)

    graph = result.graph
    assert [n.kind for n in graph.nodes] == [NodeKind.START_EVENT, NodeKind.END_EVENT]
    assert len(graph.flows) == 1
    assert graph.flows[0].source_ref == "StartEvent_1"
    assert graph.flows[0].target_ref == "EndEvent_2"
    assert result.warnings == [NO_ACTIONS_WARNING]
    assert NO_ACTIONS_WARNING in caplog.text


def test_conversion_with_actions_has_no_warnings(care_pathway):
    assert convert(care_pathway).warnings == []


def test_conversion_is_idempotent(care_pathway):
    assert convert_plan_definition(care_pathway) == convert_plan_definition(care_pathway)


def test_process_defaults_and_overrides(care_pathway, parse_bpmn):
    process = parse_bpmn(convert_plan_definition(_plan())).find("bpmn:process", NS)
    assert process.get("id") == "Process_1"
    assert process.get("name") == "PlanDefinition Process"

    process = parse_bpmn(convert_plan_definition(care_pathway)).find("bpmn:process", NS)
    assert process.get("id") == "example-plan"
    assert process.get("name") == "Patient Care Pathway"
    assert process.find("bpmn:documentation", NS).text == "Adult outpatient pathway"


def test_branching_in_xml(parse_bpmn):
    xml = convert_plan_definition(_plan({
        "title": "Adult care",
        "condition": [{"expression": {"expression": "patient.age >= 18"}}],
    }))
    process = parse_bpmn(xml).find("bpmn:process", NS)
    gateways = process.findall("bpmn:exclusiveGateway", NS)
    assert len(gateways) == 1
    yes_flow = process.find(f"bpmn:sequenceFlow[@sourceRef='{gateways[0].get('id')}']", NS)
    assert yes_flow.get("name") == "Yes"
    assert yes_flow.find("bpmn:conditionExpression", NS).text == "patient.age >= 18"
    task = process.find(f"bpmn:task[@id='{yes_flow.get('targetRef')}']", NS)
    assert task.get("name") == "Adult care"


def test_title_is_escaped_in_output():
    xml = convert_plan_definition(_plan({"title": "A & B <test>"}))
    assert 'name="A &amp; B &lt;test&gt;"' in xml


def test_invalid_root_produces_no_output(caplog):
    with caplog.at_level(logging.ERROR, logger="plandefinition_to_bpmn"):
        with pytest.raises(InvalidPlanDefinitionError):
            convert({"resourceType": "Patient"})
    assert "resourceType must be" in caplog.text


def test_non_object_input_is_rejected():
    with pytest.raises(InvalidPlanDefinitionError):
        convert_plan_definition(None)


# ===========================
# File and CLI entry points
# ===========================


def test_generate_bpmn_xml_from_file(tmp_path, care_pathway):
    input_path = tmp_path / "plan.json"
    input_path.write_text(json.dumps(care_pathway), encoding="utf-8")
    assert generate_bpmn_xml_from_file(str(input_path)) == convert_plan_definition(care_pathway)


def test_cli_writes_output_file(tmp_path, care_pathway):
    input_path = tmp_path / "plan.json"
    output_path = tmp_path / "plan.bpmn"
    input_path.write_text(json.dumps(care_pathway), encoding="utf-8")

    assert main([str(input_path), "-o", str(output_path)]) == 0
    assert output_path.read_text(encoding="utf-8") == convert_plan_definition(care_pathway)


def test_cli_prints_to_stdout(tmp_path, capsys):
    input_path = tmp_path / "plan.json"
    input_path.write_text('{"resourceType": "PlanDefinition", "action": [{"title": "Only"}]}', encoding="utf-8")

    assert main([str(input_path)]) == 0
    assert 'name="Only"' in capsys.readouterr().out


@pytest.mark.parametrize("content", ['{"resourceType": "Patient"}', "{broken"])
def test_cli_reports_failures(tmp_path, capsys, content):
    input_path = tmp_path / "plan.json"
    input_path.write_text(content, encoding="utf-8")

    assert main([str(input_path)]) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err


def test_cli_reports_missing_file(tmp_path, capsys):
    assert main([str(tmp_path / "missing.json")]) == 1
    assert "Cannot read" in capsys.readouterr().err
