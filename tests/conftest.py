"""Shared fixtures for the PlanDefinition to BPMN tests."""

import copy
import xml.etree.ElementTree as ET

import pytest

CARE_PATHWAY = {
    "resourceType": "PlanDefinition",
    "id": "example-plan",
    "title": "Patient Care Pathway",
    "description": "Adult outpatient pathway",
    "action": [
        {
            "id": "action-1",
            "title": "Initial Assessment",
            "description": "Perform initial patient assessment",
        },
        {
            "id": "action-2",
            "title": "Check Eligibility",
            "condition": [
                {
                    "kind": "applicability",
                    "expression": {"language": "text/fhirpath", "expression": "patient.age >= 18"},
                }
            ],
            "action": [{"id": "action-2-1", "title": "Adult Treatment Protocol"}],
        },
        {
            "id": "action-3",
            "title": "Follow-up Appointment",
            "description": "Schedule follow-up",
            "trigger": [{"type": "named-event", "name": "lab-result-received"}],
        },
    ],
}


@pytest.fixture
def care_pathway():
    """A PlanDefinition with a plain task, a conditioned task with a sub-action and a triggered task."""
    return copy.deepcopy(CARE_PATHWAY)


@pytest.fixture
def parse_bpmn():
    def _parse(xml_text):
        return ET.fromstring(xml_text.encode("utf-8"))

    return _parse
