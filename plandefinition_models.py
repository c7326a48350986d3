"""
Typed view of the FHIR PlanDefinition subset the converter understands.

Only the fields that influence the BPMN output are modelled. Everything is
optional apart from ``resourceType``; unknown FHIR elements are ignored so a
full resource exported from a FHIR server can be passed in unchanged.
"""
import json
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from conversion_errors import InvalidPlanDefinitionError

PLAN_DEFINITION_RESOURCE_TYPE = "PlanDefinition"
INVALID_ROOT_MESSAGE = 'Invalid PlanDefinition: resourceType must be "PlanDefinition"'


class FhirModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Expression(FhirModel):
    language: Optional[str] = None
    expression: Optional[str] = None


class ActionDocumentation(FhirModel):
    type: Optional[str] = None
    display: Optional[str] = None


class Trigger(FhirModel):
    type: Optional[str] = None
    name: Optional[str] = None


class Condition(FhirModel):
    kind: Optional[str] = None
    expression: Optional[Expression] = None

    @property
    def expression_text(self) -> Optional[str]:
        return self.expression.expression if self.expression else None


class RelatedAction(FhirModel):
    action_id: Optional[str] = Field(default=None, alias="actionId")
    relationship: Optional[str] = None


class Coding(FhirModel):
    system: Optional[str] = None
    code: Optional[str] = None
    display: Optional[str] = None


class CodeableConcept(FhirModel):
    coding: List[Coding] = Field(default_factory=list)


class DynamicValue(FhirModel):
    path: Optional[str] = None
    expression: Optional[Expression] = None


class Action(FhirModel):
    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    text_equivalent: Optional[str] = Field(default=None, alias="textEquivalent")
    documentation: List[ActionDocumentation] = Field(default_factory=list)
    trigger: List[Trigger] = Field(default_factory=list)
    condition: List[Condition] = Field(default_factory=list)
    related_action: List[RelatedAction] = Field(default_factory=list, alias="relatedAction")
    type: Optional[CodeableConcept] = None
    dynamic_value: List[DynamicValue] = Field(default_factory=list, alias="dynamicValue")
    action: List["Action"] = Field(default_factory=list)


Action.model_rebuild()


class PlanDefinition(FhirModel):
    resource_type: str = Field(alias="resourceType")
    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    action: List[Action] = Field(default_factory=list)


def parse_plan_definition(document: Any) -> PlanDefinition:
    """
    Validates a decoded JSON value once, before any graph is built.

    Raises InvalidPlanDefinitionError for a non-object document, a wrong or
    missing resourceType, or any field with the wrong shape.
    """
    if not isinstance(document, dict):
        raise InvalidPlanDefinitionError(
            f"Invalid PlanDefinition: expected a JSON object, got {type(document).__name__}"
        )
    if document.get("resourceType") != PLAN_DEFINITION_RESOURCE_TYPE:
        raise InvalidPlanDefinitionError(INVALID_ROOT_MESSAGE)

    try:
        return PlanDefinition.model_validate(document)
    except ValidationError as e:
        raise InvalidPlanDefinitionError(
            f"Invalid PlanDefinition: {e.error_count()} field(s) failed validation",
            details=e.errors(include_url=False, include_context=False, include_input=False),
        ) from e


def load_plan_definition_json(text: str) -> PlanDefinition:
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidPlanDefinitionError(f"Invalid JSON: {e}") from e
    return parse_plan_definition(document)
