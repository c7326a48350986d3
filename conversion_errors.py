from typing import Any, List, Optional


class PlanDefinitionConversionError(Exception):
    """Base class for every failure raised while turning a PlanDefinition into BPMN."""


class InvalidPlanDefinitionError(PlanDefinitionConversionError):
    """
    The input document is not a usable PlanDefinition: not a JSON object,
    wrong or missing resourceType, or fields of the wrong shape.
    """

    def __init__(self, message: str, details: Optional[List[Any]] = None):
        super().__init__(message)
        self.details = details or []


class GraphConsistencyError(PlanDefinitionConversionError):
    """Raised when the builder is asked to break the node/flow linkage rules."""


class FhirClientError(PlanDefinitionConversionError):
    """Raised when a PlanDefinition cannot be fetched from a FHIR server."""
