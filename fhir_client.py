import requests
import time
import logging
from typing import Any, Dict, List, Optional

from conversion_errors import FhirClientError

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"


class FhirClient:
    """
    Read-only access to PlanDefinition resources on a FHIR REST server.
    """

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 30,
                 max_retries: int = 3, retry_delay_seconds: float = 2):
        if not base_url:
            raise ValueError("Missing FHIR server URL. Ensure FHIR_BASE_URL is set.")

        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.session = requests.Session()
        self.session.headers.update({'Accept': FHIR_JSON})
        if token:
            self.session.headers.update({'Authorization': f"Bearer {token}"})

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        for attempt in range(self.max_retries):
            response = None
            try:
                logger.info(f"Attempt {attempt + 1} of {self.max_retries}: GET {url}")
                response = self.session.get(url, params=params, timeout=self.timeout)
                response.raise_for_status()
                return response.json()
            except requests.exceptions.HTTPError as e:
                if response is not None and response.status_code < 500:
                    logger.error(f"FHIR server rejected the request: {e}")
                    raise FhirClientError(f"FHIR request to {url} failed: {e}") from e
                logger.warning(f"Attempt {attempt + 1} failed: {e}")
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                logger.warning(f"Attempt {attempt + 1} failed: {e}")
            except ValueError as e:
                logger.error(f"Error parsing the JSON response from server: {e}")
                raise FhirClientError(f"FHIR server returned a non-JSON body for {url}") from e

            if attempt < self.max_retries - 1:
                logger.info(f"Retrying in {self.retry_delay_seconds} seconds...")
                time.sleep(self.retry_delay_seconds)

        logger.error(f"All {self.max_retries} attempts failed for {url}.")
        raise FhirClientError(f"FHIR request to {url} failed after {self.max_retries} attempts")

    def get_plan_definition(self, plan_definition_id: str) -> Dict[str, Any]:
        if not plan_definition_id:
            raise ValueError("PlanDefinition ID cannot be empty.")
        url = f"{self.base_url}/PlanDefinition/{plan_definition_id}"
        resource = self._get_json(url)
        logger.info(f"PlanDefinition '{plan_definition_id}' fetched from {self.base_url}.")
        return resource

    def search_plan_definitions(self, **params: Any) -> List[Dict[str, Any]]:
        bundle = self._get_json(f"{self.base_url}/PlanDefinition", params=params or None)
        if bundle.get('resourceType') != 'Bundle':
            raise FhirClientError("Search did not return a Bundle.")
        return [
            entry['resource'] for entry in bundle.get('entry', [])
            if entry.get('resource', {}).get('resourceType') == 'PlanDefinition'
        ]
