from dataclasses import dataclass, field
from typing import Any, List, Optional

from sentence_router.config import ModelsConfig
from sentence_router.models.endpoint import Endpoint, Parameter
from sentence_router.services.pipeline_errors import MissingPrerequisiteError


@dataclass
class RequestContext:
    """
    Per-request state threaded through the pipeline stages.

    Owned by exactly one pipeline execution. Fields fill in stage order:
    configuration_loading -> models_config, endpoints
    json_generation       -> json_output
    endpoint_matching     -> matched_endpoint, endpoint_id, endpoint_description
    field_matching        -> parameters
    """
    # Input
    sentence: str
    identity: Optional[str] = None
    client_id: Optional[str] = None

    # Configuration
    models_config: Optional[ModelsConfig] = None
    endpoints: Optional[List[Endpoint]] = None

    # Processing state
    json_output: Optional[Any] = None
    matched_endpoint: Optional[Endpoint] = None
    endpoint_id: Optional[str] = None
    endpoint_description: Optional[str] = None
    parameters: Optional[List[Parameter]] = None

    # Stages that ran to success, in order
    completed_stages: List[str] = field(default_factory=list)

    def require(self, name: str, stage: str) -> Any:
        """Value of a prerequisite field, or MissingPrerequisiteError."""
        value = getattr(self, name)
        if value is None:
            raise MissingPrerequisiteError(name, stage)
        return value
