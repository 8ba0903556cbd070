"""
Endpoint Model - Catalog and response contracts for the sentence router.

This module defines the structured representation of the endpoint catalog
(what the caller can dispatch to) and of the analysis response (what the
pipeline decided).

Responsibilities:
- Define catalog entries (Endpoint, Parameter) with types
- Normalize the loose shapes catalogs arrive in (null flags, null lists)
- Define the response/error envelopes emitted by the service
- NO matching logic
- NO LLM logic
"""

import json
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _duplicates(keys: Iterable[str]) -> List[str]:
    seen = set()
    duplicates = []
    for key in keys:
        if key in seen and key not in duplicates:
            duplicates.append(key)
        seen.add(key)
    return duplicates


class Parameter(BaseModel):
    """
    A named input an endpoint expects.

    `value` is None in the catalog; field resolution returns copies of the
    parameter with `value` filled in (None = unresolved).
    """
    name: str = Field(..., min_length=1, description="Parameter name, unique within its endpoint")
    description: str = Field(default="", description="What the parameter means")
    required: bool = Field(default=False, description="Whether the endpoint needs this parameter")
    alternatives: List[str] = Field(
        default_factory=list,
        description="Alternative field names tried, in order, when the exact name is absent"
    )
    value: Optional[str] = Field(default=None, description="Resolved value, if any")

    @field_validator("required", mode="before")
    @classmethod
    def _null_required_is_false(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("alternatives", mode="before")
    @classmethod
    def _null_alternatives_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("description", mode="before")
    @classmethod
    def _null_description_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @property
    def is_resolved(self) -> bool:
        return self.value is not None

    model_config = ConfigDict(frozen=True)


class Endpoint(BaseModel):
    """
    One catalog-defined API action.

    Example:
        {
            "id": "schedule_meeting",
            "text": "schedule meeting",
            "description": "Schedule a meeting with participants",
            "parameters": [{"name": "time", "required": true}]
        }
    """
    id: str = Field(..., min_length=1, description="Unique endpoint key")
    text: str = Field(..., min_length=1, description="Trigger phrase used for matching")
    description: str = Field(default="", description="Human-readable description")
    parameters: List[Parameter] = Field(default_factory=list)

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Trigger phrase cannot be blank")
        return v

    @field_validator("description", mode="before")
    @classmethod
    def _null_description_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("parameters", mode="before")
    @classmethod
    def _null_parameters_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @model_validator(mode="after")
    def _parameter_names_unique(self) -> "Endpoint":
        duplicates = _duplicates(p.name for p in self.parameters)
        if duplicates:
            raise ValueError(f"Duplicate parameter names in endpoint {self.id}: {duplicates}")
        return self

    model_config = ConfigDict(frozen=True)


class EndpointCatalog(BaseModel):
    """Shape of a catalog file or a remote catalog batch."""
    endpoints: List[Endpoint] = Field(default_factory=list)

    @field_validator("endpoints", mode="before")
    @classmethod
    def _null_endpoints_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @model_validator(mode="after")
    def _endpoint_ids_unique(self) -> "EndpointCatalog":
        duplicates = _duplicates(e.id for e in self.endpoints)
        if duplicates:
            raise ValueError(f"Duplicate endpoint ids: {duplicates}")
        return self


# =============================================================================
# REQUEST / RESPONSE
# =============================================================================

class SentenceRequest(BaseModel):
    """Request body for the streaming analysis call."""
    sentence: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Free-text sentence to dispatch",
        json_schema_extra={"example": "schedule a meeting tomorrow at 2pm with John"}
    )


class ParameterValue(BaseModel):
    name: str
    description: str = ""
    value: Optional[str] = None


class AnalysisResponse(BaseModel):
    """The single success message emitted per call."""
    endpoint_id: str
    endpoint_description: str
    parameters: List[ParameterValue] = Field(default_factory=list)
    json_output: str = Field(..., description="Extracted JSON, compact text")

    @classmethod
    def from_parts(
        cls,
        endpoint_id: str,
        endpoint_description: str,
        parameters: List[Parameter],
        json_output: Any,
    ) -> "AnalysisResponse":
        return cls(
            endpoint_id=endpoint_id,
            endpoint_description=endpoint_description,
            parameters=[
                ParameterValue(name=p.name, description=p.description, value=p.value)
                for p in parameters
            ],
            json_output=json.dumps(json_output, separators=(",", ":"), ensure_ascii=False),
        )


class ErrorEnvelope(BaseModel):
    """The single terminal error emitted per failed call."""
    status: str = Field(..., description="Status category, e.g. NOT_FOUND")
    code: int = Field(..., description="Matching HTTP status code")
    message: str
    error_code: Optional[str] = None
    error_type: Optional[str] = None
