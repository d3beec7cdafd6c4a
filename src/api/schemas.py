"""
Request and response models for the run record HTTP API.
"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, Optional


class RecordCreateRequest(BaseModel):
    """Body of POST /records. Accepts the legacy workflow_run_id/record names."""
    model_config = ConfigDict(populate_by_name=True)

    run_key: str = Field(validation_alias=AliasChoices("run_key", "workflow_run_id"))
    payload: Any = Field(validation_alias=AliasChoices("payload", "record"))

    @field_validator('run_key')
    @classmethod
    def run_key_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('run_key cannot be empty')
        return v


class RecordReplaceRequest(BaseModel):
    """Body of PUT /records/{run_key}."""
    model_config = ConfigDict(populate_by_name=True)

    payload: Any = Field(validation_alias=AliasChoices("payload", "record"))


class ApiResponse(BaseModel):
    """Envelope shared by every endpoint."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    message: Optional[str] = None


class HealthData(BaseModel):
    status: str
    version: str
    uptime: float
    records: int
    config: Dict[str, int]
