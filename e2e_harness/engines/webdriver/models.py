"""Pydantic models for WebDriver protocol responses."""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field


class NewSession(BaseModel):
    """Value of a successful new session response."""

    session_id: str = Field(alias="sessionId")
    capabilities: Mapping[str, Any] = Field(default_factory=dict)


class NewSessionResponse(BaseModel):
    """Response from the new session endpoint."""

    value: NewSession


class ErrorValue(BaseModel):
    """Error payload of a failed command."""

    error: str
    message: str = ""


class ErrorResponse(BaseModel):
    """Response of a failed command."""

    value: ErrorValue
