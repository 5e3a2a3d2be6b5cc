"""
Errand API Schemas
==================

Request and response bodies for the errand endpoints:

- POST /errands: submit a new errand
- GET /errands/{task_id}/status: fetch the current task record

A submission answers 202 with ErrandAccepted when an interactive call has
been placed, or 200 with ErrandCompleted when the errand only needed a
place search.
"""

from typing import List, Optional

from pydantic import Field, field_validator

from ..config import MAX_REQUEST_LENGTH
from .task import CamelModel, LocationHint, PlaceCandidate


class ErrandRequest(CamelModel):
    request: str = Field(..., min_length=1, max_length=MAX_REQUEST_LENGTH)
    location: Optional[LocationHint] = None
    user_phone_number: str = Field(..., min_length=1)

    @field_validator("request", "user_phone_number")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class ErrandAccepted(CamelModel):
    message: str
    task_id: str
    initial_status: str = "Call Initiated"
    place_name: str


class ErrandCompleted(CamelModel):
    message: str
    task_id: str
    status: str = "Completed"
    places: List[PlaceCandidate] = Field(default_factory=list)
