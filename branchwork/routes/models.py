"""Pydantic request models for API endpoints."""

from typing import Any

from pydantic import BaseModel


class CreateSession(BaseModel):
    adventure: str  # library slug


class ChoiceBody(BaseModel):
    input: Any = None  # raw submission for input_* choices


class UseItemBody(BaseModel):
    quantity: int = 1
