"""Tool Ledger — Shared Schema Bases."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ValidatedModel(BaseModel):
    """Base model for inbound payloads."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_default=True,
        extra="forbid",  # Reject unknown fields
    )


class ReadModel(BaseModel):
    """Base model for snapshots built from ORM rows."""

    model_config = ConfigDict(from_attributes=True)
