from __future__ import annotations

"""Pydantic request schemas for the public API.

These exist only for HTTP input validation. The ledger re-validates every
field inside the apply path, so a schema passing is never an authorization.
"""

from typing import Optional

from pydantic import BaseModel, Field


class StoreMessageRequest(BaseModel):
    content_ref: str = Field(..., description="Content-hash pointer into the external blob store")
    message_type: str = Field(default="", description="Free-form message type label")
    payment: int = Field(default=0, ge=0, description="Payment accompanying the write")
    sender: Optional[str] = Field(default=None, description="Submitter identity; defaults to the caller")

    model_config = {"extra": "allow"}


class GrantAccessRequest(BaseModel):
    grantee: str = Field(..., description="Identity to add to the message access set")

    model_config = {"extra": "allow"}


class SetQuotaRequest(BaseModel):
    quota: int = Field(..., description="New storage quota in bytes (must be > 0)")


class CallerRequest(BaseModel):
    caller: str = Field(..., description="Identity to authorize")


class AdminTransferRequest(BaseModel):
    new_admin: str = Field(..., description="Identity of the next administrator")
