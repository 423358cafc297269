from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SyncTransactionRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1, max_length=64)
    date: datetime
    total: Decimal = Field(max_digits=12, decimal_places=2)
    synced: bool = False
    payload: dict[str, Any] | None = None

    @field_validator("id")
    @classmethod
    def _strip_id(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("id must not be blank")
        return stripped

    @field_validator("total")
    @classmethod
    def _finite_total(cls, value: Decimal) -> Decimal:
        if not value.is_finite():
            raise ValueError("total must be a finite amount")
        return value


class SyncTransactionResponse(BaseModel):
    success: bool = True
    accepted: bool = True
    duplicate: bool = False
    id: str
    syncedAt: datetime
    message: str


class TransactionExistenceResponse(BaseModel):
    exists: bool
    transactionId: str
