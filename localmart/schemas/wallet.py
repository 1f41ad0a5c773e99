import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from localmart.models.wallet import WalletTransactionStatus, WalletTransactionType
from localmart.schemas.common import SuccessResponse


class WalletCreditRequest(BaseModel):
    amount: int
    payment_method: str = Field(min_length=1, max_length=32)
    payment_reference: str | None = Field(default=None, max_length=128)


class WalletDebitRequest(BaseModel):
    amount: int
    reason: str = Field(min_length=1)
    reference: str | None = Field(default=None, max_length=128)


class WalletBalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    balance: int
    version: int
    updated_at: datetime


class WalletTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    sequence: int
    type: WalletTransactionType
    amount: int
    balance_before: int
    balance_after: int
    status: WalletTransactionStatus
    description: str | None
    payment_method: str | None
    payment_reference: str | None
    created_at: datetime


class WalletEnvelope(SuccessResponse):
    wallet: WalletBalanceResponse
    transactions: list[WalletTransactionResponse]


class WalletMutationEnvelope(SuccessResponse):
    new_balance: int
    transaction: WalletTransactionResponse


class WalletTransactionsEnvelope(SuccessResponse):
    transactions: list[WalletTransactionResponse]
