"""
Wire schemas for engine requests and responses.

Field names are snake_case in Python and camelCase on the wire. Requests
accept either spelling; responses are dumped with `to_wire`.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from sealmarket.core.state.market import Side
from sealmarket.utils.validation import (
    MAX_IDENTIFIER_LENGTH,
    parse_side,
    validate_binding_secret,
)


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def to_wire(model: BaseModel) -> Dict[str, Any]:
    """Dump a model with its camelCase wire names."""
    return model.model_dump(by_alias=True, mode="json")


# =============================================================================
# Requests
# =============================================================================


class RegisterRequest(WireModel):
    market_id: str = Field(alias="marketId", min_length=1, max_length=MAX_IDENTIFIER_LENGTH)
    ledger_key_id: str = Field(alias="ledgerKeyId", min_length=1, max_length=MAX_IDENTIFIER_LENGTH)
    encryption_key: Optional[str] = Field(default=None, alias="encryptionKey")


class EncodeRequest(WireModel):
    side: Side
    binding_secret: str = Field(
        alias="bindingSecret",
        validation_alias=AliasChoices("bindingSecret", "secret", "binding_secret"),
    )

    @field_validator("side", mode="before")
    @classmethod
    def _parse_side(cls, value: Union[str, int]) -> Side:
        side = parse_side(value)
        if side is None:
            raise ValueError("side must be one of 'A', 'a', 'B', 'b', 1, 2")
        return side

    @field_validator("binding_secret")
    @classmethod
    def _check_secret(cls, value: str) -> str:
        valid, err = validate_binding_secret(value)
        if not valid:
            raise ValueError(err)
        return value


class ClaimRequest(WireModel):
    participant_id: str = Field(
        alias="participantId",
        validation_alias=AliasChoices("participantId", "user", "participant_id"),
        min_length=1,
        max_length=MAX_IDENTIFIER_LENGTH,
    )


class StatsRequest(WireModel):
    page: int = 1
    page_size: Optional[int] = Field(default=None, alias="pageSize")


# =============================================================================
# Responses
# =============================================================================


class RegisterResponse(WireModel):
    ok: bool = True
    market_id: str = Field(alias="marketId")
    ledger_key_id: str = Field(alias="ledgerKeyId")
    created_at: int = Field(alias="createdAt")


class EncodeResponse(WireModel):
    encoded_choice: str = Field(alias="encodedChoice")
    ledger_key_id: str = Field(alias="ledgerKeyId")
    encode_timestamp: int = Field(alias="encodeTimestamp")


class FinalizeTotals(WireModel):
    tickets_a: int = Field(alias="ticketsA")
    tickets_b: int = Field(alias="ticketsB")
    amount_a: int = Field(alias="amountA")
    amount_b: int = Field(alias="amountB")


class FinalizeResponse(WireModel):
    finalized: bool
    already_finalized: bool = Field(default=False, alias="alreadyFinalized")
    winning_side: int = Field(alias="winningSide")
    is_tie: bool = Field(alias="isTie")
    totals: FinalizeTotals


class ClaimCheckResponse(WireModel):
    has_tickets: bool = Field(alias="hasTickets")
    has_claimed: bool = Field(alias="hasClaimed")
    can_claim: bool = Field(alias="canClaim")
    is_tie: bool = Field(alias="isTie")
    winning_side: int = Field(alias="winningSide")
    claim_amount: int = Field(alias="claimAmount")
    user_winning_tickets: int = Field(alias="userWinningTickets")
    winning_total_tickets: int = Field(alias="winningTotalTickets")
    total_pool: int = Field(alias="totalPool")
    fee_units: int = Field(default=0, alias="feeUnits")
    net_amount: int = Field(default=0, alias="netAmount")


class ClaimProposalBody(WireModel):
    market_id: str = Field(alias="marketId")
    participant_id: str = Field(alias="participantId")
    claim_amount: int = Field(alias="claimAmount")
    winning_side: int = Field(alias="winningSide")
    expected_has_claimed: bool = Field(alias="expectedHasClaimed")


class ClaimReceiptBody(WireModel):
    gross_amount: int = Field(alias="grossAmount")
    fee_units: int = Field(alias="feeUnits")
    paid_amount: int = Field(alias="paidAmount")
    claimed_at: int = Field(alias="claimedAt")


class ClaimExecuteResponse(ClaimCheckResponse):
    proposal: ClaimProposalBody
    receipt: Optional[ClaimReceiptBody] = None


class StatsRowBody(WireModel):
    participant_id: str = Field(alias="participantId")
    tickets_a: int = Field(alias="ticketsA")
    tickets_b: int = Field(alias="ticketsB")
    stake_a: int = Field(alias="stakeA")
    stake_b: int = Field(alias="stakeB")
    total_stake_units: int = Field(alias="totalStakeUnits")
    pnl_units: int = Field(alias="pnlUnits")
    outcome: str
    has_claimed: bool = Field(alias="hasClaimed")


class StatsResponse(WireModel):
    rows: List[StatsRowBody]
    page: int
    page_size: int = Field(alias="pageSize")
    total_pages: int = Field(alias="totalPages")
    total_rows: int = Field(alias="totalRows")


__all__ = [
    "to_wire",
    "RegisterRequest",
    "EncodeRequest",
    "ClaimRequest",
    "StatsRequest",
    "RegisterResponse",
    "EncodeResponse",
    "FinalizeTotals",
    "FinalizeResponse",
    "ClaimCheckResponse",
    "ClaimProposalBody",
    "ClaimReceiptBody",
    "ClaimExecuteResponse",
    "StatsRowBody",
    "StatsResponse",
]
