"""
Settlement Engine - Request handlers over the metadata store and the ledger.

Every handler follows the same shape:

    fetch    ledger records + market metadata
    decide   pure function (plan_finalize, quote_claim, plan_claim, build_rows)
    propose  transition submitted to the ledger, which re-validates it

The engine holds no settlement state of its own and takes no locks. The
ledger's is_finalized and has_claimed flags are the only mutual exclusion:

- losing the finalize race is a successful no-op (alreadyFinalized=True)
- losing the claim race is a terminal AlreadyClaimed

Handlers take plain dicts (camelCase or snake_case keys) and return dicts
with camelCase keys. Errors are raised as SettlementError subclasses.
"""

import time
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from sealmarket.core.codec.choice_codec import ChoiceCodec
from sealmarket.core.config import EngineConfig
from sealmarket.core.errors import (
    AlreadyClaimed,
    AlreadyFinalized,
    InvalidRequest,
    MarketExists,
    NotFound,
    PreconditionError,
    SettlementError,
    TallyMismatch,
)
from sealmarket.core.schemas import (
    ClaimCheckResponse,
    ClaimExecuteResponse,
    ClaimProposalBody,
    ClaimReceiptBody,
    ClaimRequest,
    EncodeRequest,
    EncodeResponse,
    FinalizeResponse,
    FinalizeTotals,
    RegisterRequest,
    RegisterResponse,
    StatsRequest,
    StatsResponse,
    StatsRowBody,
    to_wire,
)
from sealmarket.core.settlement.payout import plan_claim, quote_claim
from sealmarket.core.settlement.stats import build_rows, paginate
from sealmarket.core.settlement.tally import plan_finalize
from sealmarket.core.state.ledger import Ledger, Rejection
from sealmarket.core.state.market import MarketState
from sealmarket.core.storage.meta_store import MetaStore
from sealmarket.core.tokenomics import FeeSchedule
from sealmarket.utils.logger import get_logger
from sealmarket.utils.validation import (
    validate_amount,
    validate_encryption_key_hex,
    validate_identifier,
    validate_ticket_count,
)

logger = get_logger("engine")

M = TypeVar("M", bound=BaseModel)


# Ledger rejection -> error raised to the caller
_REJECTION_ERRORS = {
    Rejection.MARKET_EXISTS: MarketExists,
    Rejection.MARKET_NOT_FOUND: NotFound,
    Rejection.ACCOUNT_NOT_FOUND: NotFound,
    Rejection.ALREADY_FINALIZED: AlreadyFinalized,
    Rejection.ALREADY_CLAIMED: AlreadyClaimed,
    Rejection.INCONSISTENT_TOTALS: TallyMismatch,
    Rejection.INSUFFICIENT_FUNDS: SettlementError,
}


def rejection_error(reason: str) -> SettlementError:
    """Map a ledger rejection reason to the error surfaced to callers."""
    error_cls = _REJECTION_ERRORS.get(reason, PreconditionError)
    return error_cls(str(reason))


def require(check: Tuple[bool, str]) -> None:
    """Raise InvalidRequest for a failed (is_valid, error) check."""
    valid, err = check
    if not valid:
        raise InvalidRequest(err)


def parse_request(model: Type[M], payload: Optional[Dict[str, Any]]) -> M:
    """
    Validate a request body.

    Raises:
        InvalidRequest: body fails validation (400)
    """
    try:
        return model.model_validate(payload or {})
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "body"
        raise InvalidRequest(f"Invalid {field}: {first.get('msg', 'invalid value')}") from e


class SettlementEngine:
    """
    Stateless adapter between request handlers and the ledger.

    Attributes:
        config: Engine configuration
        meta_store: Market metadata lookup
        ledger: Settlement ledger (reads + proposals)
        codec: Choice codec
        fees: Fee schedule shared with the ledger's claim transfer
    """

    def __init__(
        self,
        config: EngineConfig,
        meta_store: MetaStore,
        ledger: Ledger,
        codec: Optional[ChoiceCodec] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.config = config
        self.meta_store = meta_store
        self.ledger = ledger
        self.codec = codec or ChoiceCodec()
        self.fees = FeeSchedule(config)
        self.clock = clock or (lambda: int(time.time()))

    # =========================================================================
    # Lookups
    # =========================================================================

    def _load(self, market_ref: str):
        meta = self.meta_store.resolve(market_ref)
        market = self.ledger.get_market(meta.market_id)
        if market is None:
            raise NotFound("Market not found")
        return meta, market

    # =========================================================================
    # Market Setup
    # =========================================================================

    def register_market(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Register a market's metadata record. Records are never replaced.

        Raises:
            InvalidRequest: malformed identifier or key (400)
            MarketExists: market already registered with other values (409)
        """
        request = parse_request(RegisterRequest, payload)
        meta = self.meta_store.register(
            request.market_id, request.ledger_key_id, request.encryption_key
        )
        return to_wire(RegisterResponse(
            market_id=meta.market_id,
            ledger_key_id=meta.ledger_key_id,
            created_at=meta.created_at,
        ))

    def open_market(
        self,
        market_id: str,
        ledger_key_id: str,
        side_a_label: str,
        side_b_label: str,
        ticket_price_units: int,
        duration_seconds: int,
        title: str = "",
        description: str = "",
        category: str = "",
        encryption_key: Optional[str] = None,
    ) -> MarketState:
        """
        Create a market on the ledger and register its metadata.

        Raises:
            InvalidRequest: metadata rejected
            MarketExists: market or its metadata already registered (409)
            PreconditionError / SettlementError: ledger rejected the market
        """
        require(validate_identifier(market_id, "market_id"))
        require(validate_identifier(ledger_key_id, "ledger_key_id"))
        require(validate_amount(ticket_price_units, "ticket_price_units"))
        if encryption_key is not None:
            require(validate_encryption_key_hex(encryption_key))
        self.meta_store.ensure_registrable(market_id, ledger_key_id, encryption_key)

        market, reason = self.ledger.create_market(
            market_id,
            side_a_label,
            side_b_label,
            ticket_price_units,
            duration_seconds,
            creation_time=self.clock(),
            title=title,
            description=description,
            category=category,
        )
        if market is None:
            raise rejection_error(reason)

        self.meta_store.register(market_id, ledger_key_id, encryption_key)
        return market

    # =========================================================================
    # Purchase Path
    # =========================================================================

    def encode_choice(self, market_ref: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Seal a side choice for a market.

        The market may be addressed by market_id or ledger_key_id; the
        canonical market_id is always the one sealed into the payload.

        Raises:
            InvalidRequest: bad side, or secret too long to seal (400)
            NotFound: no metadata for market_ref (404)
            InvalidKeyError: stored key malformed (500)
        """
        request = parse_request(EncodeRequest, payload)
        meta = self.meta_store.resolve(market_ref)
        timestamp = self.clock()

        encoded = self.codec.encode(
            request.side, request.binding_secret, meta.market_id, meta.key_bytes, timestamp
        )
        if len(encoded.encode("utf-8")) > self.config.max_encoded_choice_len:
            raise InvalidRequest(
                f"binding_secret too long: sealed choice exceeds "
                f"{self.config.max_encoded_choice_len} bytes"
            )
        logger.debug(f"Encoded choice for {meta.market_id} ({len(encoded)} chars)")
        return to_wire(EncodeResponse(
            encoded_choice=encoded,
            ledger_key_id=meta.ledger_key_id,
            encode_timestamp=timestamp,
        ))

    def buy_tickets(
        self,
        market_ref: str,
        participant_id: str,
        side: Any,
        binding_secret: str,
        count: int,
    ) -> Dict[str, Any]:
        """
        Encode a choice and append it to the ledger in one step.

        Returns:
            The encode response plus the ticket count appended
        """
        require(validate_identifier(participant_id, "participant_id"))
        require(validate_ticket_count(count))

        encoded = self.encode_choice(market_ref, {"side": side, "bindingSecret": binding_secret})
        meta = self.meta_store.resolve(market_ref)

        ok, reason = self.ledger.buy_tickets(
            meta.market_id, participant_id, encoded["encodedChoice"], count, now=self.clock()
        )
        if not ok:
            raise rejection_error(reason)
        return {**encoded, "ticketCount": count}

    # =========================================================================
    # Finalize
    # =========================================================================

    def finalize(self, market_ref: str) -> Dict[str, Any]:
        """
        Tally a closed market and finalize it on the ledger.

        Raises:
            AlreadyFinalized: market finalized before this call (409)
            PreconditionError: not ended, no tickets, empty pool (400)
            TallyMismatch: decoded totals disagree with the ledger (500)
        """
        meta, market = self._load(market_ref)
        accounts = self.ledger.get_accounts(meta.market_id)
        now = self.clock()

        proposal = plan_finalize(market, accounts, meta, self.codec, now)
        ok, reason = self.ledger.submit_finalize(proposal, now=now)

        if not ok:
            if reason != Rejection.ALREADY_FINALIZED:
                raise rejection_error(reason)
            # Another finalizer won between our read and our proposal
            logger.info(f"Market {meta.market_id} finalized concurrently; treating as no-op")
            settled = self.ledger.get_market(meta.market_id)
            return self._finalize_response(settled, already_finalized=True)

        return self._finalize_response(self.ledger.get_market(meta.market_id))

    def _finalize_response(self, market: MarketState, already_finalized: bool = False) -> Dict[str, Any]:
        return to_wire(FinalizeResponse(
            finalized=True,
            already_finalized=already_finalized,
            winning_side=int(market.winning_side),
            is_tie=market.is_tie,
            totals=FinalizeTotals(
                tickets_a=market.total_tickets_side_a,
                tickets_b=market.total_tickets_side_b,
                amount_a=market.total_amount_side_a,
                amount_b=market.total_amount_side_b,
            ),
        ))

    # =========================================================================
    # Claims
    # =========================================================================

    def check_claim(self, market_ref: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Report what a participant can claim. Never mutates the ledger.

        Raises:
            PreconditionError: market not finalized (400)
            NotFound: unknown market (404)
            TallyMismatch: winning side with zero tickets (500)
        """
        request = parse_request(ClaimRequest, payload)
        meta, market = self._load(market_ref)
        account = self.ledger.get_account(meta.market_id, request.participant_id)

        quote = quote_claim(market, account, meta, self.codec, self.fees)
        return to_wire(ClaimCheckResponse(**quote.to_dict()))

    def execute_claim(self, market_ref: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Propose and submit a participant's payout.

        Raises:
            PreconditionError: not finalized, no winning tickets, zero claim (400)
            NotFound: no account (404)
            AlreadyClaimed: claimed before or concurrently (409)
        """
        request = parse_request(ClaimRequest, payload)
        meta, market = self._load(market_ref)
        account = self.ledger.get_account(meta.market_id, request.participant_id)

        proposal = plan_claim(market, account, meta, self.codec, self.fees)
        quote = quote_claim(market, account, meta, self.codec, self.fees)

        receipt, reason = self.ledger.submit_claim(proposal)
        if receipt is None:
            if reason == Rejection.ALREADY_CLAIMED:
                logger.warning(
                    f"Claim by {request.participant_id} on {meta.market_id} lost to a concurrent claim"
                )
                raise AlreadyClaimed("User already claimed")
            raise rejection_error(reason)

        figures = quote.to_dict()
        figures.update(has_claimed=True, can_claim=False)
        return to_wire(ClaimExecuteResponse(
            **figures,
            proposal=ClaimProposalBody(**proposal.to_dict()),
            receipt=ClaimReceiptBody(
                gross_amount=receipt.gross_amount,
                fee_units=receipt.fee_units,
                paid_amount=receipt.paid_amount,
                claimed_at=receipt.claimed_at,
            ),
        ))

    # =========================================================================
    # Stats
    # =========================================================================

    def market_stats(self, market_ref: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Ranked, paginated PnL leaderboard of a finalized market.

        Raises:
            PreconditionError: market not finalized (400)
            NotFound: unknown market (404)
        """
        request = parse_request(StatsRequest, payload)
        meta, market = self._load(market_ref)
        accounts = self.ledger.get_accounts(meta.market_id)

        rows = build_rows(market, accounts, meta, self.codec, self.fees)
        page = paginate(rows, request.page, request.page_size, self.config)

        return to_wire(StatsResponse(
            rows=[StatsRowBody(**row.to_dict()) for row in page.rows],
            page=page.page,
            page_size=page.page_size,
            total_pages=page.total_pages,
            total_rows=page.total_rows,
        ))


__all__ = [
    "SettlementEngine",
    "parse_request",
    "rejection_error",
    "require",
]
