"""
Reveal - Decode-and-skip over an account's sealed choices.

Every settlement path (tally, claim, stats) opens choices the same way:
a choice that fails to decode is treated as absent, never as fatal. The
aggregate cross-check in the tally is what catches a skipped choice that
should have counted.
"""

from typing import Iterable, Iterator, List, Tuple

from sealmarket.core.codec.choice_codec import ChoiceCodec, DecodedChoice
from sealmarket.core.errors import DecodeError
from sealmarket.core.state.market import AccountState, Choice, Side
from sealmarket.utils.logger import get_logger

logger = get_logger("reveal")


def reveal_choices(
    account: AccountState,
    codec: ChoiceCodec,
    key: bytes,
    market_id: str,
) -> Iterator[Tuple[Choice, DecodedChoice]]:
    """
    Yield every choice of an account that decodes for this market.

    Choices with a non-positive ticket count are ignored. Decode failures
    are logged and skipped.

    Args:
        account: Account whose choices to open
        codec: Choice codec
        key: Market key
        market_id: Market being settled

    Yields:
        (choice, decoded) pairs
    """
    for index, choice in enumerate(account.choices):
        if choice.ticket_count <= 0:
            continue
        try:
            decoded = codec.decode_payload(choice.encrypted_payload, key, market_id)
        except DecodeError as e:
            logger.warning(
                f"Skipping choice #{index} of {account.participant_id} on {market_id}: {e.message}"
            )
            continue
        yield choice, decoded


def side_totals(
    accounts: Iterable[AccountState],
    codec: ChoiceCodec,
    key: bytes,
    market_id: str,
    ticket_price_units: int,
) -> Tuple[int, int, int, int]:
    """
    Sum decoded tickets and stake per side over many accounts.

    Returns:
        (tickets_a, tickets_b, amount_a, amount_b)
    """
    tickets = {Side.A: 0, Side.B: 0}
    for account in accounts:
        for choice, decoded in reveal_choices(account, codec, key, market_id):
            tickets[decoded.side] += choice.ticket_count
    return (
        tickets[Side.A],
        tickets[Side.B],
        tickets[Side.A] * ticket_price_units,
        tickets[Side.B] * ticket_price_units,
    )


def tickets_by_side(
    account: AccountState,
    codec: ChoiceCodec,
    key: bytes,
    market_id: str,
) -> List[int]:
    """
    Decoded ticket counts of one account, indexed by side.

    Returns:
        [unused, tickets_on_a, tickets_on_b] so that result[side] works
        for Side.A and Side.B.
    """
    counts = [0, 0, 0]
    for choice, decoded in reveal_choices(account, codec, key, market_id):
        counts[decoded.side] += choice.ticket_count
    return counts
