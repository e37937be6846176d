from __future__ import annotations

import logging
import math
import re
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from tradefolio.models import Transaction, TransactionSide, utc_today

logger = logging.getLogger(__name__)

_SYMBOL_PATTERN = re.compile(r"^[A-Z0-9][A-Z0-9.\-^=]{0,15}$")


class InvalidTransaction(Exception):
    """Domain error raised for transactions rejected at the ledger boundary."""


class TransactionNotFound(Exception):
    """Raised when a transaction id does not exist."""


class TransactionOwnershipError(Exception):
    """Raised when a user tries to delete another user's transaction."""


def _parse_side(value: str | TransactionSide) -> TransactionSide:
    if isinstance(value, TransactionSide):
        return value
    try:
        return TransactionSide(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidTransaction('Transaction side must be "buy" or "sell"') from exc


def _positive_number(value: float, field_name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidTransaction(f"{field_name} must be a number") from exc
    if not math.isfinite(number) or number <= 0:
        raise InvalidTransaction(f"{field_name} must be greater than zero")
    return number


def add_transaction(
    db: Session,
    user_id: int,
    symbol: str,
    side: str | TransactionSide,
    shares: float,
    price_per_share: float,
    transaction_date: date | None = None,
) -> Transaction:
    """Validate and append one buy/sell record to a user's ledger."""
    clean_symbol = str(symbol or "").strip().upper()
    if not _SYMBOL_PATTERN.match(clean_symbol):
        raise InvalidTransaction(f"Invalid symbol: {symbol!r}")

    tx_side = _parse_side(side)
    tx_shares = _positive_number(shares, "Shares")
    tx_price = _positive_number(price_per_share, "Price per share")

    today = utc_today()
    tx_date = transaction_date or today
    if tx_date > today:
        raise InvalidTransaction("Transaction date cannot be in the future")

    transaction = Transaction(
        user_id=user_id,
        symbol=clean_symbol,
        side=tx_side,
        shares=tx_shares,
        price_per_share=tx_price,
        transaction_date=tx_date,
    )
    db.add(transaction)
    db.flush()
    logger.info(
        "User %s recorded %s %s %s @ %s on %s",
        user_id,
        tx_side.value,
        tx_shares,
        clean_symbol,
        tx_price,
        tx_date.isoformat(),
    )
    return transaction


def list_transactions(db: Session, user_id: int) -> list[Transaction]:
    """Return a user's ledger, newest first, for display."""
    return list(
        db.scalars(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        )
    )


def delete_transaction(db: Session, user_id: int, transaction_id: int) -> None:
    """Delete one transaction owned by ``user_id``."""
    transaction = db.get(Transaction, transaction_id)
    if transaction is None:
        raise TransactionNotFound(f"Transaction {transaction_id} not found")
    if transaction.user_id != user_id:
        raise TransactionOwnershipError("Not authorized to delete this transaction")
    db.delete(transaction)
    db.flush()
    logger.info("User %s deleted transaction %s", user_id, transaction_id)
