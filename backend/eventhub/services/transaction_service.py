"""Transaction ledger access

Helpers here only flush; the caller owns the commit.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from eventhub.models.transaction import Transaction

logger = logging.getLogger(__name__)
payments_logger = logging.getLogger("payments")


def get_transaction_by_payment_intent_id(payment_intent_id: str, db: Session) -> Optional[Transaction]:
    return db.query(Transaction).filter(
        Transaction.stripe_payment_intent_id == payment_intent_id,
        Transaction.is_deleted == False,  # noqa: E712
    ).first()


def create_transaction(data: Dict[str, Any], db: Session) -> Transaction:
    """Insert a Transaction row

    Callers must check get_transaction_by_payment_intent_id first; the unique
    constraint on stripe_payment_intent_id is the backstop.
    """
    transaction = Transaction(**data)
    db.add(transaction)
    db.flush()
    payments_logger.info(
        f"Recorded {transaction.type} transaction {transaction.id} "
        f"for payment intent {transaction.stripe_payment_intent_id} "
        f"({transaction.amount} {transaction.currency})"
    )
    return transaction


def update_transaction_by_payment_intent_id(
    payment_intent_id: str,
    changes: Dict[str, Any],
    db: Session,
) -> Optional[Transaction]:
    transaction = get_transaction_by_payment_intent_id(payment_intent_id, db)
    if not transaction:
        return None
    for field, value in changes.items():
        setattr(transaction, field, value)
    db.flush()
    return transaction
