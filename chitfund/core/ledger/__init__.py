"""Per-member periodic dues, payments and delay accounting"""
from chitfund.core.ledger.entry import (
    LedgerEntry,
    PartialPayment,
    PaymentMethod,
    PaymentStatus,
    derive_status,
    entry_key,
)
from chitfund.core.ledger.payment_ledger import (
    DelayAssessment,
    PaymentLedger,
    PaymentOutcome,
)
from chitfund.core.ledger.statement import (
    MemberStatement,
    StatementTransaction,
    TransactionType,
    build_statement,
)

__all__ = [
    "LedgerEntry",
    "PartialPayment",
    "PaymentMethod",
    "PaymentStatus",
    "derive_status",
    "entry_key",
    "DelayAssessment",
    "PaymentLedger",
    "PaymentOutcome",
    "MemberStatement",
    "StatementTransaction",
    "TransactionType",
    "build_statement",
]
