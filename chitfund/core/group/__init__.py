"""Chit fund group configuration and roster"""
from chitfund.core.group.group import (
    Group,
    GroupMember,
    GroupStatus,
    PaymentModel,
)

__all__ = [
    "Group",
    "GroupMember",
    "GroupStatus",
    "PaymentModel",
]
