"""Canonical record selection shared by the resolver and the reconciler."""

from collections.abc import Sequence
from datetime import datetime

from src.accounts.entities.core.user_record import AccountClass, UserRecord


class PrecedencePolicy:
    """Orders records that compete for the same email.

    Records are ranked by account class (position in ``order``; classes
    missing from ``order`` rank after every listed class), then by earliest
    ``created_at``, then by smallest ``record_id``.
    """

    def __init__(self, order: Sequence[AccountClass] | None = None) -> None:
        if order is None:
            order = [AccountClass.PRIVILEGED_PRECEDENCE, AccountClass.STANDARD]
        self._rank = {account_class: i for i, account_class in enumerate(order)}

    def class_rank(self, account_class: AccountClass) -> int:
        return self._rank.get(account_class, len(self._rank))

    def sort_key(self, record: UserRecord) -> tuple[int, datetime, str]:
        return (
            self.class_rank(record.account_class),
            record.created_at,
            record.record_id,
        )

    def ordered(self, records: Sequence[UserRecord]) -> list[UserRecord]:
        return sorted(records, key=self.sort_key)

    def select_canonical(self, records: Sequence[UserRecord]) -> UserRecord | None:
        if not records:
            return None
        return min(records, key=self.sort_key)
