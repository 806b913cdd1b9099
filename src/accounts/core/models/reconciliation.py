"""Duplicate reconciliation reports."""

from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from src.accounts.core.errors import PartialReconciliationFailure
from src.accounts.entities.core.user_record import AccountClass


class DeletionError(BaseModel):
    record_id: str
    error: str


class GroupReport(BaseModel):
    """Outcome of reconciling the records that share one email."""

    email: str
    canonical_id: str | None = None
    duplicate_ids: list[str] = Field(
        default_factory=list, description="Non-canonical records selected for deletion"
    )
    deleted_ids: list[str] = Field(default_factory=list)
    errors: list[DeletionError] = Field(default_factory=list)
    dry_run: bool = False

    @computed_field
    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class ReconciliationReport(BaseModel):
    groups: list[GroupReport] = Field(default_factory=list)
    records_scanned: int = 0
    dry_run: bool = False

    @property
    def duplicate_groups(self) -> list[GroupReport]:
        return [group for group in self.groups if group.duplicate_ids]

    @computed_field
    @property
    def deleted_count(self) -> int:
        return sum(len(group.deleted_ids) for group in self.groups)

    @property
    def failed_groups(self) -> list[GroupReport]:
        return [group for group in self.groups if group.has_errors]

    def raise_for_failures(self) -> None:
        """Raise PartialReconciliationFailure if any group kept records it meant to delete."""
        failed = self.failed_groups
        if failed:
            raise PartialReconciliationFailure(failed)


class DuplicateCheck(BaseModel):
    email: str
    has_duplicates: bool
    duplicate_count: int
    canonical_id: str | None = None


class RecordSummary(BaseModel):
    record_id: str
    account_class: AccountClass
    created_at: datetime
    linked_external_uid: str | None = None


class EmailDiagnosis(BaseModel):
    email: str
    records: list[RecordSummary] = Field(default_factory=list)
    canonical_id: str | None = None

    @computed_field
    @property
    def found(self) -> bool:
        return bool(self.records)
