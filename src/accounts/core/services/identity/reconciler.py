"""Duplicate account reconciliation.

Collapses every group of records sharing an email down to its canonical
record. Deletion is destructive: data owned by a deleted record id elsewhere
in the system is not reassigned.
"""

from collections import defaultdict

from loguru import logger

from src.accounts.core.models.reconciliation import (
    DeletionError,
    DuplicateCheck,
    EmailDiagnosis,
    GroupReport,
    ReconciliationReport,
    RecordSummary,
)
from src.accounts.core.services.identity.precedence import PrecedencePolicy
from src.accounts.core.storage.record_store import RecordStore, with_timeout
from src.accounts.entities.core.user_record import UserRecord
from src.accounts.runtime.context import get_config


class DuplicateReconciler:
    def __init__(
        self,
        store: RecordStore,
        policy: PrecedencePolicy | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        config = get_config()
        if timeout_seconds is None:
            timeout_seconds = config.identity.store_timeout_seconds
        self._store = with_timeout(store, timeout_seconds)
        self._policy = policy or PrecedencePolicy(config.identity.precedence_order)

    def _dry_run(self, dry_run: bool | None) -> bool:
        return get_config().reconciliation.dry_run if dry_run is None else dry_run

    async def reconcile_email(self, email: str, dry_run: bool | None = None) -> GroupReport:
        """Reduce the records sharing ``email`` to the canonical one.

        Store errors while listing the group propagate. Errors while deleting
        are collected per record in the returned report.
        """
        records = await self._store.query("email", email)
        return await self._reconcile_group(email, records, self._dry_run(dry_run))

    async def reconcile_all(self, dry_run: bool | None = None) -> ReconciliationReport:
        """Reconcile every email that has more than one record.

        A failing group is reported and the pass moves on to the next one.
        """
        dry_run = self._dry_run(dry_run)
        records = await self._store.scan()

        by_email: dict[str, list[UserRecord]] = defaultdict(list)
        for record in records:
            if record.email is not None:
                by_email[record.email].append(record)

        report = ReconciliationReport(records_scanned=len(records), dry_run=dry_run)
        duplicated = sorted(email for email, group in by_email.items() if len(group) > 1)
        logger.info(
            "Scanned {} records; {} emails have duplicates", len(records), len(duplicated)
        )

        for email in duplicated:
            try:
                group = await self.reconcile_email(email, dry_run=dry_run)
            except Exception as e:
                logger.error("Could not list records for {}: {}", email, e)
                group = GroupReport(
                    email=email,
                    dry_run=dry_run,
                    errors=[
                        DeletionError(record_id=record.record_id, error=str(e))
                        for record in by_email[email]
                    ],
                )
            report.groups.append(group)

        logger.info(
            "Reconciliation finished: {} deleted, {} groups with errors{}",
            report.deleted_count,
            len(report.failed_groups),
            " (dry run)" if dry_run else "",
        )
        return report

    async def _reconcile_group(
        self, email: str, records: list[UserRecord], dry_run: bool
    ) -> GroupReport:
        canonical = self._policy.select_canonical(records)
        report = GroupReport(
            email=email,
            canonical_id=canonical.record_id if canonical else None,
            dry_run=dry_run,
        )
        if len(records) <= 1:
            return report

        report.duplicate_ids = [
            record.record_id
            for record in self._policy.ordered(records)
            if record.record_id != canonical.record_id
        ]
        logger.info(
            "Email {} has {} records; keeping {}",
            email,
            len(records),
            canonical.record_id,
        )
        if dry_run:
            return report

        for record_id in report.duplicate_ids:
            try:
                await self._store.delete(record_id)
            except Exception as e:
                logger.error("Failed to delete duplicate {} of {}: {}", record_id, email, e)
                report.errors.append(DeletionError(record_id=record_id, error=str(e)))
            else:
                logger.info("Deleted duplicate {} of {}", record_id, email)
                report.deleted_ids.append(record_id)

        return report

    async def find_duplicates(self, email: str) -> DuplicateCheck:
        """Report whether ``email`` has duplicates, without changing anything."""
        records = await self._store.query("email", email)
        if len(records) <= 1:
            return DuplicateCheck(email=email, has_duplicates=False, duplicate_count=0)

        canonical = self._policy.select_canonical(records)
        return DuplicateCheck(
            email=email,
            has_duplicates=True,
            duplicate_count=len(records) - 1,
            canonical_id=canonical.record_id,
        )

    async def diagnose_email(self, email: str) -> EmailDiagnosis:
        """List every record holding ``email`` in precedence order."""
        records = self._policy.ordered(await self._store.query("email", email))
        return EmailDiagnosis(
            email=email,
            records=[
                RecordSummary(
                    record_id=record.record_id,
                    account_class=record.account_class,
                    created_at=record.created_at,
                    linked_external_uid=record.linked_external_uid,
                )
                for record in records
            ],
            canonical_id=records[0].record_id if records else None,
        )
