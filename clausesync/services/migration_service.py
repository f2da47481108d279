"""
Legacy archive -> clause store migration

Bulk: once per admin session while the persisted flag is not complete.
Lazy: when an admin opens a contract that has no clauses in the store, the
matching archived contract is copied over on the spot.
Both are best-effort: individual clause failures are logged and counted.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from clausesync.database.schemas import MigrationReport, MigrationState, SavedContract
from clausesync.services.clause_ordering import sanitize_identifier
from clausesync.services.clause_store import ClauseStore
from clausesync.services.legacy_archive import LegacyArchive, MigrationStateStore

logger = logging.getLogger(__name__)


@dataclass
class MigrationProgress:
    current: int
    total: int
    contract_name: str


MigrationProgressCallback = Callable[[MigrationProgress], None]


def legacy_contract_id(contract: SavedContract, position: int) -> str:
    """Explicit id, else the sanitized name, else a positional fallback"""
    return contract.id or sanitize_identifier(contract.name) or f"contract-{position}"


class MigrationService:

    def __init__(self, archive: LegacyArchive = None, state: MigrationStateStore = None):
        self.archive = archive or LegacyArchive()
        self.state = state or MigrationStateStore()

    def is_needed(self) -> bool:
        return self.state.is_needed()

    async def migrate_all(
        self,
        store: ClauseStore,
        on_progress: Optional[MigrationProgressCallback] = None
    ) -> MigrationReport:
        """
        Copy every archived contract into the store

        The flag moves pending -> in_progress -> complete. An error escaping the
        outer loop (e.g. the archive cannot be listed) resets it to pending so
        the next session retries.
        """
        report = MigrationReport()
        self.state.set(MigrationState.IN_PROGRESS)
        try:
            contracts = self.archive.list_contracts()
            if not contracts:
                logger.info("[MIGRATION] No contracts to migrate")

            for index, contract in enumerate(contracts):
                contract_id = legacy_contract_id(contract, index)
                if on_progress:
                    on_progress(MigrationProgress(index + 1, len(contracts), contract.name))

                await store.ensure_contract(contract_id, contract.name)
                saved, failed = await store.save_clauses(contract_id, contract.clauses)

                report.contracts += 1
                report.clauses_saved += saved
                report.clauses_failed += failed
                report.details[contract_id] = {"saved": saved, "failed": failed}
                logger.info(f"[MIGRATION] {index + 1}/{len(contracts)} {contract.name}: "
                            f"{saved} saved, {failed} failed")
        except Exception:
            self.state.set(MigrationState.PENDING)
            raise

        self.state.set(MigrationState.COMPLETE)
        logger.info(f"[OK] Migration completed: {report.contracts} contracts, "
                    f"{report.clauses_saved} clauses ({report.clauses_failed} failed)")
        return report

    def find_archived(self, contract_id: str, title: Optional[str]) -> Optional[SavedContract]:
        """Archived contract whose sanitized id/name equals contract_id, or whose name equals title"""
        for contract in self.archive.list_contracts():
            candidate = sanitize_identifier(contract.id or "") or sanitize_identifier(contract.name)
            if candidate == contract_id or (title is not None and contract.name == title):
                return contract
        return None

    async def migrate_one(self, store: ClauseStore, contract_id: str, title: Optional[str]) -> int:
        """Lazy migration of a single contract's clauses; returns how many were saved"""
        contract = self.find_archived(contract_id, title)
        if contract is None or not contract.clauses:
            return 0

        logger.info(f"[MIGRATION] Found {len(contract.clauses)} archived clauses for {contract_id}, migrating...")
        saved, failed = await store.save_clauses(contract_id, contract.clauses)
        logger.info(f"[MIGRATION] Lazy migration of {contract_id}: {saved} saved, {failed} failed")
        return saved
