"""
Reconciliation engine

Owns every flow that changes which clauses a session sees:
- finalize after extraction: annotate, order, name, persist, reload from the store
- activate / switch contract, with lazy migration of an empty contract for admins
- backup import
- manual clause entry, edit and delete

Every state write that follows an await checks that the flow is still the
current one for the session (run / auth generation, view load token).
"""

import logging
import time
from datetime import datetime
from typing import Any, List, Optional

from clausesync.database.schemas import (
    AnalysisStatus, Clause, ContractSummary, FinalizeResult, ImportResult, Role, SavedContract
)
from clausesync.services.batch_extraction import BatchExtractionDriver, ExtractionProgress
from clausesync.services.clause_linker import linkify_clause, linkify_text
from clausesync.services.clause_ordering import (
    canonical_clause_key, find_key_collisions, sanitize_identifier, sort_clauses
)
from clausesync.services.exceptions import ClauseSyncError, ExtractionFailure, NotFound, ValidationError
from clausesync.services.migration_service import MigrationService
from clausesync.services.session_context import SessionContext
from clausesync.utils.backup import build_saved_contract, parse_backup

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"


def detect_contract_name(ordered: List[Clause], today: Optional[datetime] = None) -> str:
    """First titled clause in canonical order, else "Analysis <date>" """
    for clause in ordered:
        if clause.clause_title and clause.clause_title != UNTITLED:
            return clause.clause_title
    return f"Analysis {(today or datetime.now()).strftime('%m/%d/%Y')}"


def derive_contract_id(name: str) -> str:
    return sanitize_identifier(name) or f"contract-{int(time.time() * 1000)}"


class ReconciliationEngine:

    def __init__(self, migration: MigrationService, driver: Optional[BatchExtractionDriver] = None):
        self.migration = migration
        self.driver = driver

    # ------------------------------------------------------------------
    # Active contract
    # ------------------------------------------------------------------

    def _ensure_subscription(self, ctx: SessionContext, contract_id: str) -> None:
        if ctx.subscription_contract == contract_id and ctx.unsubscribe:
            return
        ctx.detach_subscription()
        view = ctx.view

        def on_push(snapshot):
            if view.apply_push(snapshot):
                logger.info(f"[Live] {snapshot.contract_id}: {len(snapshot.clauses)} clauses "
                            f"(revision {snapshot.revision})")

        ctx.unsubscribe = ctx.store.subscribe_to_clauses(contract_id, on_push)
        ctx.subscription_contract = contract_id

    async def refresh_contracts(self, ctx: SessionContext) -> List[ContractSummary]:
        generation = ctx.auth_generation
        contracts = await ctx.store.load_contracts()
        if ctx.auth_is_current(generation):
            ctx.contracts = contracts
        return contracts

    async def activate_contract(self, ctx: SessionContext, contract_id: str, lazy_migrate: bool = True) -> List[Clause]:
        """
        Make a contract active: LOADING, read from the store, LIVE

        An admin opening a contract with no stored clauses gets the matching
        archived contract migrated first. A failed read leaves the previous
        list on screen and sets the visible error.
        """
        ctx.require_content_access()
        contract = next((c for c in ctx.contracts if c.id == contract_id), None)
        if contract is None:
            await self.refresh_contracts(ctx)
            contract = next((c for c in ctx.contracts if c.id == contract_id), None)
        if contract is None:
            raise NotFound(f"Contract {contract_id} not found")

        ctx.project_name = contract.meta.title
        token = ctx.view.begin_load(contract_id)
        self._ensure_subscription(ctx, contract_id)

        try:
            revision = ctx.store.feed.revision(contract_id)
            clauses = await ctx.store.load_clauses(contract_id)

            if not clauses and lazy_migrate and ctx.role == Role.ADMIN:
                logger.info(f"[Load] No clauses stored for {contract_id}, checking legacy archive...")
                if await self.migration.migrate_one(ctx.store, contract_id, contract.meta.title):
                    revision = ctx.store.feed.revision(contract_id)
                    clauses = await ctx.store.load_clauses(contract_id)
        except Exception as e:
            logger.error(f"[!] Error loading contract {contract_id}: {e}")
            ctx.view.fail_load(token)
            ctx.fail("Failed to load contract")
            raise

        if ctx.view.complete_load(token, clauses, revision):
            ctx.status = AnalysisStatus.COMPLETED
            logger.info(f"[OK] Loaded {len(ctx.view.clauses)} clauses for {contract_id}")
        return ctx.view.clauses

    def deactivate(self, ctx: SessionContext) -> None:
        ctx.detach_subscription()
        ctx.view.clear()
        ctx.project_name = ""

    # ------------------------------------------------------------------
    # Extraction runs
    # ------------------------------------------------------------------

    async def analyze_document(self, ctx: SessionContext, document: Any) -> Optional[FinalizeResult]:
        return await self._run(ctx, lambda progress: self._driver().extract_document(document, progress))

    async def analyze_dual_documents(self, ctx: SessionContext, general: Any, particular: Any) -> Optional[FinalizeResult]:
        return await self._run(
            ctx, lambda progress: self._driver().extract_dual_documents(general, particular, progress)
        )

    async def analyze_text(self, ctx: SessionContext, general: str, particular: str) -> Optional[FinalizeResult]:
        if not (general or "").strip() and not (particular or "").strip():
            raise ValidationError("Paste general and/or particular conditions text")
        return await self._run(ctx, lambda progress: self._driver().extract_text(general, particular, progress))

    def _driver(self) -> BatchExtractionDriver:
        if self.driver is None:
            raise ExtractionFailure("Extraction is not configured (GEMINI_API_KEY missing)")
        return self.driver

    async def _run(self, ctx: SessionContext, extract) -> Optional[FinalizeResult]:
        """Extraction then finalize; None when the run was abandoned (reset / sign-out)"""
        ctx.require("can_upload")
        run = ctx.next_run()
        ctx.status = AnalysisStatus.ANALYZING
        ctx.error = None
        ctx.progress = 5

        def on_progress(progress: ExtractionProgress):
            if ctx.run_is_current(run):
                ctx.progress = progress.percent

        try:
            clauses = await extract(on_progress)
        except ClauseSyncError as e:
            if ctx.run_is_current(run):
                ctx.fail(e.message)
            raise

        if not ctx.run_is_current(run):
            logger.info("[Run] Analysis abandoned before finalize; results discarded")
            return None
        return await self.finalize_analysis(ctx, clauses, run)

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    async def finalize_analysis(self, ctx: SessionContext, extracted: List[Clause],
                                run: Optional[int] = None) -> Optional[FinalizeResult]:
        """
        Persist one extraction run

        1. annotate cross-references   2. canonical order
        3. detect the contract name    4. derive the contract id
        5. create contract if absent   6. save every clause (failures counted)
        7. reload clauses and contracts from the store and make it active
        """
        if ctx.finalizing:
            raise ValidationError("An analysis is already being finalized")
        ctx.require("can_upload")
        ctx.finalizing = True
        try:
            ordered = sort_clauses(linkify_clause(c) for c in extracted)
            collisions = find_key_collisions(ordered)
            if collisions:
                logger.warning(f"[!] Clause numbers sharing a store key (last one wins): {collisions}")

            name = detect_contract_name(ordered)
            contract_id = derive_contract_id(name)
            logger.info(f"[Finalize] {len(ordered)} clauses -> {contract_id} ({name})")

            try:
                await ctx.store.ensure_contract(contract_id, name)
                saved, failed = await ctx.store.save_clauses(contract_id, ordered)
                contracts = await ctx.store.load_contracts()
            except ClauseSyncError as e:
                logger.error(f"[!] Error finalizing analysis: {e}")
                if run is None or ctx.run_is_current(run):
                    ctx.fail(f"Failed to save contract: {e.message}")
                raise

            if run is not None and not ctx.run_is_current(run):
                logger.info("[Finalize] Session moved on; stored results are not shown")
                return None

            ctx.contracts = contracts
            clauses = await self.activate_contract(ctx, contract_id, lazy_migrate=False)
            ctx.progress = 100
            ctx.status = AnalysisStatus.COMPLETED
            return FinalizeResult(
                contract_id=contract_id,
                name=name,
                saved=saved,
                failed=failed,
                clauses=clauses,
                contracts=contracts,
            )
        finally:
            ctx.finalizing = False

    # ------------------------------------------------------------------
    # Backup import / export
    # ------------------------------------------------------------------

    async def import_contract(self, ctx: SessionContext, content) -> ImportResult:
        ctx.require("can_upload")
        run = ctx.next_run()
        ctx.error = None
        ctx.status = AnalysisStatus.ANALYZING
        ctx.progress = 0

        try:
            contract = parse_backup(content)
            contract_id = sanitize_identifier(contract.id or contract.name) or f"contract-{int(time.time() * 1000)}"
            logger.info(f"[Import] {contract.name}: {len(contract.clauses)} clauses -> {contract_id}")
            ctx.progress = 10

            await ctx.store.ensure_contract(contract_id, contract.name)
            ctx.progress = 20

            def on_saved(index: int, total: int):
                if ctx.run_is_current(run):
                    ctx.progress = 20 + int((index + 1) / total * 70)

            imported, failed = await ctx.store.save_clauses(contract_id, contract.clauses, on_saved)
            logger.info(f"[Import] Imported {imported}/{len(contract.clauses)} clauses ({failed} failed)")
            ctx.progress = 90

            await self.refresh_contracts(ctx)
            clauses = await self.activate_contract(ctx, contract_id, lazy_migrate=False)
        except ClauseSyncError as e:
            logger.error(f"[!] Import failed: {e}")
            if ctx.run_is_current(run):
                ctx.fail(e.message or "Failed to import contract. Please check the file format.")
            raise

        ctx.project_name = contract.name
        ctx.progress = 100
        ctx.status = AnalysisStatus.COMPLETED
        return ImportResult(
            contract_id=contract_id,
            name=contract.name,
            imported=imported,
            total=len(contract.clauses),
            clauses=clauses,
        )

    async def export_contract(self, ctx: SessionContext, contract_id: str) -> SavedContract:
        """Current store content of a contract in backup shape"""
        ctx.require_content_access()
        meta = await ctx.store.get_contract_meta(contract_id)
        if meta is None:
            raise NotFound(f"Contract {contract_id} not found")
        clauses = await ctx.store.load_clauses(contract_id)
        return build_saved_contract(contract_id, meta.title, clauses)

    # ------------------------------------------------------------------
    # Single-clause edits
    # ------------------------------------------------------------------

    async def add_manual_clause(self, ctx: SessionContext, number: str, title: str,
                                general_text: str, particular_text: str) -> Clause:
        ctx.require("can_edit")
        contract_id = ctx.require_active_contract()
        if not (number or "").strip():
            raise ValidationError("Clause number is required")

        general_text = general_text or ""
        particular_text = particular_text or ""
        clause = Clause(
            clause_number=number,
            clause_title=title or "Untitled Clause",
            clause_text=linkify_text(particular_text if particular_text.strip() else general_text),
            condition_type="Particular" if particular_text.strip() else "General",
            general_condition=linkify_text(general_text) if general_text.strip() else None,
            particular_condition=linkify_text(particular_text) if particular_text.strip() else None,
            comparison=[],
            time_frames=[],
        )
        await self._save(ctx, contract_id, clause, "Failed to save clause")
        return clause

    async def update_clause(self, ctx: SessionContext, clause: Clause) -> Clause:
        ctx.require("can_edit")
        contract_id = ctx.require_active_contract()
        await self._save(ctx, contract_id, clause, "Failed to update clause")
        return clause

    async def delete_clause(self, ctx: SessionContext, clause_number: str) -> str:
        ctx.require("can_delete")
        contract_id = ctx.require_active_contract()
        clause_key = canonical_clause_key(clause_number)
        try:
            deleted = await ctx.store.delete_clause(contract_id, clause_key)
        except ClauseSyncError as e:
            ctx.error = "Failed to delete clause"
            logger.error(f"[!] Error deleting clause: {e}")
            raise
        if not deleted:
            raise NotFound(f"Clause {clause_number} not found")
        return clause_key

    async def _save(self, ctx: SessionContext, contract_id: str, clause: Clause, message: str) -> None:
        try:
            await ctx.store.save_clause(contract_id, clause)
        except ClauseSyncError as e:
            ctx.error = message
            logger.error(f"[!] {message}: {e}")
            raise
