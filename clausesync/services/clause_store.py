"""
Clause Store Adapter

Persistence boundary for contracts and their clauses (SQLAlchemy), plus an
in-process change feed that pushes the full sorted clause list of a contract
to its subscribers after every write.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from clausesync.database.database import SessionLocal
from clausesync.database.models import CLAUSE_SCHEMA_VERSION, ClauseRecord, ContractRecord
from clausesync.database.schemas import Clause, ContractMeta, ContractSummary, Identity
from clausesync.services.clause_ordering import KEY_PREFIX, canonical_clause_key, sort_clauses
from clausesync.services.exceptions import ContractAlreadyExists, NotFound, StoreFailure, Unauthenticated

logger = logging.getLogger(__name__)


@dataclass
class ClauseSnapshot:
    """Full sorted clause list of one contract at a feed revision"""
    contract_id: str
    revision: int
    clauses: List[Clause] = field(default_factory=list)


SnapshotCallback = Callable[[ClauseSnapshot], Union[None, Awaitable[None]]]


def decode_clause(data: dict) -> Clause:
    """
    Stored row -> Clause, with every defaulting rule in one place

    - number falls back to the key without its "C." prefix
    - title and text fall back to ""
    - condition type falls back to "General" (any casing of "particular" is kept)
    - comparison and time_frames fall back to []
    - schema_version 1 rows stored empty strings for absent condition variants
    """
    key = data.get("id") or ""
    number = data.get("number") or (key[len(KEY_PREFIX):] if key.startswith(KEY_PREFIX) else key)
    general = data.get("general_condition")
    particular = data.get("particular_condition")
    if (data.get("schema_version") or 1) < 2:
        general = general or None
        particular = particular or None

    return Clause(
        clause_number=number,
        clause_title=data.get("title") or "",
        clause_text=data.get("text") or "",
        condition_type=data.get("condition_type") or "General",
        general_condition=general,
        particular_condition=particular,
        comparison=data.get("comparison") or [],
        time_frames=data.get("time_frames") or [],
    )


class ClauseFeed:
    """
    Per-contract subscriber lists and revision counters

    Broadcasts are coalesced: while one delivery for a contract is queued and
    not yet started, further writes ride along with it, since the snapshot is
    read when the delivery runs.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[SnapshotCallback]] = {}
        self._revisions: Dict[str, int] = {}
        self._queued: Dict[str, asyncio.Task] = {}
        self._pending: set = set()

    def revision(self, contract_id: str) -> int:
        return self._revisions.get(contract_id, 0)

    def subscriber_count(self, contract_id: str) -> int:
        return len(self._subscribers.get(contract_id, []))

    def add(self, contract_id: str, callback: SnapshotCallback) -> Callable[[], None]:
        self._subscribers.setdefault(contract_id, []).append(callback)

        def unsubscribe():
            callbacks = self._subscribers.get(contract_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(contract_id, None)

        return unsubscribe

    def bump(self, contract_id: str) -> int:
        self._revisions[contract_id] = self.revision(contract_id) + 1
        return self._revisions[contract_id]

    def schedule(self, contract_id: str, loader: Callable[[str], List[Clause]],
                 only: Optional[SnapshotCallback] = None) -> None:
        """Deliver a fresh snapshot on the next loop turn; no-op outside an event loop"""
        if only is None and (contract_id in self._queued or not self.subscriber_count(contract_id)):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._deliver(contract_id, loader, only))
        if only is None:
            self._queued[contract_id] = task
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, contract_id: str, loader, only: Optional[SnapshotCallback]) -> None:
        if only is None:
            self._queued.pop(contract_id, None)
        targets = [only] if only else list(self._subscribers.get(contract_id, []))
        if only and only not in self._subscribers.get(contract_id, []):
            return
        if not targets:
            return

        try:
            snapshot = ClauseSnapshot(contract_id, self.revision(contract_id), loader(contract_id))
        except Exception as e:
            logger.error(f"[!] Subscription read failed for {contract_id}: {e}")
            return

        for callback in targets:
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[!] Error in clause subscription for {contract_id}: {e}")

    async def drain(self) -> None:
        """Wait until every scheduled delivery has run"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class ClauseStore:
    """Contracts + clauses; every operation needs an authenticated user"""

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        feed: Optional[ClauseFeed] = None,
        user: Optional[Identity] = None
    ):
        self.session_factory = session_factory
        self.feed = feed or ClauseFeed()
        self.user = user

    def with_user(self, user: Optional[Identity]) -> "ClauseStore":
        """Same database and feed, acting as another identity"""
        return ClauseStore(self.session_factory, self.feed, user)

    def _require_user(self) -> Identity:
        if self.user is None:
            raise Unauthenticated()
        return self.user

    # ------------------------------------------------------------------
    # Contract metadata
    # ------------------------------------------------------------------

    async def load_contracts(self) -> List[ContractSummary]:
        """All contracts with meta, newest first"""
        self._require_user()
        db: Session = self.session_factory()
        try:
            rows = db.query(ContractRecord).order_by(ContractRecord.created_at.desc()).all()
            return [self._summary(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"[DB ERROR] Error loading contracts: {e}")
            raise StoreFailure(f"Error loading contracts: {e}") from e
        finally:
            db.close()

    async def create_contract(self, contract_id: str, title: str) -> ContractSummary:
        """Create contract meta; raises ContractAlreadyExists when the id is taken"""
        user = self._require_user()
        db: Session = self.session_factory()
        try:
            if db.get(ContractRecord, contract_id) is not None:
                raise ContractAlreadyExists(contract_id)

            record = ContractRecord(
                id=contract_id,
                title=title,
                created_by=user.uid,
                created_at=datetime.utcnow()
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            logger.info(f"[DB] Contract created: {contract_id} ({title})")
            return self._summary(record)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[DB ERROR] Failed to create contract {contract_id}: {e}")
            raise StoreFailure(f"Failed to create contract {contract_id}: {e}") from e
        finally:
            db.close()

    async def ensure_contract(self, contract_id: str, title: str) -> bool:
        """Create-if-absent; an existing contract is not an error. Returns True when created"""
        try:
            await self.create_contract(contract_id, title)
            return True
        except ContractAlreadyExists:
            logger.info(f"[DB] Contract {contract_id} already exists, continuing...")
            return False

    async def get_contract_meta(self, contract_id: str) -> Optional[ContractMeta]:
        self._require_user()
        db: Session = self.session_factory()
        try:
            record = db.get(ContractRecord, contract_id)
            return self._summary(record).meta if record else None
        except SQLAlchemyError as e:
            logger.error(f"[DB ERROR] Error getting contract meta: {e}")
            raise StoreFailure(f"Error getting contract meta: {e}") from e
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Clauses
    # ------------------------------------------------------------------

    async def load_clauses(self, contract_id: str) -> List[Clause]:
        """Every clause of a contract in canonical order"""
        self._require_user()
        try:
            return self._read_clauses(contract_id)
        except SQLAlchemyError as e:
            logger.error(f"[DB ERROR] Error loading clauses for {contract_id}: {e}")
            raise StoreFailure(f"Error loading clauses: {e}") from e

    async def save_clause(self, contract_id: str, clause: Clause) -> str:
        """Upsert keyed by the canonical clause key; existing rows keep their creator"""
        user = self._require_user()
        clause_key = canonical_clause_key(clause.clause_number)
        now = datetime.utcnow()

        db: Session = self.session_factory()
        try:
            if db.get(ContractRecord, contract_id) is None:
                raise NotFound(f"Contract {contract_id} not found")

            record = db.get(ClauseRecord, (contract_id, clause_key))
            if record is None:
                record = ClauseRecord(
                    contract_id=contract_id,
                    clause_key=clause_key,
                    created_by=user.uid,
                    created_at=now
                )
                db.add(record)

            record.number = clause.clause_number
            record.title = clause.clause_title
            record.text = clause.clause_text
            record.condition_type = clause.condition_type
            record.general_condition = clause.general_condition
            record.particular_condition = clause.particular_condition
            record.comparison = list(clause.comparison)
            record.has_time_frame = clause.has_time_frame
            record.time_frames = list(clause.time_frames)
            record.updated_at = now
            record.schema_version = CLAUSE_SCHEMA_VERSION

            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[DB ERROR] Failed to save clause {clause_key} in {contract_id}: {e}")
            raise StoreFailure(f"Failed to save clause {clause.clause_number}: {e}") from e
        finally:
            db.close()

        self._publish(contract_id)
        return clause_key

    async def save_clauses(
        self,
        contract_id: str,
        clauses: List[Clause],
        on_saved: Optional[Callable[[int, int], None]] = None
    ) -> Tuple[int, int]:
        """
        Save clauses one by one; a failed save is logged and counted, never fatal

        Returns (saved, failed). on_saved(index, total) fires after each successful save.
        """
        saved = failed = 0
        total = len(clauses)
        for index, clause in enumerate(clauses):
            try:
                await self.save_clause(contract_id, clause)
                saved += 1
                if on_saved:
                    on_saved(index, total)
            except Unauthenticated:
                raise
            except Exception as e:
                failed += 1
                logger.error(f"[DB ERROR] Error saving clause {clause.clause_number} in {contract_id}: {e}")
        return saved, failed

    async def delete_clause(self, contract_id: str, clause_key: str) -> bool:
        self._require_user()
        db: Session = self.session_factory()
        try:
            record = db.get(ClauseRecord, (contract_id, clause_key))
            if record is None:
                return False
            db.delete(record)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[DB ERROR] Failed to delete clause {clause_key}: {e}")
            raise StoreFailure(f"Failed to delete clause {clause_key}: {e}") from e
        finally:
            db.close()

        logger.info(f"[DB] Deleted clause {clause_key} from {contract_id}")
        self._publish(contract_id)
        return True

    def subscribe_to_clauses(self, contract_id: str, callback: SnapshotCallback) -> Callable[[], None]:
        """Push the full sorted clause list now and after every change; returns unsubscribe"""
        self._require_user()
        unsubscribe = self.feed.add(contract_id, callback)
        self.feed.schedule(contract_id, self._read_clauses, only=callback)
        return unsubscribe

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _read_clauses(self, contract_id: str) -> List[Clause]:
        db: Session = self.session_factory()
        try:
            rows = (
                db.query(ClauseRecord)
                .filter(ClauseRecord.contract_id == contract_id)
                .order_by(ClauseRecord.number)
                .all()
            )
            return sort_clauses(decode_clause(row.to_dict()) for row in rows)
        finally:
            db.close()

    def _publish(self, contract_id: str) -> None:
        self.feed.bump(contract_id)
        self.feed.schedule(contract_id, self._read_clauses)

    @staticmethod
    def _summary(record: ContractRecord) -> ContractSummary:
        return ContractSummary(
            id=record.id,
            meta=ContractMeta(
                title=record.title,
                created_by=record.created_by,
                created_at=record.created_at
            )
        )
