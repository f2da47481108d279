"""
In-memory clause list of the active contract

Two phases per active contract, LOADING then LIVE. While LOADING, a
non-empty subscription push is adopted straight away and an empty push is
held back; when the initial load reports in, held pushes are replayed only if
they are newer (higher feed revision) than what is on screen. After that the
subscription owns the list. Out-of-order pushes (older revision) are dropped
in every phase.
"""

import logging
from enum import Enum
from typing import List, Optional

from clausesync.database.schemas import Clause
from clausesync.services.clause_ordering import sort_clauses
from clausesync.services.clause_store import ClauseSnapshot

logger = logging.getLogger(__name__)


class ViewPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LIVE = "live"


class ContractView:

    def __init__(self):
        self.contract_id: Optional[str] = None
        self.phase = ViewPhase.IDLE
        self.clauses: List[Clause] = []
        self.revision = -1
        self._token = 0
        self._held: List[ClauseSnapshot] = []

    @property
    def is_initial_load(self) -> bool:
        return self.phase == ViewPhase.LOADING

    def is_current(self, token: int) -> bool:
        return token == self._token

    def begin_load(self, contract_id: str) -> int:
        """Enter LOADING for a contract; the returned token identifies this load"""
        if contract_id != self.contract_id:
            self.revision = -1
        self._token += 1
        self.contract_id = contract_id
        self.phase = ViewPhase.LOADING
        self._held.clear()
        return self._token

    def complete_load(self, token: int, clauses: List[Clause], revision: int) -> bool:
        """Apply the initial load and go LIVE; a superseded load is ignored"""
        if not self.is_current(token):
            logger.info("[View] Ignoring superseded load result")
            return False

        if revision >= self.revision:
            self._adopt(clauses, revision)
        else:
            logger.info(f"[View] Load at revision {revision} older than pushed revision {self.revision}")

        self.phase = ViewPhase.LIVE
        held, self._held = sorted(self._held, key=lambda s: s.revision), []
        for snapshot in held:
            if snapshot.revision > self.revision:
                self._adopt(snapshot.clauses, snapshot.revision)
        return True

    def fail_load(self, token: int) -> None:
        """Keep the previous list untouched and hand over to the subscription"""
        if not self.is_current(token):
            return
        self._held.clear()
        self.phase = ViewPhase.LIVE

    def apply_push(self, snapshot: ClauseSnapshot) -> bool:
        """Subscription callback; returns True when the push changed the list"""
        if self.phase == ViewPhase.IDLE or snapshot.contract_id != self.contract_id:
            return False
        if snapshot.revision < self.revision:
            logger.info(f"[View] Dropping out-of-order push (revision {snapshot.revision} < {self.revision})")
            return False

        if self.phase == ViewPhase.LOADING and not snapshot.clauses:
            logger.info("[View] Holding empty push during initial load")
            self._held.append(snapshot)
            return False

        self._adopt(snapshot.clauses, snapshot.revision)
        return True

    def clear(self) -> None:
        """No active contract or no session: empty list, nothing loading"""
        self._token += 1
        self.contract_id = None
        self.phase = ViewPhase.IDLE
        self.clauses = []
        self.revision = -1
        self._held.clear()

    def _adopt(self, clauses: List[Clause], revision: int) -> None:
        self.clauses = sort_clauses(clauses)
        self.revision = revision
