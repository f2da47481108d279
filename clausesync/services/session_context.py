"""
Per-session state passed explicitly through every flow

Replaces ambient flags: the role, the active contract view, the visible
status/error, and the liveness counters that let a flow notice, after an
await, that it has been superseded.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from clausesync.database.schemas import AnalysisStatus, Identity, Role, UserProfile, ContractSummary
from clausesync.services.clause_store import ClauseStore
from clausesync.services.contract_view import ContractView
from clausesync.services.exceptions import NotFound, PermissionDenied, Unauthenticated

EDIT_ROLES = {Role.ADMIN, Role.EDITOR}


@dataclass
class SessionContext:
    store: ClauseStore
    token: Optional[str] = None
    identity: Optional[Identity] = None
    profile: Optional[UserProfile] = None

    view: ContractView = field(default_factory=ContractView)
    contracts: List[ContractSummary] = field(default_factory=list)
    project_name: str = ""

    status: AnalysisStatus = AnalysisStatus.IDLE
    error: Optional[str] = None
    progress: int = 0

    migration_checked: bool = False
    finalizing: bool = False
    auth_generation: int = 0
    run_generation: int = 0
    alive: bool = True
    unsubscribe: Optional[Callable[[], None]] = None
    subscription_contract: Optional[str] = None

    # ------------------------------------------------------------------
    # Identity and capabilities
    # ------------------------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None and self.profile is not None

    @property
    def role(self) -> Optional[Role]:
        return self.profile.role if self.profile else None

    @property
    def can_edit(self) -> bool:
        return self.role in EDIT_ROLES

    @property
    def can_delete(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def can_upload(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_pending(self) -> bool:
        return self.role == Role.PENDING

    def require_content_access(self) -> None:
        if not self.is_authenticated:
            raise Unauthenticated()
        if self.is_pending:
            raise PermissionDenied("Your account is waiting for administrator approval")

    def require(self, capability: str) -> None:
        self.require_content_access()
        if not getattr(self, capability):
            raise PermissionDenied(f"Your role ({self.role.value}) does not allow this action")

    # ------------------------------------------------------------------
    # Active contract
    # ------------------------------------------------------------------

    @property
    def active_contract_id(self) -> Optional[str]:
        return self.view.contract_id

    @property
    def clauses(self):
        return self.view.clauses

    def require_active_contract(self) -> str:
        if not self.view.contract_id:
            raise NotFound("No active contract")
        return self.view.contract_id

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def next_run(self) -> int:
        self.run_generation += 1
        return self.run_generation

    def run_is_current(self, run: int) -> bool:
        return self.alive and run == self.run_generation

    def auth_is_current(self, generation: int) -> bool:
        return self.alive and generation == self.auth_generation

    # ------------------------------------------------------------------
    # Visible state
    # ------------------------------------------------------------------

    def fail(self, message: str) -> None:
        self.error = message
        self.status = AnalysisStatus.ERROR

    def reset(self) -> None:
        """The single recovery action: back to the input stage"""
        self.error = None
        self.progress = 0
        self.status = AnalysisStatus.IDLE
        self.run_generation += 1

    def detach_subscription(self) -> None:
        if self.unsubscribe:
            self.unsubscribe()
            self.unsubscribe = None
        self.subscription_contract = None

    def to_dict(self) -> dict:
        return {
            "authenticated": self.is_authenticated,
            "email": self.identity.email if self.identity else None,
            "role": self.role.value if self.role else None,
            "capabilities": {
                "can_edit": self.can_edit,
                "can_delete": self.can_delete,
                "can_upload": self.can_upload,
            },
            "active_contract_id": self.active_contract_id,
            "project_name": self.project_name,
            "status": self.status.value,
            "error": self.error,
            "progress": self.progress,
            "initial_load": self.view.is_initial_load,
            "clause_count": len(self.view.clauses),
        }
