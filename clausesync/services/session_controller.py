"""
Session registry

Maps bearer tokens to SessionContext objects and reacts to the auth-state
stream: a sign-in builds the session (profile, store bound to the user,
one-time bulk migration for admins, contract list, default contract), a
sign-out tears it down.
"""

import logging
from typing import Dict, List, Optional

from clausesync.config.config import Config
from clausesync.database.schemas import ContractSummary, Identity, Role, UserProfile
from clausesync.services.auth_service import AuthService
from clausesync.services.clause_store import ClauseStore
from clausesync.services.exceptions import ClauseSyncError, PermissionDenied, Unauthenticated
from clausesync.services.migration_service import MigrationService
from clausesync.services.reconciliation import ReconciliationEngine
from clausesync.services.session_context import SessionContext

logger = logging.getLogger(__name__)


def pick_default_contract(contracts: List[ContractSummary], preferred: Optional[str] = None) -> Optional[str]:
    """Configured contract when it exists, else the newest one"""
    if not contracts:
        return None
    if preferred and any(c.id == preferred for c in contracts):
        return preferred
    return contracts[0].id


class SessionRegistry:

    def __init__(
        self,
        auth: AuthService,
        base_store: ClauseStore,
        migration: MigrationService,
        engine: ReconciliationEngine,
        default_contract_id: Optional[str] = None
    ):
        self.auth = auth
        self.base_store = base_store
        self.migration = migration
        self.engine = engine
        self.default_contract_id = default_contract_id if default_contract_id is not None else Config.DEFAULT_CONTRACT_ID
        self._sessions: Dict[str, SessionContext] = {}
        self._unsubscribe = auth.on_auth_state_changed(self._on_auth_state)

    def close(self) -> None:
        self._unsubscribe()
        for token in list(self._sessions):
            self._end(token)

    # ------------------------------------------------------------------
    # Auth-state stream
    # ------------------------------------------------------------------

    async def _on_auth_state(self, token: str, identity: Optional[Identity]) -> None:
        if identity is None:
            self._end(token)
            return
        ctx = self._sessions.get(token)
        if ctx is None:
            ctx = SessionContext(store=self.base_store.with_user(None), token=token)
            self._sessions[token] = ctx
        await self.handle_auth_state(ctx, identity)

    async def handle_auth_state(self, ctx: SessionContext, identity: Optional[Identity]) -> SessionContext:
        """
        Rebuild a session for a new auth state

        Every write after an await is dropped when a newer auth change for the
        same session has started in the meantime.
        """
        ctx.auth_generation += 1
        generation = ctx.auth_generation

        if identity is None:
            self._sign_out_state(ctx)
            return ctx

        try:
            profile = await self.auth.ensure_profile(identity)
            if not ctx.auth_is_current(generation):
                return ctx

            ctx.identity = identity
            ctx.profile = profile
            ctx.store = self.base_store.with_user(identity)
            logger.info(f"[Auth] {identity.email} signed in as {profile.role.value}")

            if profile.role == Role.PENDING:
                self.engine.deactivate(ctx)
                ctx.contracts = []
                return ctx

            if profile.role == Role.ADMIN and not ctx.migration_checked:
                ctx.migration_checked = True
                await self._run_bulk_migration(ctx)
                if not ctx.auth_is_current(generation):
                    return ctx

            contracts = await ctx.store.load_contracts()
            if not ctx.auth_is_current(generation):
                return ctx
            ctx.contracts = contracts

            contract_id = ctx.active_contract_id or pick_default_contract(contracts, self.default_contract_id)
            if contract_id:
                await self.engine.activate_contract(ctx, contract_id)
            else:
                self.engine.deactivate(ctx)
        except ClauseSyncError as e:
            logger.error(f"[!] Error handling auth state for {identity.email}: {e}")
            if ctx.auth_is_current(generation):
                self._sign_out_state(ctx)
        return ctx

    async def _run_bulk_migration(self, ctx: SessionContext) -> None:
        try:
            if not self.migration.is_needed():
                return
            logger.info("[MIGRATION] Legacy archive migration needed, starting...")
            await self.migration.migrate_all(ctx.store)
        except Exception as e:
            # The flag is back at pending; the next admin session retries
            logger.error(f"[!] Migration failed: {e}")

    def _sign_out_state(self, ctx: SessionContext) -> None:
        self.engine.deactivate(ctx)
        ctx.identity = None
        ctx.profile = None
        ctx.contracts = []
        ctx.store = self.base_store.with_user(None)
        ctx.migration_checked = False
        ctx.reset()

    def _end(self, token: str) -> None:
        ctx = self._sessions.pop(token, None)
        if ctx is None:
            return
        ctx.auth_generation += 1
        self._sign_out_state(ctx)
        ctx.alive = False
        logger.info("[Auth] Session closed")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def context_for(self, token: Optional[str]) -> SessionContext:
        """Session behind a token; tokens issued before a restart are rebuilt on first use"""
        if not token:
            raise Unauthenticated()
        ctx = self._sessions.get(token)
        if ctx is not None and ctx.is_authenticated:
            return ctx

        identity = self.auth.resolve(token)
        if identity is None:
            raise Unauthenticated()
        await self._on_auth_state(token, identity)
        ctx = self._sessions.get(token)
        if ctx is None or not ctx.is_authenticated:
            raise Unauthenticated()
        return ctx

    def get(self, token: str) -> Optional[SessionContext]:
        return self._sessions.get(token)

    # ------------------------------------------------------------------
    # User management (admin only)
    # ------------------------------------------------------------------

    def list_users(self, ctx: SessionContext) -> List[UserProfile]:
        self._require_admin(ctx)
        return self.auth.list_users()

    def update_role(self, ctx: SessionContext, uid: str, role: Role) -> UserProfile:
        self._require_admin(ctx)
        profile = self.auth.update_role(uid, role)
        for other in self._sessions.values():
            if other.identity and other.identity.uid == uid:
                other.profile = profile
                if profile.role == Role.PENDING:
                    self.engine.deactivate(other)
                    other.contracts = []
        return profile

    @staticmethod
    def _require_admin(ctx: SessionContext) -> None:
        ctx.require_content_access()
        if ctx.role != Role.ADMIN:
            raise PermissionDenied("Only administrators can manage users")
