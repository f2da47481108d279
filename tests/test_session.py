import pytest

from clausesync.database.schemas import ContractMeta, ContractSummary, Role, SavedContract
from clausesync.services.auth_service import AuthService, hash_password, verify_password
from clausesync.services.exceptions import PermissionDenied, Unauthenticated, ValidationError
from clausesync.services.reconciliation import ReconciliationEngine
from clausesync.services.session_controller import SessionRegistry, pick_default_contract
from clausesync.services.clause_store import ClauseStore
from conftest import make_clause


@pytest.fixture
def auth(session_factory):
    return AuthService(session_factory)


@pytest.fixture
def registry(auth, session_factory, migration):
    return SessionRegistry(auth, ClauseStore(session_factory), migration, ReconciliationEngine(migration),
                           default_contract_id="")


def test_password_hashing():
    stored = hash_password("secret1")
    assert verify_password("secret1", stored)
    assert not verify_password("secret2", stored)


@pytest.mark.asyncio
async def test_first_user_is_admin_second_is_pending(auth):
    first = await auth.sign_up("first@example.com", "secret1")
    second = await auth.sign_up("second@example.com", "secret2")
    assert auth.get_profile(first.identity.uid).role == Role.ADMIN
    assert auth.get_profile(second.identity.uid).role == Role.PENDING


@pytest.mark.asyncio
async def test_sign_up_validation(auth):
    with pytest.raises(ValidationError):
        await auth.sign_up("not-an-email", "secret1")
    with pytest.raises(ValidationError):
        await auth.sign_up("a@example.com", "123")
    await auth.sign_up("a@example.com", "secret1")
    with pytest.raises(ValidationError):
        await auth.sign_up("A@example.com", "secret1")


@pytest.mark.asyncio
async def test_sign_in_and_out(auth):
    await auth.sign_up("a@example.com", "secret1")
    with pytest.raises(Unauthenticated):
        await auth.sign_in("a@example.com", "wrong-password")

    result = await auth.sign_in("a@example.com", "secret1")
    assert auth.resolve(result.token).email == "a@example.com"
    await auth.sign_out(result.token)
    assert auth.resolve(result.token) is None


@pytest.mark.asyncio
async def test_auth_listeners(auth):
    events = []
    unsubscribe = auth.on_auth_state_changed(lambda token, identity: events.append(identity))
    result = await auth.sign_up("a@example.com", "secret1")
    await auth.sign_out(result.token)
    unsubscribe()
    await auth.sign_in("a@example.com", "secret1")
    assert [e.email if e else None for e in events] == ["a@example.com", None]


@pytest.mark.asyncio
async def test_admin_sign_in_migrates_and_activates_newest(registry, auth, archive, migration):
    archive.save_contract(SavedContract(id="alpha", name="Alpha", clauses=[make_clause("2"), make_clause("1")]))

    result = await auth.sign_up("admin@example.com", "secret1")
    ctx = registry.get(result.token)

    assert ctx.role == Role.ADMIN
    assert ctx.migration_checked
    assert not migration.is_needed()
    assert [c.id for c in ctx.contracts] == ["alpha"]
    assert ctx.active_contract_id == "alpha"
    assert [c.clause_number for c in ctx.clauses] == ["1", "2"]


@pytest.mark.asyncio
async def test_pending_user_sees_nothing(registry, auth):
    await auth.sign_up("admin@example.com", "secret1")
    result = await auth.sign_up("new@example.com", "secret1")
    ctx = registry.get(result.token)

    assert ctx.is_pending
    assert ctx.contracts == []
    assert ctx.clauses == []
    with pytest.raises(PermissionDenied):
        ctx.require_content_access()
    with pytest.raises(PermissionDenied):
        registry.list_users(ctx)


@pytest.mark.asyncio
async def test_role_update_applies_to_live_sessions(registry, auth):
    admin = await auth.sign_up("admin@example.com", "secret1")
    user = await auth.sign_up("new@example.com", "secret1")
    admin_ctx = registry.get(admin.token)

    users = registry.list_users(admin_ctx)
    assert [u.email for u in users] == ["admin@example.com", "new@example.com"]

    registry.update_role(admin_ctx, user.identity.uid, Role.EDITOR)
    user_ctx = registry.get(user.token)
    assert user_ctx.role == Role.EDITOR
    assert user_ctx.can_edit and not user_ctx.can_delete and not user_ctx.can_upload


@pytest.mark.asyncio
async def test_sign_out_clears_session(registry, auth):
    result = await auth.sign_up("admin@example.com", "secret1")
    ctx = registry.get(result.token)
    await auth.sign_out(result.token)

    assert registry.get(result.token) is None
    assert not ctx.alive
    assert ctx.clauses == []
    assert ctx.identity is None
    with pytest.raises(Unauthenticated):
        await registry.context_for(result.token)


@pytest.mark.asyncio
async def test_context_rebuilt_from_token(registry, auth):
    result = await auth.sign_up("admin@example.com", "secret1")
    registry._sessions.clear()
    ctx = await registry.context_for(result.token)
    assert ctx.identity.email == "admin@example.com"


@pytest.mark.asyncio
async def test_sign_out_state_supersedes_earlier_auth_change(registry, auth):
    result = await auth.sign_up("admin@example.com", "secret1")
    ctx = registry.get(result.token)
    generation = ctx.auth_generation

    await registry.handle_auth_state(ctx, None)
    assert ctx.auth_generation == generation + 1
    assert not ctx.auth_is_current(generation)
    assert ctx.identity is None


def test_default_contract_choice():
    contracts = [ContractSummary(id=i, meta=ContractMeta(title=i, created_by="u")) for i in ["newest", "older"]]
    assert pick_default_contract(contracts, "older") == "older"
    assert pick_default_contract(contracts, "missing") == "newest"
    assert pick_default_contract([], "older") is None


def test_capabilities(make_ctx):
    admin = make_ctx(Role.ADMIN)
    viewer = make_ctx(Role.VIEWER)
    assert admin.can_edit and admin.can_delete and admin.can_upload
    assert not (viewer.can_edit or viewer.can_delete or viewer.can_upload)
    viewer.require_content_access()
    with pytest.raises(PermissionDenied):
        viewer.require("can_edit")

    anonymous = make_ctx()
    anonymous.identity = None
    with pytest.raises(Unauthenticated):
        anonymous.require_content_access()
