import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from clausesync.database.schemas import Clause
from clausesync.routes.dependencies import Services, bearer_token, error_response, get_services
from clausesync.services.clause_store import ClauseSnapshot
from clausesync.services.exceptions import ClauseSyncError, ExtractionFailure, NotFound
from clausesync.services.smart_search import clause_groups, filter_clauses
from clausesync.utils.backup import export_contract

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["Contracts"]
)


class ManualClauseRequest(BaseModel):
    clause_number: str
    clause_title: str = ""
    general_text: str = ""
    particular_text: str = ""


class SearchRequest(BaseModel):
    query: str


class RenameRequest(BaseModel):
    name: str


def _dump(items) -> list:
    return [item.model_dump(mode="json") for item in items]


def _snapshot_payload(snapshot: ClauseSnapshot) -> dict:
    return {
        "contract_id": snapshot.contract_id,
        "revision": snapshot.revision,
        "clauses": _dump(snapshot.clauses),
    }


# ----------------------------------------------------------------------
# Contracts
# ----------------------------------------------------------------------

@router.get("/contracts")
async def list_contracts(token: Optional[str] = Depends(bearer_token), services: Services = Depends(get_services)):
    """All contracts, newest first"""
    try:
        ctx = await services.registry.context_for(token)
        ctx.require_content_access()
        contracts = await services.engine.refresh_contracts(ctx)
        return JSONResponse(content={
            "contracts": _dump(contracts),
            "active_contract_id": ctx.active_contract_id,
            "total": len(contracts)
        })
    except Exception as e:
        return error_response(e)


@router.post("/contracts/{contract_id}/activate")
async def activate_contract(
    contract_id: str,
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    try:
        ctx = await services.registry.context_for(token)
        clauses = await services.engine.activate_contract(ctx, contract_id)
        return JSONResponse(content={
            "contract_id": contract_id,
            "project_name": ctx.project_name,
            "clauses": _dump(clauses),
            "total": len(clauses)
        })
    except Exception as e:
        return error_response(e)


@router.get("/contracts/{contract_id}/export")
async def export_contract_file(
    contract_id: str,
    source: str = Query("store", pattern="^(store|archive)$"),
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    """Backup file of a contract, from the store or from the legacy archive"""
    try:
        ctx = await services.registry.context_for(token)
        if source == "archive":
            ctx.require_content_access()
            contract = services.archive.get_contract(contract_id)
            if contract is None:
                raise NotFound(f"Archived contract {contract_id} not found")
        else:
            contract = await services.engine.export_contract(ctx, contract_id)

        filename, content = export_contract(contract)
        return Response(
            content=content,
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'}
        )
    except Exception as e:
        return error_response(e)


@router.post("/contracts/import")
async def import_contract(
    file: UploadFile = File(...),
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    try:
        ctx = await services.registry.context_for(token)
        ctx.require("can_upload")
        content = await services.file_handler.read_backup(file)
        result = await services.engine.import_contract(ctx, content)
        return JSONResponse(content=result.model_dump(mode="json"))
    except Exception as e:
        return error_response(e)


# ----------------------------------------------------------------------
# Active contract clauses
# ----------------------------------------------------------------------

@router.get("/contracts/active/clauses")
async def get_active_clauses(
    q: str = "",
    types: Optional[List[str]] = Query(None),
    group: Optional[str] = None,
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    """Clauses of the active contract in canonical order, with the local filters applied"""
    try:
        ctx = await services.registry.context_for(token)
        ctx.require_content_access()
        clauses = filter_clauses(ctx.clauses, q, types, group)
        return JSONResponse(content={
            "contract_id": ctx.active_contract_id,
            "project_name": ctx.project_name,
            "initial_load": ctx.view.is_initial_load,
            "groups": clause_groups(ctx.clauses),
            "clauses": _dump(clauses),
            "total": len(clauses)
        })
    except Exception as e:
        return error_response(e)


@router.post("/contracts/active/clauses")
async def add_clause(
    body: ManualClauseRequest,
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    try:
        ctx = await services.registry.context_for(token)
        clause = await services.engine.add_manual_clause(
            ctx, body.clause_number, body.clause_title, body.general_text, body.particular_text
        )
        return JSONResponse(content=clause.model_dump(mode="json"), status_code=201)
    except Exception as e:
        return error_response(e)


@router.put("/contracts/active/clauses")
async def update_clause(
    clause: Clause,
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    try:
        ctx = await services.registry.context_for(token)
        saved = await services.engine.update_clause(ctx, clause)
        return JSONResponse(content=saved.model_dump(mode="json"))
    except Exception as e:
        return error_response(e)


@router.delete("/contracts/active/clauses/{clause_number}")
async def delete_clause(
    clause_number: str,
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    try:
        ctx = await services.registry.context_for(token)
        clause_key = await services.engine.delete_clause(ctx, clause_number)
        return JSONResponse(content={"status": "success", "clause_id": clause_key})
    except Exception as e:
        return error_response(e)


@router.post("/contracts/active/search")
async def smart_search(
    body: SearchRequest,
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    """LLM-ranked search over the active contract"""
    try:
        ctx = await services.registry.context_for(token)
        ctx.require_content_access()
        if services.smart_search is None:
            raise ExtractionFailure("Smart search is not configured (GEMINI_API_KEY missing)")
        results = await services.smart_search.search(body.query, ctx.clauses)
        return JSONResponse(content={"query": body.query, "results": _dump(results)})
    except Exception as e:
        return error_response(e)


async def _forward_snapshots(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        snapshot = await queue.get()
        await websocket.send_json(_snapshot_payload(snapshot))


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Client messages are ignored; returns once the client goes away"""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/contracts/{contract_id}/live")
async def live_clauses(websocket: WebSocket, contract_id: str, token: str = "",
                       services: Services = Depends(get_services)):
    """Streams the full sorted clause list after every change of one contract"""
    try:
        ctx = await services.registry.context_for(token)
        ctx.require_content_access()
    except ClauseSyncError as e:
        await websocket.close(code=4401 if e.status_code == 401 else 4403, reason=e.message)
        return

    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = ctx.store.subscribe_to_clauses(contract_id, queue.put_nowait)
    sender = asyncio.create_task(_forward_snapshots(websocket, queue))
    receiver = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.error(f"[!] Live stream for {contract_id} failed: {error}")
    finally:
        sender.cancel()
        receiver.cancel()
        unsubscribe()
        logger.info(f"[Live] Subscriber for {contract_id} disconnected "
                    f"({ctx.store.feed.subscriber_count(contract_id)} remaining)")


# ----------------------------------------------------------------------
# Session + legacy archive
# ----------------------------------------------------------------------

@router.post("/session/reset")
async def reset_session(token: Optional[str] = Depends(bearer_token), services: Services = Depends(get_services)):
    """Back to the input stage; an in-flight analysis is abandoned"""
    try:
        ctx = await services.registry.context_for(token)
        ctx.reset()
        return JSONResponse(content=ctx.to_dict())
    except Exception as e:
        return error_response(e)


@router.get("/archive")
async def list_archive(token: Optional[str] = Depends(bearer_token), services: Services = Depends(get_services)):
    try:
        ctx = await services.registry.context_for(token)
        ctx.require_content_access()
        contracts = services.archive.list_contracts()
        return JSONResponse(content={
            "contracts": [
                {"id": c.id, "name": c.name, "timestamp": c.timestamp, "metadata": c.metadata.model_dump()}
                for c in contracts
            ],
            "migration_state": services.migration.state.get().value,
            "total": len(contracts)
        })
    except Exception as e:
        return error_response(e)


@router.put("/archive/{contract_id}")
async def rename_archived(
    contract_id: str,
    body: RenameRequest,
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    try:
        ctx = await services.registry.context_for(token)
        ctx.require("can_delete")
        contract = services.archive.rename_contract(contract_id, body.name)
        return JSONResponse(content={"id": contract.id, "name": contract.name})
    except Exception as e:
        return error_response(e)


@router.delete("/archive/{contract_id}")
async def delete_archived(
    contract_id: str,
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    try:
        ctx = await services.registry.context_for(token)
        ctx.require("can_delete")
        if not services.archive.delete_contract(contract_id):
            raise NotFound(f"Archived contract {contract_id} not found")
        return JSONResponse(content={"status": "success", "id": contract_id})
    except Exception as e:
        return error_response(e)
