import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from clausesync.routes.dependencies import Services, bearer_token, error_response, get_services

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/extraction",
    tags=["Clause Extraction"]
)


class TextExtractionRequest(BaseModel):
    general: str = ""
    particular: str = ""


def _result_payload(result, request_id: str) -> dict:
    if result is None:
        return {"request_id": request_id, "status": "abandoned"}
    payload = result.model_dump(mode="json")
    payload.update({"request_id": request_id, "status": "success", "timestamp": datetime.now().isoformat()})
    return payload


@router.post("/document")
async def extract_document(
    file: UploadFile = File(...),
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    """Single PDF: one extraction call per page, then finalize into a contract"""
    request_id = f"req_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    logger.info(f"[{request_id}] Document extraction: {file.filename}")
    file_path = None
    try:
        ctx = await services.registry.context_for(token)
        ctx.require("can_upload")
        file_path = await services.file_handler.save_upload(file)
        result = await services.engine.analyze_document(ctx, file_path)
        return JSONResponse(content=_result_payload(result, request_id))
    except Exception as e:
        return error_response(e)
    finally:
        await services.file_handler.cleanup(file_path)


@router.post("/dual")
async def extract_dual_documents(
    general: UploadFile = File(...),
    particular: UploadFile = File(...),
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    """General + particular conditions PDFs, processed in paired page chunks"""
    request_id = f"req_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    logger.info(f"[{request_id}] Dual extraction: {general.filename} | {particular.filename}")
    general_path = particular_path = None
    try:
        ctx = await services.registry.context_for(token)
        ctx.require("can_upload")
        general_path = await services.file_handler.save_upload(general)
        particular_path = await services.file_handler.save_upload(particular)
        result = await services.engine.analyze_dual_documents(ctx, general_path, particular_path)
        return JSONResponse(content=_result_payload(result, request_id))
    except Exception as e:
        return error_response(e)
    finally:
        await services.file_handler.cleanup(general_path, particular_path)


@router.post("/text")
async def extract_text(
    body: TextExtractionRequest,
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    """Pasted general / particular text, one extraction call"""
    request_id = f"req_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    try:
        ctx = await services.registry.context_for(token)
        result = await services.engine.analyze_text(ctx, body.general, body.particular)
        return JSONResponse(content=_result_payload(result, request_id))
    except Exception as e:
        return error_response(e)
