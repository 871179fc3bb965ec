"""REST API routes for the receiver."""

import logging
from urllib.parse import quote

from fastapi import APIRouter, HTTPException, Response
from pydantic import BaseModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_transfer_manager = None


def init_routes(transfer_manager) -> None:
    """Inject service dependencies into the routes module."""
    global _transfer_manager
    _transfer_manager = transfer_manager


# --- Receiving ---

class ConnectBody(BaseModel):
    transfer_id: str


@router.post("/receive/connect")
async def connect(body: ConnectBody):
    """Connect to the relay and tell the sender we're ready."""
    transfer_id = body.transfer_id.strip()
    if not transfer_id:
        raise HTTPException(status_code=400, detail="Transfer ID is required")
    await _transfer_manager.connect(transfer_id)
    return _transfer_manager.get_status()


@router.post("/receive/disconnect")
async def disconnect():
    await _transfer_manager.disconnect()
    return _transfer_manager.get_status()


@router.get("/receive/status")
async def get_status():
    """Connection status, file metadata, progress and any error."""
    return _transfer_manager.get_status()


@router.get("/receive/download")
async def download():
    """Stream the reassembled file back to the browser."""
    artifact = _transfer_manager.artifact
    if artifact is None:
        raise HTTPException(status_code=404, detail="No completed transfer")

    file_name = artifact.metadata.safe_name
    return Response(
        content=artifact.data,
        media_type=artifact.media_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(file_name)}",
        },
    )


@router.post("/receive/save")
async def save():
    """Write the reassembled file into the configured save directory."""
    try:
        path = await _transfer_manager.save_artifact()
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OSError as e:
        logger.error(f"Failed to save received file: {e}")
        raise HTTPException(status_code=500, detail=f"Could not save file: {e}")
    return {"path": path}


# --- Settings ---

class SettingsBody(BaseModel):
    save_dir: str | None = None


@router.get("/settings")
async def get_settings():
    return {"save_dir": _transfer_manager.save_dir}


@router.put("/settings")
async def update_settings(body: SettingsBody):
    if body.save_dir is not None:
        try:
            _transfer_manager.save_dir = body.save_dir
        except OSError as e:
            raise HTTPException(
                status_code=400, detail=f"Invalid directory: {e}"
            )
    return {"status": "updated"}
