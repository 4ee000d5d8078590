"""
API Routes definition.
Handles the message endpoint, locally stored photos, health and real-time WebSockets.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import FileResponse, JSONResponse

from src.api.dependencies import get_connection_manager, get_local_store, get_message_service
from src.core.errors import GuestbookError, MessageNotFound, ValidationError
from src.core.message import Message, MessagePayload
from src.services.messages import MessageService
from src.services.storage import LocalMessageStore
from src.services.websocket import ConnectionManager

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_METHODS = "GET, POST"
DISALLOWED_METHODS = ["PUT", "PATCH", "DELETE", "HEAD", "OPTIONS", "TRACE", "CONNECT"]


def error_response(status_code: int, error: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


# === PUBLIC ROUTES ===


@router.get("/health")
async def health_check(request: Request) -> Dict[str, Any]:
    """Returns the service status"""
    service: MessageService = request.app.state.message_service
    return {
        "status": "online",
        "backend": "remote" if service.uses_remote else "local",
        "realtime": service.publisher is not None,
    }


@router.get("/messages", response_model=List[Message])
async def get_messages(service: MessageService = Depends(get_message_service)) -> Any:
    """
    Retrieves all messages, newest first
    """
    try:
        return await service.list_messages()
    except GuestbookError as e:
        logger.error("Failed to retrieve messages: %s", e)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to retrieve messages")


@router.post("/messages", response_model=Message, status_code=status.HTTP_201_CREATED)
async def post_message(payload: MessagePayload, service: MessageService = Depends(get_message_service)) -> Any:
    """
    Creates a message, or attaches a photo when the body is {id, photo}.
    """
    # An {id, photo} body attaches the photo to an existing row.
    if payload.id is not None and payload.photo:
        try:
            updated = await service.attach_photo(payload.id, payload.photo)
        except ValidationError as e:
            return error_response(status.HTTP_400_BAD_REQUEST, e.user_message)
        except MessageNotFound:
            return error_response(status.HTTP_404_NOT_FOUND, "message not found")
        except GuestbookError as e:
            logger.error("Photo update for %s failed: %s", payload.id, e)
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to update photo")
        return JSONResponse(status_code=status.HTTP_200_OK, content=updated.model_dump(mode="json"))

    if not payload.name or not payload.message:
        return error_response(status.HTTP_400_BAD_REQUEST, "name and message required")

    try:
        return await service.create_message(payload.name, payload.message, payload.photo)
    except ValidationError as e:
        return error_response(status.HTTP_400_BAD_REQUEST, e.user_message)
    except GuestbookError as e:
        logger.error("Failed to save message: %s", e)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to save message")


@router.api_route("/messages", methods=DISALLOWED_METHODS, include_in_schema=False)
async def messages_method_not_allowed() -> JSONResponse:
    return error_response(
        status.HTTP_405_METHOD_NOT_ALLOWED, "Method Not Allowed", headers={"Allow": ALLOWED_METHODS}
    )


@router.get("/photos/{key:path}")
async def get_photo(key: str, store: Optional[LocalMessageStore] = Depends(get_local_store)) -> FileResponse:
    """
    Serves photos kept by the local fallback storage.
    """
    if store is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="photo not found")

    try:
        path = store.photo_path(key)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="photo not found") from None

    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="photo not found")
    return FileResponse(path)


# === WebSocket Route ===


@router.websocket("/ws/messages")
async def websocket_endpoint(websocket: WebSocket, manager: ConnectionManager = Depends(get_connection_manager)) -> None:
    """
    Real-time guestbook feed.
    Every row inserted through this server is pushed to connected clients.
    """
    await manager.connect(websocket)
    try:
        while True:
            # Messages are submitted over HTTP; reading only detects disconnects.
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
