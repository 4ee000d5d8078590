"""
FastAPI dependencies resolving the services built by the app factory.
"""

from typing import Optional

from fastapi import Request, WebSocket

from src.services.messages import MessageService
from src.services.storage import LocalMessageStore
from src.services.websocket import ConnectionManager


def get_message_service(request: Request) -> MessageService:
    """Returns the message service configured at startup."""
    return request.app.state.message_service


def get_local_store(request: Request) -> Optional[LocalMessageStore]:
    """The local fallback store, or None when the hosted backend is in use."""
    backend = request.app.state.message_service.backend
    return backend if isinstance(backend, LocalMessageStore) else None


def get_connection_manager(websocket: WebSocket) -> ConnectionManager:
    return websocket.app.state.connection_manager
