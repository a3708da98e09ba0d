"""
WebSocket manager for live meal counters
"""

import json
import logging
from typing import Dict, List
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends
from sqlalchemy.orm import Session

from mealpass.core.db import get_db
from mealpass.services.repositories import EventRepo, LiveStatRepo

logger = logging.getLogger(__name__)

class WebSocketManager:
    """Manages WebSocket connections per event"""
    
    def __init__(self):
        # event_id -> list of websockets
        self.active_connections: Dict[str, List[WebSocket]] = {}
    
    async def connect(self, websocket: WebSocket, event_id: str):
        """Accept WebSocket connection and add to event room"""
        await websocket.accept()
        self.active_connections.setdefault(event_id, []).append(websocket)
        logger.info(f"WebSocket connected to event {event_id}. Total connections: {len(self.active_connections[event_id])}")
    
    def disconnect(self, websocket: WebSocket, event_id: str):
        """Remove WebSocket connection from event room"""
        connections = self.active_connections.get(event_id)
        if not connections or websocket not in connections:
            return
        connections.remove(websocket)
        logger.info(f"WebSocket disconnected from event {event_id}. Remaining connections: {len(connections)}")
        
        # Clean up empty rooms
        if not connections:
            del self.active_connections[event_id]
    
    async def send_personal_message(self, message: dict, websocket: WebSocket):
        """Send message to specific WebSocket"""
        try:
            await websocket.send_text(json.dumps(message, default=str))
        except Exception as e:
            logger.error(f"Error sending personal message: {e}")
    
    async def broadcast_to_event(self, event_id: str, message: dict):
        """Broadcast message to all WebSockets connected to an event"""
        if event_id not in self.active_connections:
            logger.debug(f"No active connections for event {event_id}")
            return
        
        # Create list copy to avoid modification during iteration
        connections = self.active_connections[event_id].copy()
        
        disconnected = []
        for websocket in connections:
            try:
                await websocket.send_text(json.dumps(message, default=str))
            except Exception as e:
                logger.error(f"Error broadcasting to websocket: {e}")
                disconnected.append(websocket)
        
        for websocket in disconnected:
            self.disconnect(websocket, event_id)
    
    def get_connection_count(self, event_id: str) -> int:
        """Get number of active connections for an event"""
        return len(self.active_connections.get(event_id, []))

# Global WebSocket manager instance
websocket_manager = WebSocketManager()

# Router for WebSocket endpoints
router = APIRouter()

@router.websocket("/events/{event_id}")
async def websocket_endpoint(
    websocket: WebSocket,
    event_id: str,
    db: Session = Depends(get_db)
):
    """Live counters for a dashboard: a snapshot on connect, then one message per redemption"""
    
    event = EventRepo.get(db, event_id)
    if not event:
        await websocket.close(code=4004, reason="Event not found")
        return
    
    await websocket_manager.connect(websocket, event_id)
    
    try:
        welcome_message = {
            "type": "connection",
            "message": f"Connected to event: {event.name}",
            "eventId": event_id,
            "stats": LiveStatRepo.read(db, event_id),
            "connectionCount": websocket_manager.get_connection_count(event_id)
        }
        await websocket_manager.send_personal_message(welcome_message, websocket)
        
        while True:
            data = await websocket.receive_text()
            try:
                client_message = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON received from WebSocket: {data}")
                continue
            
            # Heartbeat
            if client_message.get("type") == "ping":
                await websocket_manager.send_personal_message(
                    {"type": "pong", "timestamp": client_message.get("timestamp")},
                    websocket
                )
    
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        websocket_manager.disconnect(websocket, event_id)
