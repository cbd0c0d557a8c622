from fastapi import APIRouter, WebSocket

router = APIRouter()


@router.websocket("/ws")
async def consultation_socket(websocket: WebSocket):
    """WebSocket endpoint for the AI doctor consultation."""
    from medinet.gateway.setup import get_realtime_gateway

    gateway = get_realtime_gateway()
    if gateway is None:
        await websocket.close(code=1011, reason="Service unavailable")
        return
    await gateway.serve(websocket)
