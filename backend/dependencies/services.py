from fastapi import Request

from services.active_calls import ActiveCallDirectory
from services.vapi_client import VapiClient
from services.websocket_manager import BroadcastManager


# These live on app.state; the lifespan handler creates them at startup.

def get_active_calls(request: Request) -> ActiveCallDirectory:
    return request.app.state.active_calls


def get_broadcaster(request: Request) -> BroadcastManager:
    return request.app.state.broadcaster


def get_vapi_client(request: Request) -> VapiClient:
    return request.app.state.vapi_client
