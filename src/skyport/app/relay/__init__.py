"""Console/stats WebSocket relay."""

from skyport.app.relay.router import router

__all__ = ["router"]
