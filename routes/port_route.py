"""Expose the port the server actually bound."""

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(prefix="/api")


@router.get("/port")
async def get_port(request: Request):
    """Return the listening port so clients can build their socket URL."""
    port = getattr(request.app.state, "port", None)
    if port is None:
        # Started without run(), e.g. `uvicorn main:app`; fall back to the ASGI server address.
        server = request.scope.get("server")
        port = server[1] if server else None
    if port is None:
        raise HTTPException(status_code=503, detail="Port not assigned yet")
    return {"port": port}
