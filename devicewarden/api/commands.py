"""
Command and audit endpoints for the DeviceWarden agent.

A rejected command is a normal 200 response with success=false. A broken
audit subsystem (crypto or storage failure) is a 503, so callers can tell
the two apart.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel

from ..core.commands import Command
from ..core.errors import (
    CommandFormatError,
    CryptoError,
    StorageError,
    UnsupportedExportFormat,
)

logger = logging.getLogger(__name__)

EXPORT_MEDIA_TYPES = {"json": "application/json", "csv": "text/csv"}


class CommandRequest(BaseModel):
    """Inbound remote command."""

    kind: str
    command_id: str
    issuer: str
    issued_at: str
    signature: str = ""


class CommandResponseModel(BaseModel):
    command_id: str
    success: bool
    message: str
    timestamp: str


def _subsystem_failure(e: Exception) -> HTTPException:
    logger.error(f"Audit subsystem failure: {type(e).__name__}: {e}")
    return HTTPException(
        status_code=503, detail=f"audit subsystem failure: {type(e).__name__}"
    )


def create_command_routes(agent) -> APIRouter:
    """Create FastAPI routes bound to one DeviceAgent."""
    router = APIRouter(prefix="/api/v1", tags=["commands"])

    # === Commands ===

    @router.post("/commands", response_model=CommandResponseModel)
    async def submit_command(request: CommandRequest):
        """Authorize, rate-limit and execute a signed command."""
        try:
            command = Command.from_wire(
                {
                    "kind": request.kind,
                    "command_id": request.command_id,
                    "issuer": request.issuer,
                    "issued_at": request.issued_at,
                    "signature": request.signature,
                }
            )
        except CommandFormatError as e:
            raise HTTPException(status_code=422, detail=str(e))

        try:
            response = await agent.handle_command(command)
        except (CryptoError, StorageError) as e:
            raise _subsystem_failure(e)

        return CommandResponseModel(**response.to_dict())

    @router.get("/commands/history")
    async def get_command_history(limit: Optional[int] = Query(None, ge=0)):
        """Command history, newest first."""
        entries = agent.executor.get_history(limit)
        return {"entries": [e.to_dict() for e in entries], "count": len(entries)}

    @router.delete("/commands/history")
    async def clear_command_history():
        removed = await agent.executor.clear_history()
        return {"cleared": removed}

    @router.get("/commands/stats")
    async def get_command_stats():
        return agent.executor.get_stats()

    # === Audit ===

    @router.get("/audit")
    async def get_audit_log(
        limit: Optional[int] = Query(100, ge=0),
        event_type: Optional[str] = None,
    ):
        """Audit entries, newest first."""
        entries = agent.audit.query(limit=limit, event_type=event_type)
        return {"entries": [e.to_dict() for e in entries], "count": len(entries)}

    @router.get("/audit/export")
    async def export_audit_log(format: str = "json"):
        try:
            data = agent.audit.export(format)
        except UnsupportedExportFormat as e:
            raise HTTPException(status_code=400, detail=str(e))

        fmt = format.lower()
        return Response(
            content=data,
            media_type=EXPORT_MEDIA_TYPES[fmt],
            headers={
                "Content-Disposition": f'attachment; filename="audit_log.{fmt}"'
            },
        )

    @router.delete("/audit")
    async def clear_audit_log():
        try:
            removed = await agent.audit.clear()
        except (CryptoError, StorageError) as e:
            raise _subsystem_failure(e)
        return {"cleared": removed}

    @router.get("/audit/stats")
    async def get_audit_stats():
        return agent.audit.get_stats()

    # === Status ===

    @router.get("/security/status")
    async def get_security_status():
        return agent.security_status()

    @router.get("/status")
    async def get_agent_status():
        return agent.get_status()

    return router
