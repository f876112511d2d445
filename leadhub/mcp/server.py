"""MCP WebSocket endpoint.

External agents connect to ``/mcp`` (optionally ``?user_id=<id>`` to act as
a CRM user) and send JSON command frames. Every frame gets exactly one reply
and a bad frame never closes the connection.
"""

import json
from datetime import UTC, datetime
from typing import Any, assert_never

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError as PydanticValidationError

from leadhub.auth import Actor, ensure_role, resolve_actor
from leadhub.crm.service import CRMService, get_crm_service
from leadhub.errors import AuthenticationError, LeadHubError, ValidationError
from leadhub.mcp.commands import (
    COMMAND_CATALOG,
    AddInteractionCommand,
    CreateLeadCommand,
    GetAnalyticsCommand,
    GetLeadsCommand,
    ListCommandsCommand,
    ManageProductsArgs,
    ManageProductsCommand,
    McpCommand,
    McpRequest,
    McpResponse,
    PingCommand,
    UpdateLeadCommand,
    command_adapter,
    describe_commands,
)
from leadhub.storage.models import InteractionCreate, LeadFilters, UserRole

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["MCP"])

SERVER_NAME = "LeadHub MCP Server"
SERVER_VERSION = "1.0.0"


def _dump(value: Any) -> Any:
    if isinstance(value, list):
        return [_dump(item) for item in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return value


class McpConnectionTracker:
    """Counts live MCP connections."""

    def __init__(self) -> None:
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    def connected(self) -> None:
        self._count += 1

    def disconnected(self) -> None:
        self._count = max(0, self._count - 1)


class McpCommandHandler:
    """Executes command frames for one connection.

    Commands call the same CRMService methods as the REST handlers, with
    the connection's actor (None means the system actor).
    """

    def __init__(self, service: CRMService | None = None, actor: Actor | None = None) -> None:
        self._service = service or get_crm_service()
        self._actor = actor
        self._logger = logger.bind(
            component="mcp_handler",
            actor_id=actor.id if actor else None,
        )

    async def handle(self, message: str | bytes) -> dict[str, Any]:
        """Process one raw frame and build the reply.

        Args:
            message: Text or binary frame received from the client. Binary
                frames must hold UTF-8 JSON.

        Returns:
            Reply frame ready for ``send_json``.
        """
        try:
            request = McpRequest.model_validate(json.loads(message))
        except (ValueError, PydanticValidationError, TypeError):
            self._logger.warning("mcp_malformed_request")
            return McpResponse(
                ok=False,
                error='Malformed request: expected {"command": str, "args": object}',
            ).to_wire()

        if request.command not in COMMAND_CATALOG:
            return McpResponse(
                ok=False, error=f"Unknown command: {request.command}", id=request.id
            ).to_wire()

        try:
            command = command_adapter.validate_python(
                {"command": request.command, "args": request.args}
            )
        except PydanticValidationError as e:
            error = ValidationError.from_pydantic(e, prefix="Invalid arguments")
            return McpResponse(ok=False, error=error.message, id=request.id).to_wire()

        try:
            result = await self._dispatch(command)
        except LeadHubError as e:
            self._logger.info(
                "mcp_command_rejected",
                command=request.command,
                error_type=e.__class__.__name__,
                error=e.message,
            )
            return McpResponse(ok=False, error=e.message, id=request.id).to_wire()
        except Exception as e:
            self._logger.error(
                "mcp_command_failed",
                command=request.command,
                error=str(e),
                exc_info=True,
            )
            return McpResponse(ok=False, error="Internal error", id=request.id).to_wire()

        self._logger.debug("mcp_command_completed", command=request.command)
        return McpResponse(ok=True, result=_dump(result), id=request.id).to_wire()

    # ========================================================================
    # Command implementations
    # ========================================================================

    async def _dispatch(self, command: McpCommand) -> Any:
        match command:
            case CreateLeadCommand(args=args):
                return await self._service.create_lead(args, self._actor)
            case GetLeadsCommand(args=args):
                filters = LeadFilters.model_validate(args.model_dump(exclude={"limit"}))
                return await self._service.list_leads(filters, limit=args.limit)
            case UpdateLeadCommand(args=args):
                return await self._service.update_lead(
                    args.lead_id, args.changes(), self._actor
                )
            case AddInteractionCommand(args=args):
                data = InteractionCreate(type=args.type, text=args.text)
                return await self._service.add_interaction(args.lead_id, data, self._actor)
            case GetAnalyticsCommand():
                return await self._service.get_analytics()
            case ManageProductsCommand(args=args):
                return await self._manage_products(args)
            case PingCommand():
                return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}
            case ListCommandsCommand():
                return {
                    "server": {"name": SERVER_NAME, "version": SERVER_VERSION},
                    "commands": describe_commands(),
                }
            case _:
                assert_never(command)

    async def _manage_products(self, args: ManageProductsArgs) -> Any:
        if args.action == "list":
            return await self._service.list_products(active_only=args.active_only)

        # Catalog writes are admin-only for user connections
        if self._actor is not None:
            ensure_role(self._actor, [UserRole.ADMIN])

        match args:
            case ManageProductsArgs(action="create", data=data):
                return await self._service.create_product(data or {}, self._actor)
            case ManageProductsArgs(action="update", product_id=int(product_id), data=data):
                return await self._service.update_product(product_id, data or {}, self._actor)
            case ManageProductsArgs(action="delete", product_id=int(product_id)):
                product = await self._service.delete_product(product_id, self._actor)
                return {"deleted": True, "id": product.id}
            case ManageProductsArgs(action="reorder", product_ids=list(product_ids)):
                return await self._service.reorder_products(product_ids, self._actor)
        raise ValidationError(f"Invalid arguments for action '{args.action}'")


# Global tracker instance
_tracker: McpConnectionTracker | None = None


def get_connection_tracker() -> McpConnectionTracker:
    """Get the global MCP connection tracker.

    Returns:
        Singleton McpConnectionTracker.
    """
    global _tracker
    if _tracker is None:
        _tracker = McpConnectionTracker()
    return _tracker


def set_connection_tracker(tracker: McpConnectionTracker | None) -> None:
    """Set the global MCP connection tracker.

    Useful for testing.

    Args:
        tracker: McpConnectionTracker instance.
    """
    global _tracker
    _tracker = tracker


@router.websocket("/mcp")
async def mcp_endpoint(
    websocket: WebSocket,
    user_id: int | None = Query(default=None, description="Acting CRM user"),
) -> None:
    """MCP control channel.

    Connect with: ws://host/mcp?user_id=<id>

    Request frame: ``{"command": "update_lead", "args": {...}, "id": 1}``
    Reply frame: ``{"ok": true, "result": {...}, "id": 1}``
    """
    service = get_crm_service()

    actor: Actor | None = None
    if user_id is not None:
        try:
            actor = resolve_actor(service.store, user_id)
        except AuthenticationError as e:
            logger.warning("mcp_connection_rejected", user_id=user_id, reason=e.message)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
            return

    await websocket.accept()

    tracker = get_connection_tracker()
    tracker.connected()
    handler = McpCommandHandler(service, actor)
    logger.info(
        "mcp_client_connected",
        actor_id=actor.id if actor else None,
        connections=tracker.count,
    )

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            message = frame.get("text")
            if message is None:
                message = frame.get("bytes") or b""
            reply = await handler.handle(message)
            await websocket.send_json(reply)
    except WebSocketDisconnect:
        pass
    finally:
        tracker.disconnected()
        logger.info("mcp_client_disconnected", connections=tracker.count)
