"""Typed command set of the MCP control channel.

Each command is a pydantic model whose ``command`` literal discriminates the
union, so an incoming request is validated in one step into exactly one
known command with typed arguments.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from leadhub.storage.models import (
    InteractionType,
    LeadCreate,
    LeadPriority,
    LeadStatus,
    LeadUpdate,
)

# ============================================================================
# Envelope
# ============================================================================


class McpRequest(BaseModel):
    """Raw request frame: ``{"command", "args", "id"}``."""

    command: str = Field(..., min_length=1)
    args: dict[str, Any] = Field(default_factory=dict)
    id: str | int | None = None


class McpResponse(BaseModel):
    """Reply frame. ``id`` echoes the request's id when one was sent."""

    ok: bool
    result: Any = None
    error: str | None = None
    id: str | int | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# ============================================================================
# Command arguments
# ============================================================================


class CreateLeadArgs(LeadCreate):
    """Same fields as a REST lead creation."""


class GetLeadsArgs(BaseModel):
    status: LeadStatus | None = None
    assigned_to: int | None = None
    source: str | None = None
    priority: LeadPriority | None = None
    search: str | None = None
    limit: int | None = Field(default=None, ge=1, le=500)


class UpdateLeadArgs(LeadUpdate):
    """Partial lead update addressed by ``lead_id``."""

    lead_id: int

    def changes(self) -> LeadUpdate:
        """Only the fields the caller actually sent."""
        return LeadUpdate.model_validate(
            self.model_dump(exclude_unset=True, exclude={"lead_id"})
        )


class AddInteractionArgs(BaseModel):
    lead_id: int
    type: InteractionType = InteractionType.NOTE
    text: str = Field(..., min_length=1)


class EmptyArgs(BaseModel):
    pass


class ManageProductsArgs(BaseModel):
    """Catalog management; required fields depend on ``action``."""

    action: Literal["list", "create", "update", "delete", "reorder"]
    product_id: int | None = None
    data: dict[str, Any] | None = None
    product_ids: list[int] | None = None
    active_only: bool = False

    @model_validator(mode="after")
    def _check_action_fields(self) -> "ManageProductsArgs":
        if self.action in ("update", "delete") and self.product_id is None:
            raise ValueError(f"product_id is required for action '{self.action}'")
        if self.action in ("create", "update") and self.data is None:
            raise ValueError(f"data is required for action '{self.action}'")
        if self.action == "reorder" and not self.product_ids:
            raise ValueError("product_ids is required for action 'reorder'")
        return self


# ============================================================================
# Commands
# ============================================================================


class CreateLeadCommand(BaseModel):
    command: Literal["create_lead"]
    args: CreateLeadArgs


class GetLeadsCommand(BaseModel):
    command: Literal["get_leads"]
    args: GetLeadsArgs = Field(default_factory=GetLeadsArgs)


class UpdateLeadCommand(BaseModel):
    command: Literal["update_lead"]
    args: UpdateLeadArgs


class AddInteractionCommand(BaseModel):
    command: Literal["add_interaction"]
    args: AddInteractionArgs


class GetAnalyticsCommand(BaseModel):
    command: Literal["get_analytics"]
    args: EmptyArgs = Field(default_factory=EmptyArgs)


class ManageProductsCommand(BaseModel):
    command: Literal["manage_products"]
    args: ManageProductsArgs


class PingCommand(BaseModel):
    command: Literal["ping"]
    args: EmptyArgs = Field(default_factory=EmptyArgs)


class ListCommandsCommand(BaseModel):
    command: Literal["list_commands"]
    args: EmptyArgs = Field(default_factory=EmptyArgs)


McpCommand = Annotated[
    CreateLeadCommand
    | GetLeadsCommand
    | UpdateLeadCommand
    | AddInteractionCommand
    | GetAnalyticsCommand
    | ManageProductsCommand
    | PingCommand
    | ListCommandsCommand,
    Field(discriminator="command"),
]

command_adapter: TypeAdapter[Any] = TypeAdapter(McpCommand)

# Catalog: name -> (args model, description)
COMMAND_CATALOG: dict[str, tuple[type[BaseModel], str]] = {
    "create_lead": (CreateLeadArgs, "Create a new lead"),
    "get_leads": (GetLeadsArgs, "List leads with optional filters"),
    "update_lead": (UpdateLeadArgs, "Update fields of an existing lead"),
    "add_interaction": (AddInteractionArgs, "Log an interaction with a lead"),
    "get_analytics": (EmptyArgs, "Pipeline analytics summary"),
    "manage_products": (
        ManageProductsArgs,
        "List, create, update, delete or reorder catalog products",
    ),
    "ping": (EmptyArgs, "Liveness check"),
    "list_commands": (EmptyArgs, "Describe the available commands"),
}


def describe_commands() -> list[dict[str, Any]]:
    """Command catalog with the JSON schema of each command's arguments."""
    return [
        {
            "name": name,
            "description": description,
            "args_schema": model.model_json_schema(),
        }
        for name, (model, description) in COMMAND_CATALOG.items()
    ]
