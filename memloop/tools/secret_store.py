"""Encrypted secret storage, delegated to the memory backend."""

from typing import Any, Literal

from pydantic import Field

from memloop.dispatch import ToolContext
from memloop.registry import define_tool
from memloop.tools.common import ToolArgs, segment

SecretType = Literal["api_key", "password", "token", "credential", "other"]


class StoreSecretArgs(ToolArgs):
    service: str = Field(..., min_length=1, description='Service name, e.g. "github"')
    value: str = Field(..., min_length=1, description="The secret value to encrypt and store")
    type: SecretType | None = Field(None, description="Secret type, detected when omitted")
    description: str | None = Field(None, description="User-friendly description")
    expires_in_days: int | None = Field(None, ge=1, alias="expiresInDays", description="Optional expiry in days")


class GetSecretArgs(ToolArgs):
    service: str = Field(..., min_length=1, description="Service name")
    type: str | None = Field(None, description="Secret type")
    masked: bool = Field(False, description="Return a redacted value")


class ListSecretsArgs(ToolArgs):
    pass


class DeleteSecretArgs(ToolArgs):
    secret_id: str = Field(..., min_length=1, alias="secretId", description="Secret ID from list_secrets")


class RotateSecretArgs(ToolArgs):
    service: str = Field(..., min_length=1, description="Service name")
    type: str | None = Field(None, description="Secret type")
    new_value: str = Field(..., min_length=1, alias="newValue", description="New secret value")


async def store_secret(ctx: ToolContext, args: StoreSecretArgs) -> Any:
    return await ctx.memory.post(
        "/api/v1/secrets/store",
        {
            "service": args.service,
            "value": args.value,
            "type": args.type,
            "description": args.description,
            "expires_in_days": args.expires_in_days,
            "user_id": ctx.user_id,
        },
    )


async def get_secret(ctx: ToolContext, args: GetSecretArgs) -> Any:
    params: dict[str, Any] = {"service": args.service, "masked": str(args.masked).lower()}
    if args.type:
        params["type"] = args.type
    return await ctx.memory.get("/api/v1/secrets/retrieve", params=params)


async def list_secrets(ctx: ToolContext, args: ListSecretsArgs) -> Any:
    return await ctx.memory.get("/api/v1/secrets/list")


async def delete_secret(ctx: ToolContext, args: DeleteSecretArgs) -> Any:
    return await ctx.memory.delete(f"/api/v1/secrets/{segment(args.secret_id)}")


async def rotate_secret(ctx: ToolContext, args: RotateSecretArgs) -> Any:
    return await ctx.memory.post(
        "/api/v1/secrets/rotate",
        {"service": args.service, "type": args.type, "new_value": args.new_value, "user_id": ctx.user_id},
    )


TOOLS = [
    define_tool("store_secret", "Encrypt and store a secret (API key, password, token).", StoreSecretArgs, store_secret),
    define_tool("get_secret", "Retrieve and decrypt a stored secret.", GetSecretArgs, get_secret),
    define_tool("list_secrets", "List stored secrets (metadata only, no values).", ListSecretsArgs, list_secrets),
    define_tool("delete_secret", "Permanently delete a stored secret.", DeleteSecretArgs, delete_secret),
    define_tool("rotate_secret", "Replace a secret's value, keeping its metadata.", RotateSecretArgs, rotate_secret),
]
