"""aiohttp handlers exposing the credential vault to its owners.

Routes (relative to ``prefix``, default ``/api/users/me/api-keys``):

    GET    {prefix}             list the user's keys
    POST   {prefix}             add a key
    GET    {prefix}/{id}        one key
    PUT    {prefix}/{id}        update name / key / active flag
    DELETE {prefix}/{id}        delete a key
    POST   {prefix}/{id}/test   check the stored key still decrypts

Authentication happens upstream; the handler only reads the user id off the
request (``request["user_id"]`` unless a ``user_getter`` is supplied).
"""
import functools
from typing import Any, Callable, Optional

import orjson
from aiohttp import web
from pydantic import BaseModel, ValidationError

from .vault import CredentialVault, VaultError
from .vault.models import CreateAPIKeyRequest, UpdateAPIKeyRequest

DEFAULT_PREFIX = "/api/users/me/api-keys"

Handler = Callable[[web.Request], Any]


class RequestError(VaultError):
    """Web-level failure (bad request, missing authentication)."""

    def __init__(self, kind: str, status: int, message: str):
        super().__init__(message)
        self.kind = kind
        self.status = status


def json_response(data: Any, status: int = 200) -> web.Response:
    return web.Response(
        body=orjson.dumps(data),
        status=status,
        content_type="application/json",
    )


def default_user_getter(request: web.Request) -> Optional[int]:
    return request.get("user_id")


class CredentialHandler:
    """Route table for the owner-facing API key endpoints."""

    def __init__(
        self,
        vault: CredentialVault,
        user_getter: Optional[Callable[[web.Request], Optional[int]]] = None,
        prefix: str = DEFAULT_PREFIX,
    ):
        self._vault = vault
        self._user_getter = user_getter or default_user_getter
        self._prefix = prefix.rstrip("/")

    def setup(self, app: web.Application) -> None:
        """Register all routes on ``app``."""
        item = self._prefix + "/{id}"
        router = app.router
        router.add_get(self._prefix, self._guard(self.list_keys))
        router.add_post(self._prefix, self._guard(self.create_key))
        router.add_get(item, self._guard(self.get_key))
        router.add_put(item, self._guard(self.update_key))
        router.add_delete(item, self._guard(self.delete_key))
        router.add_post(item + "/test", self._guard(self.test_key))

    @staticmethod
    def _guard(handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def wrapper(request: web.Request) -> web.Response:
            try:
                return await handler(request)
            except VaultError as err:
                return json_response(err.to_dict(), status=err.status)
        return wrapper

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    def _user_id(self, request: web.Request) -> int:
        user_id = self._user_getter(request)
        if not user_id:
            raise RequestError("unauthorized", 401, "Authentication required")
        return user_id

    @staticmethod
    def _key_id(request: web.Request) -> int:
        try:
            return int(request.match_info["id"])
        except ValueError:
            raise RequestError(
                "invalid_request", 400, "Invalid API key ID"
            ) from None

    @staticmethod
    async def _body(request: web.Request, model: type[BaseModel]) -> Any:
        # Validation details are dropped: they may echo the submitted key.
        try:
            data = orjson.loads(await request.read())
            return model.model_validate(data)
        except (orjson.JSONDecodeError, ValidationError):
            raise RequestError(
                "invalid_request", 400, "Invalid request body"
            ) from None

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def list_keys(self, request: web.Request) -> web.Response:
        user_id = self._user_id(request)
        keys = await self._vault.list(user_id)
        return json_response({
            "keys": [key.model_dump() for key in keys],
            "count": len(keys),
        })

    async def create_key(self, request: web.Request) -> web.Response:
        user_id = self._user_id(request)
        body = await self._body(request, CreateAPIKeyRequest)
        key = await self._vault.create(
            user_id,
            body.provider,
            body.name,
            body.api_key.get_secret_value(),
        )
        return json_response(key.model_dump(), status=201)

    async def get_key(self, request: web.Request) -> web.Response:
        user_id = self._user_id(request)
        key = await self._vault.get(user_id, self._key_id(request))
        return json_response(key.model_dump())

    async def update_key(self, request: web.Request) -> web.Response:
        user_id = self._user_id(request)
        key_id = self._key_id(request)
        body = await self._body(request, UpdateAPIKeyRequest)
        key = await self._vault.update(
            user_id,
            key_id,
            name=body.name,
            api_key=(
                body.api_key.get_secret_value()
                if body.api_key is not None else None
            ),
            is_active=body.is_active,
        )
        return json_response(key.model_dump())

    async def delete_key(self, request: web.Request) -> web.Response:
        user_id = self._user_id(request)
        await self._vault.delete(user_id, self._key_id(request))
        return json_response({
            "success": True,
            "message": "API key deleted successfully",
        })

    async def test_key(self, request: web.Request) -> web.Response:
        user_id = self._user_id(request)
        await self._vault.test(user_id, self._key_id(request))
        return json_response({
            "success": True,
            "message": "API key is valid and properly stored",
        })
