from uuid import uuid4

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core import context


def _header(headers: dict[bytes, bytes], *names: bytes) -> str:
    for name in names:
        value = headers.get(name, b"").decode().strip()
        if value:
            return value
    return ""


class RequestContextMiddleware:
    """Attach request, tenant and actor ids to context vars for log correlation."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = _header(headers, b"x-request-id") or str(uuid4())
        tenant_id = _header(headers, b"x-org-id", b"x-tenant-id")
        actor_id = _header(headers, b"x-actor-id")

        context.clear_context()
        context.set_request_id(request_id)
        if tenant_id:
            context.set_tenant_id(tenant_id)
        if actor_id:
            context.set_actor_id(actor_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers_list = list(message.get("headers", []))
                headers_list.append((b"x-request-id", request_id.encode()))
                message["headers"] = headers_list
            await send(message)

        await self.app(scope, receive, send_with_request_id)
