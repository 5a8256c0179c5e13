"""HTTP channel adapter - thin wrapper around ExecutionCoordinator.

This is just a transport layer that:
1. Receives commands over HTTP
2. Passes them to the ExecutionCoordinator (admission + execution)
3. Streams events back as Server-Sent Events

ALL execution logic is in the coordinator - this module only maps it to HTTP.
"""

import json
import logging
from typing import Any, Dict

from aiohttp import web

from ..core.command_generator import STUB_NOTE, generate_command
from ..core.coordinator import ExecutionCoordinator
from ..core.exceptions import BusyError, ValidationError
from ..core.types import OutputEvent

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def format_sse(event: OutputEvent) -> bytes:
    """Frame one event as an SSE ``data:`` message."""
    return f"data: {json.dumps(event.to_dict())}\n\n".encode("utf-8")


class HttpChannel:
    """HTTP channel adapter - thin transport layer only."""

    def __init__(self, coordinator: ExecutionCoordinator):
        """Initialize HTTP channel.

        Args:
            coordinator: ExecutionCoordinator instance (core execution pipeline)
        """
        self.coordinator = coordinator

    async def _read_json(self, request: web.Request) -> Dict[str, Any]:
        try:
            data = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise web.HTTPBadRequest(
                text=json.dumps({"error": "Invalid JSON"}),
                content_type="application/json",
            )
        return data if isinstance(data, dict) else {}

    # HTTP Handlers

    async def handle_execute(self, request: web.Request) -> web.StreamResponse:
        """Handle POST /api/execute - run a command, stream output as SSE."""
        data = await self._read_json(request)
        command = data.get("command")
        if not command:
            return web.json_response({"error": "Command is required"}, status=400)

        try:
            session = self.coordinator.submit(command)
        except ValidationError as e:
            return web.json_response({"error": e.reason}, status=400)
        except BusyError as e:
            return web.json_response({"error": e.message}, status=429)

        response = web.StreamResponse(status=200, headers=SSE_HEADERS)
        async with session:
            try:
                await response.prepare(request)
                async for event in session.events():
                    await response.write(format_sse(event))
                await response.write_eof()
            except ConnectionResetError:
                logger.warning(f"Client disconnected during: {command}")

        return response

    async def handle_logs(self, request: web.Request) -> web.Response:
        """Handle GET /api/logs."""
        records = await self.coordinator.history()
        return web.json_response({"logs": [record.to_dict() for record in records]})

    async def handle_health(self, request: web.Request) -> web.Response:
        """Handle GET /api/health."""
        return web.json_response(self.coordinator.health())

    async def handle_generate(self, request: web.Request) -> web.Response:
        """Handle POST /api/generate - suggest a command for a prompt."""
        data = await self._read_json(request)
        prompt = data.get("prompt")

        try:
            command = generate_command(prompt)
        except ValidationError as e:
            return web.json_response({"error": e.reason}, status=400)

        validation = self.coordinator.admit(command)
        if not validation.valid:
            return web.json_response(
                {"error": "Generated command failed validation", "details": validation.reason},
                status=400,
            )

        return web.json_response({"command": command, "prompt": prompt, "note": STUB_NOTE})

    def create_app(self) -> web.Application:
        """Build the aiohttp application with all routes."""
        app = web.Application()
        app.router.add_post("/api/execute", self.handle_execute)
        app.router.add_post("/api/generate", self.handle_generate)
        app.router.add_get("/api/logs", self.handle_logs)
        app.router.add_get("/api/health", self.handle_health)
        return app
