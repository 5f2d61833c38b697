import asyncio
import json
import logging
import os
from pathlib import Path

from companion_voice.ports.control import ControlCommand, ControlHandler

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = "/tmp/companion-voice.sock"


class UnixSocketControlServer:
    """Newline-delimited JSON request/response over a unix socket.

    Each request is handed to ``handler`` and its dict result is written
    back to the client.
    """

    def __init__(
        self,
        handler: ControlHandler,
        socket_path: str = DEFAULT_SOCKET_PATH,
    ) -> None:
        self._handler = handler
        self._socket_path = socket_path
        self._server: asyncio.Server | None = None

    @property
    def socket_path(self) -> str:
        return self._socket_path

    async def start(self) -> None:
        socket_file = Path(self._socket_path)
        if socket_file.exists():
            socket_file.unlink()

        self._server = await asyncio.start_unix_server(
            self._handle_client,
            path=self._socket_path,
        )
        os.chmod(self._socket_path, 0o600)
        logger.info("Control socket listening at %s", self._socket_path)

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        socket_file = Path(self._socket_path)
        if socket_file.exists():
            socket_file.unlink()

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        try:
            raw = await asyncio.wait_for(reader.readline(), timeout=5.0)
            if not raw:
                return

            try:
                request = json.loads(raw.decode().strip())
            except json.JSONDecodeError:
                logger.warning("Invalid JSON from client")
                response = {"status": "error", "error": "invalid json"}
            else:
                if not isinstance(request, dict):
                    request = {}
                command = ControlCommand(
                    action=str(request.get("action", "")),
                    payload=request.get("payload"),
                )
                logger.debug("Control command: %s", command.action)
                response = await self._handler(command)

            writer.write((json.dumps(response) + "\n").encode())
            await writer.drain()
        except asyncio.TimeoutError:
            logger.warning("Client connection timed out")
        except Exception:
            logger.exception("Error handling control client")
        finally:
            writer.close()
            await writer.wait_closed()


class UnixSocketControlClient:
    def __init__(self, socket_path: str = DEFAULT_SOCKET_PATH) -> None:
        self._socket_path = socket_path

    async def send_command(self, action: str, payload: dict | None = None) -> dict:
        reader, writer = await asyncio.open_unix_connection(self._socket_path)
        try:
            request: dict = {"action": action}
            if payload:
                request["payload"] = payload
            writer.write((json.dumps(request) + "\n").encode())
            await writer.drain()

            raw = await asyncio.wait_for(reader.readline(), timeout=10.0)
            return json.loads(raw.decode().strip())
        finally:
            writer.close()
            await writer.wait_closed()
