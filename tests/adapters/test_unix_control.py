import asyncio

import pytest

from companion_voice.adapters.unix_control import (
    UnixSocketControlServer,
    UnixSocketControlClient,
)
from companion_voice.ports.control import ControlCommand


class RecordingHandler:
    def __init__(self) -> None:
        self.commands: list[ControlCommand] = []

    async def __call__(self, command: ControlCommand) -> dict:
        self.commands.append(command)
        return {"status": "ok", "action": command.action}


class TestUnixSocketControl:
    @pytest.mark.asyncio
    async def test_server_start_stop(self, tmp_path):
        socket_path = str(tmp_path / "test.sock")
        server = UnixSocketControlServer(RecordingHandler(), socket_path=socket_path)
        await server.start()
        assert (tmp_path / "test.sock").exists()
        await server.stop()
        assert not (tmp_path / "test.sock").exists()

    @pytest.mark.asyncio
    async def test_stale_socket_file_is_replaced(self, tmp_path):
        socket_file = tmp_path / "test.sock"
        socket_file.write_text("")
        server = UnixSocketControlServer(RecordingHandler(), socket_path=str(socket_file))
        await server.start()
        await server.stop()

    @pytest.mark.asyncio
    async def test_handler_response_reaches_client(self, tmp_path):
        socket_path = str(tmp_path / "test.sock")
        handler = RecordingHandler()
        server = UnixSocketControlServer(handler, socket_path=socket_path)
        await server.start()

        client = UnixSocketControlClient(socket_path=socket_path)
        result = await client.send_command("status")

        assert result == {"status": "ok", "action": "status"}
        assert handler.commands == [ControlCommand(action="status", payload=None)]
        await server.stop()

    @pytest.mark.asyncio
    async def test_payload_is_forwarded(self, tmp_path):
        socket_path = str(tmp_path / "test.sock")
        handler = RecordingHandler()
        server = UnixSocketControlServer(handler, socket_path=socket_path)
        await server.start()

        client = UnixSocketControlClient(socket_path=socket_path)
        payload = {"profile": {"name": "Rose"}, "voice": "male"}
        result = await client.send_command("start", payload)

        assert result["status"] == "ok"
        assert handler.commands[0].payload == payload
        await server.stop()

    @pytest.mark.asyncio
    async def test_invalid_json_gets_error_response(self, tmp_path):
        socket_path = str(tmp_path / "test.sock")
        handler = RecordingHandler()
        server = UnixSocketControlServer(handler, socket_path=socket_path)
        await server.start()

        reader, writer = await asyncio.open_unix_connection(socket_path)
        writer.write(b"not json\n")
        await writer.drain()
        raw = await asyncio.wait_for(reader.readline(), timeout=2.0)
        writer.close()
        await writer.wait_closed()

        assert b'"error"' in raw
        assert handler.commands == []
        await server.stop()

    @pytest.mark.asyncio
    async def test_client_connection_refused(self, tmp_path):
        client = UnixSocketControlClient(socket_path=str(tmp_path / "missing.sock"))
        with pytest.raises((ConnectionRefusedError, FileNotFoundError)):
            await client.send_command("status")
