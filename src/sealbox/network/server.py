"""
LAN envelope server:
- Advertises itself with Zeroconf (_sealbox._tcp.local.)
- Serves a simple line-oriented protocol backed by sealbox.network.adapter

Protocol:
    ENCODE_CERT | ENCODE_SYM | DECODE_CERT | DECODE_SYM <filename> <size>
    -> server replies READY (or ERROR: ... for a bad or oversized size)
    -> client sends exactly <size> bytes
    -> server replies OK: <json result> or ERROR: <stage>: <message>

    GET <artifact> [offset] [length]
    -> streams that artifact's bytes (or a byte range of it)

    LIST
    -> newline-separated list of artifact names

    KEYS
    -> JSON with the public certificate and transport key

    HEALTH
    -> JSON status line

    STOP
    -> server shuts down

Usage:
    python -m sealbox.network.server --storage-root ~/.sealbox --port 9999
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import socket
from pathlib import Path
from typing import Optional

from zeroconf import ServiceInfo, Zeroconf

from sealbox.core.config import Settings
from sealbox.core.exceptions import FatalInitError, OperationError
from sealbox.core.models import Operation
from sealbox.frontend.cli.logging_config import configure_logging
from .adapter import (
    close_env,
    format_list,
    health_json,
    init_env,
    open_for_get,
    public_keys_json,
    run_operation,
    start_env,
)

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_sealbox._tcp.local."
READ_TIMEOUT = 10.0  # one connection per action, so 10s per read is plenty
MAX_LINE = 4096
SEND_CHUNK = 8192
# slowest upload rate tolerated before an upload is abandoned
MIN_UPLOAD_RATE = 256 * 1024  # bytes per second

OPERATION_COMMANDS = {
    "ENCODE_CERT": Operation.ENCODE_CERT,
    "ENCODE_SYM": Operation.ENCODE_SYM,
    "DECODE_CERT": Operation.DECODE_CERT,
    "DECODE_SYM": Operation.DECODE_SYM,
}


def get_local_ip():
    """A trick to get the current IP using a UDP socket."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(("8.8.8.8", 80))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()


class EnvelopeServer:
    """asyncio TCP server; each connection carries exactly one command."""

    def __init__(self, env: dict, host: str = "", port: int = 9999, read_timeout: float = READ_TIMEOUT):
        self.env = env
        self.host = host
        self.port = port
        self.read_timeout = read_timeout
        self._server: Optional[asyncio.base_events.Server] = None
        self._stopped = asyncio.Event()

    async def start(self) -> int:
        """Bind and start accepting; returns the bound port (useful with port 0)."""
        self._server = await asyncio.start_server(
            self.handle_client, self.host or None, self.port, limit=MAX_LINE
        )
        self.port = self._server.sockets[0].getsockname()[1]
        logger.info("Envelope server listening on port %d", self.port)
        return self.port

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        await self._stopped.wait()
        await self._shutdown()

    def stop(self) -> None:
        """Signal the server to stop accepting connections."""
        logger.info("Signaling server shutdown...")
        self._stopped.set()

    async def _shutdown(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("Envelope server listener stopped.")

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        addr = writer.get_extra_info("peername")
        logger.debug("Connection from %s", addr)
        try:
            raw = await asyncio.wait_for(reader.readline(), timeout=self.read_timeout)
            line = raw.decode("utf-8", errors="replace").strip()
            if not line:
                return
            command, _, rest = line.partition(" ")
            command = command.upper()
            logger.debug("Received command %s from %s", command, addr)

            if command in OPERATION_COMMANDS:
                await self._handle_operation(reader, writer, OPERATION_COMMANDS[command], rest)
            elif command == "GET":
                await self._handle_get(writer, rest)
            elif command == "LIST":
                await self._send(writer, format_list(self.env))
            elif command == "KEYS":
                await self._send(writer, public_keys_json(self.env))
            elif command == "HEALTH":
                await self._send(writer, health_json(self.env))
            elif command == "STOP":
                await self._send(writer, "OK: Server is shutting down.\n")
                self.stop()
            else:
                await self._send(writer, "ERROR - Unknown command\n")
        except asyncio.TimeoutError:
            logger.info("Timeout from %s", addr)
        except (ConnectionError, asyncio.LimitOverrunError, ValueError) as e:
            logger.info("Error handling %s: %s", addr, e)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass
            logger.debug("Disconnected %s", addr)

    async def _handle_operation(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        operation: Operation,
        args: str,
    ) -> None:
        file_name, _, size_str = args.strip().rpartition(" ")
        if not file_name:
            await self._send(writer, "ERROR: command requires filename and size\n")
            return
        try:
            total_size = int(size_str)
            if total_size < 0:
                raise ValueError("negative size")
        except ValueError:
            await self._send(writer, "ERROR: Invalid size\n")
            return

        limit = self.env["settings"].max_upload_bytes
        if total_size > limit:
            # refuse before a single payload byte is read
            await self._send(writer, f"ERROR: received: File too large ({total_size} > {limit} bytes)\n")
            return

        await self._send(writer, "READY\n")
        timeout = self.upload_timeout(total_size)
        try:
            data = await asyncio.wait_for(reader.readexactly(total_size), timeout=timeout)
        except asyncio.IncompleteReadError:
            await self._send(writer, "ERROR: Upload failed: connection closed before all bytes received\n")
            return
        except asyncio.TimeoutError:
            logger.info("Upload of %s timed out after %.1fs", file_name, timeout)
            await self._send(writer, f"ERROR: Upload failed: timed out after {timeout:.1f}s\n")
            return

        try:
            result = await run_operation(self.env, operation, file_name, data)
        except OperationError as e:
            await self._send(writer, f"ERROR: {e.stage.value}: {e.message}\n")
            return
        except FatalInitError as e:
            await self._send(writer, f"ERROR: unavailable: {e}\n")
            return
        await self._send(writer, "OK: " + json.dumps(result.to_dict()) + "\n")

    def upload_timeout(self, size: int) -> float:
        """Per-line read timeout plus time for ``size`` bytes at the minimum rate."""
        return self.read_timeout + size / MIN_UPLOAD_RATE

    async def _handle_get(self, writer: asyncio.StreamWriter, args: str) -> None:
        parts = args.split()
        if not parts:
            await self._send(writer, "ERROR: GET requires an artifact name\n")
            return
        name = parts[0]
        try:
            offset = int(parts[1]) if len(parts) > 1 else 0
            length = int(parts[2]) if len(parts) > 2 else None
            if offset < 0 or (length is not None and length < 0):
                raise ValueError("negative range")
        except ValueError:
            await self._send(writer, "ERROR: Invalid range\n")
            return

        data = await asyncio.to_thread(open_for_get, self.env, name, offset, length)
        if data is None:
            await self._send(writer, f"ERROR: File not found: {name}\n")
            return
        for start in range(0, len(data), SEND_CHUNK):
            writer.write(data[start:start + SEND_CHUNK])
            await writer.drain()
        logger.info("Sent artifact %s (%d bytes)", name, len(data))

    @staticmethod
    async def _send(writer: asyncio.StreamWriter, text: str) -> None:
        writer.write(text.encode("utf-8"))
        await writer.drain()


# Zeroconf advertisement
def advertise_service(name, port, service=SERVICE_TYPE):
    """Advertise this server using Zeroconf."""
    zeroconf = Zeroconf()
    local_ip = get_local_ip()
    info = ServiceInfo(
        service,
        f"{name}.{service}",
        addresses=[socket.inet_aton(local_ip)],
        port=port,
        properties={"name": name, "version": "1.0"},
        server=f"{socket.gethostname()}.local.",
    )
    zeroconf.register_service(info)
    logger.info("Zeroconf service registered: %s @ %s:%d (%s)", name, local_ip, port, service)
    return zeroconf, info


def withdraw_service(zeroconf, info) -> None:
    logger.info("Unregistering Zeroconf service...")
    try:
        zeroconf.unregister_service(info)
    finally:
        zeroconf.close()


async def serve(settings: Settings, host: str = "") -> None:
    """Initialize key material, then serve until STOP or cancellation."""
    env = init_env(settings)
    try:
        await start_env(env)
        server = EnvelopeServer(env, host=host, port=settings.port)
        await server.start()
        await server.serve_forever()
    finally:
        close_env(env)


# Main entry point
def main(argv=None):
    parser = argparse.ArgumentParser(description="SealBox envelope server")
    parser.add_argument("--storage-root", default=None)
    parser.add_argument("--host", default="")
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--name", default=None)
    parser.add_argument("--max-upload-bytes", type=int, default=None)
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--no-advertise", action="store_true")
    args = parser.parse_args(argv)

    settings = Settings.from_env().with_overrides(
        storage_root=Path(args.storage_root).expanduser() if args.storage_root else None,
        port=args.port,
        max_upload_bytes=args.max_upload_bytes,
        log_level=args.log_level and args.log_level.upper(),
    )
    configure_logging(settings.log_level)

    name = args.name or f"SealBox-{socket.gethostname()}"
    zeroconf = info = None
    if not args.no_advertise:
        zeroconf, info = advertise_service(name, settings.port)

    try:
        asyncio.run(serve(settings, host=args.host))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except FatalInitError as e:
        logger.critical("Cannot start: %s", e)
        return 1
    finally:
        if zeroconf is not None:
            withdraw_service(zeroconf, info)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
