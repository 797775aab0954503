"""
Discover a Zeroconf service of type _sealbox._tcp.local., connect to the advertised
IP:port and run one command per connection.

Commands:
  ENCODE_CERT <local_path>            -> certificate-envelope a local file
  ENCODE_SYM <local_path>             -> symmetric-envelope a local file
  DECODE_CERT <local_path>            -> recover a certificate envelope
  DECODE_SYM <local_path>             -> recover a symmetric envelope
  GET <artifact> [out_path] [offset] [length] -> download an artifact (or part of it)
  LIST                                -> list artifacts on the server
  KEYS                                -> print the server's public keys
  HEALTH                              -> print server status

Usage:
  python -m sealbox.network.client ENCODE_CERT ./report.pdf
  python -m sealbox.network.client --host 127.0.0.1 --port 9999 KEYS

If no command is given, defaults to LIST.
"""

import argparse
import json
import os
import socket
import sys
import threading

from zeroconf import ServiceBrowser, Zeroconf

from sealbox.core.hashing import calculate_sha256
from sealbox.core.models import Operation

SERVICE_TYPE = "_sealbox._tcp.local."
DISCOVER_TIMEOUT = 8.0  # seconds to wait for service discovery
READ_BUF = 4096
NOT_FOUND_PREFIX = b"ERROR: File not found:"


class ServiceFinder:
    def __init__(self, service_type=SERVICE_TYPE, timeout=DISCOVER_TIMEOUT):
        self.zeroconf = Zeroconf()  # opens mDNS sockets
        self.service_type = service_type
        self.found_info = None
        self._found_event = threading.Event()
        self._timeout = timeout
        self.browser = ServiceBrowser(self.zeroconf, self.service_type, handlers=[self._on_service_event])

    def _on_service_event(self, zeroconf, service_type, name, state_change=None):
        """
        Called by ServiceBrowser for added/removed/updated services.
        Resolves the first service seen and prefers its IPv4 address.
        """
        if self._found_event.is_set():
            return

        try:
            info = zeroconf.get_service_info(service_type, name, timeout=2000)  # 2s blocking resolve
        except Exception as e:
            # dropped or delayed mDNS packets; the browser will call again
            print(f"Transient resolution error: {e}")
            return
        if not info or not info.addresses:
            return

        ip = None
        for packed in info.addresses:
            if len(packed) == 4:  # IPv4
                ip = socket.inet_ntoa(packed)
                break
        if ip is None:
            try:
                ip = socket.inet_ntop(socket.AF_INET6, info.addresses[0])
            except (OSError, ValueError):
                return

        props = {}
        for k, v in (info.properties or {}).items():
            if isinstance(k, bytes):
                k = k.decode("utf-8", errors="replace")
            if isinstance(v, bytes):
                v = v.decode("utf-8", errors="replace")
            props[k] = v

        self.found_info = {"name": name, "ip": ip, "port": info.port, "properties": props}
        self._found_event.set()

    def wait_for_service(self):
        got = self._found_event.wait(self._timeout)
        if not got:
            return None
        return self.found_info

    def close(self):
        self.zeroconf.close()


def _read_line(s):
    resp = b""
    while not resp.endswith(b"\n"):
        chunk = s.recv(1024)
        if not chunk:
            raise IOError("no response from server")
        resp += chunk
    return resp.decode("utf-8", errors="replace").strip()


def _read_until_close(s):
    parts = []
    while True:
        try:
            chunk = s.recv(READ_BUF)
        except socket.timeout:
            # treat timeout as end of response
            break
        if not chunk:
            break
        parts.append(chunk)
    return b"".join(parts)


def connect_and_request(ip, port, request_line, recv_file=False, out_path=None, timeout=10):
    """
    Connect to ip:port, send a single request_line (ending with '\n'), and either:
      - if recv_file==False: read the textual reply until the remote closes
      - if recv_file==True: stream bytes to out_path until remote closes
    """
    if recv_file and not out_path:
        raise ValueError("out_path required when recv_file=True")

    with socket.create_connection((ip, port), timeout=timeout) as s:
        s.settimeout(timeout)
        if not request_line.endswith("\n"):
            request_line = request_line + "\n"
        s.sendall(request_line.encode())

        if not recv_file:
            data = _read_until_close(s)
            return {"status": "ok", "text": data.decode("utf-8", errors="replace")}

        first = s.recv(8192)
        if first.startswith(NOT_FOUND_PREFIX):
            rest = _read_until_close(s)
            return {"status": "error", "error": (first + rest).decode(errors="replace").strip()}
        with open(out_path, "wb") as f:
            f.write(first)
            while first:
                try:
                    first = s.recv(8192)
                except socket.timeout:
                    break
                f.write(first)
        return {"status": "ok", "saved_to": out_path}


def cmd_operation(ip, port, operation, local_path, remote_name=None, timeout=60):
    """
    Upload a local file and run one envelope operation on it.
    Protocol:
      Client -> "<OPERATION> <remote_name> <size>\n"
      Server -> "READY\n"  (or "ERROR: ...\n")
      Client -> exactly <size> bytes
      Server -> "OK: <json>\n" or "ERROR: <stage>: <message>\n"
    """
    if not os.path.isfile(local_path):
        return {"status": "error", "error": "local file not found"}

    if remote_name is None:
        remote_name = os.path.basename(local_path)
    size = os.path.getsize(local_path)
    command = operation.value.upper()

    with socket.create_connection((ip, port), timeout=timeout) as s:
        s.settimeout(timeout)
        s.sendall(f"{command} {remote_name} {size}\n".encode())

        resp_text = _read_line(s)
        if not resp_text.upper().startswith("READY"):
            return {"status": "error", "error": resp_text}

        with open(local_path, "rb") as f:
            while True:
                chunk = f.read(8192)
                if not chunk:
                    break
                s.sendall(chunk)

        final_text = _read_until_close(s).decode("utf-8", errors="replace").strip()

    if final_text.startswith("OK:"):
        return {"status": "ok", "result": json.loads(final_text[len("OK:"):])}
    return {"status": "error", "error": final_text}


def cmd_encode(ip, port, local_path, scheme="cert", remote_name=None):
    operation = Operation.ENCODE_CERT if scheme == "cert" else Operation.ENCODE_SYM
    return cmd_operation(ip, port, operation, local_path, remote_name)


def cmd_decode(ip, port, local_path, scheme="cert", remote_name=None):
    operation = Operation.DECODE_CERT if scheme == "cert" else Operation.DECODE_SYM
    return cmd_operation(ip, port, operation, local_path, remote_name)


def cmd_get(ip, port, artifact, out_path=None, offset=None, length=None):
    """Download an artifact; on success the result carries the file's sha256."""
    if out_path is None:
        out_path = artifact
    request = f"GET {artifact}"
    if offset is not None:
        request += f" {offset}"
        if length is not None:
            request += f" {length}"
    res = connect_and_request(ip, port, request, recv_file=True, out_path=out_path)
    if res["status"] == "ok":
        res["sha256"] = calculate_sha256(out_path)
    return res


def cmd_list(ip, port):
    res = connect_and_request(ip, port, "LIST")
    return [line for line in res["text"].splitlines() if line and line != "No artifacts."]


def cmd_keys(ip, port):
    res = connect_and_request(ip, port, "KEYS")
    return json.loads(res["text"])


def cmd_health(ip, port):
    res = connect_and_request(ip, port, "HEALTH")
    return json.loads(res["text"])


def _discover():
    finder = ServiceFinder()
    try:
        print(f"Searching for Zeroconf services of type {SERVICE_TYPE} (timeout {DISCOVER_TIMEOUT}s)...")
        return finder.wait_for_service()
    finally:
        finder.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="SealBox envelope client")
    parser.add_argument("--host", default=None, help="skip discovery and connect to this host")
    parser.add_argument("--port", type=int, default=9999)
    parser.add_argument("command", nargs="?", default="LIST")
    parser.add_argument("args", nargs="*")
    ns = parser.parse_args(argv)

    if ns.host:
        ip, port = ns.host, ns.port
    else:
        info = _discover()
        if not info:
            print("No service found within timeout.")
            return 2
        ip, port = info["ip"], info["port"]

    cmd = ns.command.upper()
    args = ns.args

    if cmd in ("ENCODE_CERT", "ENCODE_SYM", "DECODE_CERT", "DECODE_SYM"):
        if not args:
            print(f"{cmd} requires a local path")
            return 1
        res = cmd_operation(ip, port, Operation.parse(cmd), args[0], args[1] if len(args) > 1 else None)
        print(json.dumps(res, indent=2))
        return 0 if res["status"] == "ok" else 1
    if cmd == "GET":
        if not args:
            print("GET requires an artifact name")
            return 1
        out = args[1] if len(args) > 1 else None
        offset = int(args[2]) if len(args) > 2 else None
        length = int(args[3]) if len(args) > 3 else None
        res = cmd_get(ip, port, args[0], out_path=out, offset=offset, length=length)
        print(res)
        return 0 if res["status"] == "ok" else 1
    if cmd == "LIST":
        print("\n".join(cmd_list(ip, port)))
        return 0
    if cmd == "KEYS":
        print(json.dumps(cmd_keys(ip, port), indent=2))
        return 0
    if cmd == "HEALTH":
        print(json.dumps(cmd_health(ip, port)))
        return 0

    print("Unknown command:", cmd)
    return 1


if __name__ == "__main__":
    sys.exit(main())
