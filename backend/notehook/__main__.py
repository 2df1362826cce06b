"""
notehook server CLI.

Usage:
    python -m notehook                          Listen on 127.0.0.1:8000
    python -m notehook 0.0.0.0:8080             Listen on one address
    python -m notehook 0.0.0.0:8080 [::]:8080   Listen on several addresses
"""

import argparse
import ipaddress
import socket
import sys
from typing import List, Tuple

import uvicorn

from notehook import config

DEFAULT_LISTEN = "127.0.0.1:8000"


def parse_listen_address(value: str) -> Tuple[str, int]:
    """
    Parse "host:port" or "[ipv6]:port" into (host, port).

    The host must be an IP literal, the same restriction as a socket
    address. Raises argparse.ArgumentTypeError on anything else.
    """
    host, sep, port_text = value.rpartition(":")
    if not sep or not host:
        raise argparse.ArgumentTypeError(f"listen address invalid: {value!r}")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        # Unbracketed IPv6 literals are ambiguous ("::1:8080")
        raise argparse.ArgumentTypeError(f"listen address invalid: {value!r}")

    try:
        ip = ipaddress.ip_address(host)
        port = int(port_text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"listen address invalid: {value!r}")

    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"listen address invalid: {value!r}")

    return str(ip), port


def bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    if family == socket.AF_INET6:
        # Keep "[::]:port" and "0.0.0.0:port" bindable side by side
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
    sock.bind((host, port))
    return sock


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notehook",
        description="Relay Misskey webhook events to Discord webhooks.",
    )
    parser.add_argument(
        "addresses",
        nargs="*",
        type=parse_listen_address,
        metavar="ADDR",
        help=f"address to listen on, host:port (default: {DEFAULT_LISTEN})",
    )
    return parser


def main(argv: List[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    addresses = args.addresses or [parse_listen_address(DEFAULT_LISTEN)]

    sockets = [bind_socket(host, port) for host, port in addresses]
    for host, port in addresses:
        shown = f"[{host}]" if ":" in host else host
        print(f"notehook listening on http://{shown}:{port}")

    server = uvicorn.Server(
        uvicorn.Config(
            "notehook.main:app",
            log_level=config.LOG_LEVEL.lower(),
        )
    )
    server.run(sockets=sockets)
    return 0


if __name__ == "__main__":
    sys.exit(main())
