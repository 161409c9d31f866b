#!/usr/bin/env python3
"""
Punto de entrada del proxy inverso FTP.

    ftpproxy [opciones] LOCAL_PORT SERVER_HOST SERVER_PORT [LOCAL_PORT SERVER_HOST SERVER_PORT ...]

Cada terna abre un listener en LOCAL_PORT que reenvía el canal de control a
SERVER_HOST:SERVER_PORT, reescribiendo las direcciones de PORT, EPRT, 227 y 229.
"""

import argparse
import logging
import signal
import threading
import sys

from ftpproxy.config import ProxyConfig, parse_port_range
from ftpproxy.core.address import Endpoint
from ftpproxy.entities.ftp_session import session_handler
from ftpproxy.entities.reverse_proxy import ReverseProxy

logger = logging.getLogger("ftpproxy.main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ftpproxy", description="Reverse proxy for FTP control and data connections")
    parser.add_argument("routes", nargs="+", metavar="LOCAL_PORT SERVER_HOST SERVER_PORT",
                        help="Local port, remote server host name and remote server port (repeatable)")
    parser.add_argument("--data-connection-port", metavar="FIRST[-LAST]",
                        help="Local port or port range for data connection forwarding (default: ephemeral)")
    parser.add_argument("--bind-address", help="Accept connect requests to only this address")
    parser.add_argument("--backlog", type=int, help="Maximum queue length for incoming connections")
    parser.add_argument("--server-connection-timeout", type=float, metavar="SECONDS",
                        help="Timeout for creating connections to the remote server")
    parser.add_argument("--replace-eprt-with-port", action="store_true", default=None,
                        help="Forward IPv4 EPRT commands as PORT commands")
    parser.add_argument("--strict-replies", action="store_true", default=None,
                        help="Require multi-line replies to close with their opening code")

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--quiet", action="store_const", dest="log_level", const=logging.WARNING)
    verbosity.add_argument("--verbose", action="store_const", dest="log_level", const=logging.DEBUG)
    verbosity.add_argument("--debug", action="store_const", dest="log_level", const=logging.DEBUG)
    parser.set_defaults(log_level=logging.INFO)
    return parser


def parse_args(argv=None) -> tuple[ProxyConfig, list[tuple[int, Endpoint]], int]:
    """Retorna (config, [(puerto_local, servidor)], nivel_de_log)."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = ProxyConfig.from_env()
    except ValueError as e:
        parser.error(str(e))

    if args.data_connection_port:
        try:
            config.data_port_first, config.data_port_last = parse_port_range(args.data_connection_port)
        except ValueError as e:
            parser.error(f"Invalid argument to '--data-connection-port': {e}")

    if args.bind_address is not None:
        config.bind_address = args.bind_address
    if args.backlog is not None:
        config.backlog = args.backlog
    if args.server_connection_timeout is not None:
        config.server_connection_timeout = args.server_connection_timeout
    if args.replace_eprt_with_port is not None:
        config.replace_eprt_with_port = args.replace_eprt_with_port
    if args.strict_replies is not None:
        config.strict_replies = args.strict_replies

    if len(args.routes) % 3 != 0:
        parser.error("Local port, remote server host name and/or remote server port missing")

    routes = []
    for i in range(0, len(args.routes), 3):
        local_port, host, server_port = args.routes[i:i + 3]
        if not (local_port.isdigit() and server_port.isdigit()):
            parser.error(f"Invalid route '{' '.join(args.routes[i:i + 3])}'")
        routes.append((int(local_port), Endpoint(host, int(server_port))))

    return config, routes, args.log_level


def start_proxies(config: ProxyConfig, routes) -> list[ReverseProxy]:
    handler = session_handler(config)
    proxies = []

    for local_port, server_address in routes:
        rp = ReverseProxy(
            Endpoint(config.bind_address, local_port),
            config.backlog,
            server_address,
            config.server_connection_timeout,
            handler,
        )
        threading.Thread(target=rp.run, name=f"ftpproxy-{local_port}", daemon=True).start()
        logger.info("FTP reverse proxy listening on %s, forwarding to %s", rp.endpoint_address, server_address)
        proxies.append(rp)

    return proxies


def main(argv=None):
    config, routes, log_level = parse_args(argv)
    logging.basicConfig(level=log_level, format='%(asctime)s %(levelname)s %(name)s %(message)s')
    logger.debug("Configuration: %s", config)

    try:
        proxies = start_proxies(config, routes)
    except OSError as e:
        logger.error("Unable to start proxy: %s", e)
        sys.exit(1)

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Shutting down (signal %d)", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    stop_event.wait()
    for rp in proxies:
        rp.stop()


if __name__ == "__main__":
    main()
