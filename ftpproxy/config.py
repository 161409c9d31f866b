import os
import re
from typing import Optional

TRUE_VALUES = ('1', 'true', 'yes')

PORT_RANGE = re.compile(r"(\d+)(?:-(\d+))?")


def env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in TRUE_VALUES


def parse_port_range(value: str) -> tuple[int, int]:
    """'first' o 'first-last' -> (first, last)."""
    m = PORT_RANGE.fullmatch(value.strip())
    if not m:
        raise ValueError(f"Invalid port range '{value}'")

    first = int(m.group(1))
    last = int(m.group(2)) if m.group(2) is not None else first
    for port in (first, last):
        if not 0 < port <= 0xFFFF:
            raise ValueError(f"Port {port} out of range in '{value}'")
    return first, last


class ProxyConfig:
    """Opciones del proxy. Los flags de línea de comandos pisan las variables de entorno."""

    def __init__(self,
                 replace_eprt_with_port: bool = False,
                 strict_replies: bool = False,
                 data_port_first: int = 0,
                 data_port_last: int = 0,
                 data_connect_timeout: Optional[float] = 20.0,
                 data_accept_timeout: Optional[float] = 120.0,
                 server_connection_timeout: Optional[float] = None,
                 backlog: int = 50,
                 bind_address: str = "0.0.0.0"):
        self.replace_eprt_with_port = replace_eprt_with_port
        self.strict_replies = strict_replies
        self.data_port_first = data_port_first
        self.data_port_last = data_port_last
        self.data_connect_timeout = data_connect_timeout
        self.data_accept_timeout = data_accept_timeout
        self.server_connection_timeout = server_connection_timeout
        self.backlog = backlog
        self.bind_address = bind_address

    @classmethod
    def from_env(cls) -> "ProxyConfig":
        """
        Variables reconocidas:
            - FTPPROXY_REPLACE_EPRT_WITH_PORT: reescribir EPRT |1|... como PORT
            - FTPPROXY_STRICT_REPLIES: exigir el mismo código al cerrar una respuesta multilínea
            - FTPPROXY_DATA_PORTS: 'first' o 'first-last'
        """
        config = cls(
            replace_eprt_with_port=env_flag("FTPPROXY_REPLACE_EPRT_WITH_PORT"),
            strict_replies=env_flag("FTPPROXY_STRICT_REPLIES"),
        )

        data_ports = os.getenv("FTPPROXY_DATA_PORTS")
        if data_ports:
            config.data_port_first, config.data_port_last = parse_port_range(data_ports)

        return config

    def __repr__(self):
        return f"ProxyConfig({', '.join(f'{k}={v!r}' for k, v in vars(self).items())})"
