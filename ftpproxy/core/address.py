"""
Codificación y decodificación de las direcciones que FTP incrusta en el
canal de control: argumentos de PORT y EPRT, y respuestas 227 y 229.

Todas las funciones son puras. Los decodificadores devuelven None cuando
la línea no tiene la forma esperada; nunca lanzan excepciones.
"""

import ipaddress
import re
from typing import NamedTuple, Optional

COMMAND_PORT = re.compile(r"PORT (\d+),(\d+),(\d+),(\d+),(\d+),(\d+)", re.IGNORECASE)
COMMAND_EPRT = re.compile(r"EPRT \|([12])\|([^|]+)\|(\d+)\|", re.IGNORECASE)
REPLY_227 = re.compile(r"227 .*\((\d+),(\d+),(\d+),(\d+),(\d+),(\d+)\).*")
REPLY_229 = re.compile(r"229 .*\(\|\|\|(\d+)\|\).*")

PROTOCOL_IPV4 = "1"
PROTOCOL_IPV6 = "2"


class Endpoint(NamedTuple):
    """Par (dirección, puerto). Se puede pasar directamente a socket.connect/bind."""

    address: str
    port: int

    def protocol(self) -> str:
        """Familia de la dirección según RFC 2428: "1" para IPv4, "2" para IPv6."""
        ip = ipaddress.ip_address(self.address)
        if ip.version == 6 and ip.ipv4_mapped is None:
            return PROTOCOL_IPV6
        return PROTOCOL_IPV4

    def ipv4_octets(self) -> list[int]:
        """
        Los cuatro octetos IPv4 de la dirección. Las direcciones IPv6
        mapeadas (::ffff:a.b.c.d) se tratan como su forma IPv4.
        """
        ip = ipaddress.ip_address(self.address)
        if ip.version == 6:
            if ip.ipv4_mapped is None:
                raise ValueError(f"Cannot express IPv6 address {self.address} in PORT format")
            ip = ip.ipv4_mapped
        return list(ip.packed)

    def __str__(self):
        if ":" in self.address:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"


def _octets_endpoint(groups) -> Optional[Endpoint]:
    values = [int(g) for g in groups]
    if any(v > 255 for v in values):
        return None
    address = ".".join(str(v) for v in values[:4])
    return Endpoint(address, (values[4] << 8) + values[5])


def commafy(endpoint: Endpoint) -> str:
    """Convierte un Endpoint IPv4 al formato 'a1,a2,a3,a4,p1,p2' de FTP."""
    if not 0 <= endpoint.port <= 0xFFFF:
        raise ValueError(f"Port out of range: {endpoint.port}")
    octets = endpoint.ipv4_octets() + [endpoint.port >> 8, endpoint.port & 0xFF]
    return ",".join(str(o) for o in octets)


# ----------------- PORT -----------------
def parse_port_command(line: str) -> Optional[Endpoint]:
    m = COMMAND_PORT.fullmatch(line)
    if not m:
        return None
    return _octets_endpoint(m.groups())


def format_port_command(endpoint: Endpoint) -> str:
    return "PORT " + commafy(endpoint)


# ----------------- EPRT -----------------
def parse_eprt_command(line: str) -> Optional[tuple[str, Endpoint]]:
    """Retorna (protocolo, Endpoint) o None si la línea no es un EPRT válido."""
    m = COMMAND_EPRT.fullmatch(line)
    if not m:
        return None

    protocol, address, port = m.group(1), m.group(2), int(m.group(3))
    if port > 0xFFFF:
        return None

    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return None

    # La familia declarada tiene que coincidir con la dirección
    if (protocol == PROTOCOL_IPV4) != (ip.version == 4):
        return None

    return protocol, Endpoint(str(ip), port)


def format_eprt_command(endpoint: Endpoint) -> str:
    """El protocolo se toma de la familia de la dirección que se anuncia."""
    return f"EPRT |{endpoint.protocol()}|{endpoint.address}|{endpoint.port}|"


# ----------------- 227 -----------------
def parse_227_reply(reply: str) -> Optional[Endpoint]:
    m = REPLY_227.fullmatch(reply)
    if not m:
        return None
    return _octets_endpoint(m.groups())


def format_227_reply(endpoint: Endpoint) -> str:
    return f"227 Entering Passive Mode ({commafy(endpoint)})"


# ----------------- 229 -----------------
def parse_229_reply(reply: str) -> Optional[int]:
    """
    Retorna sólo el puerto: la respuesta 229 no lleva dirección, la dirección
    real es la del servidor en la conexión de control.
    """
    m = REPLY_229.fullmatch(reply)
    if not m:
        return None
    port = int(m.group(1))
    if port > 0xFFFF:
        return None
    return port


def format_229_reply(port: int) -> str:
    return f"229 Entering Extended Passive Mode (|||{port}|)"
