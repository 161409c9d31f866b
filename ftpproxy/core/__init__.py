"""
Núcleo del proxy: códec de direcciones, lector de respuestas,
conexiones de línea y proxies de conexiones de datos.
"""

__all__ = ["Endpoint", "Reply", "Command", "ReplyReader", "LineConnection", "DataConnectionProxy", "PortAllocator"]

def __getattr__(name: str):
	if name == "Endpoint":
		from .address import Endpoint
		return Endpoint
	if name in ("Reply", "Command", "ReplyReader"):
		from . import parser
		return getattr(parser, name)
	if name == "LineConnection":
		from .connection import LineConnection
		return LineConnection
	if name in ("DataConnectionProxy", "PortAllocator"):
		from . import data_connection
		return getattr(data_connection, name)
	raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

def __dir__():
	return __all__
