"""
Proxy inverso FTP: reenvía el canal de control entre cliente y servidor y
reescribe las direcciones de las conexiones de datos (PORT, EPRT, 227, 229).
"""

__all__ = ["FtpSession", "ReverseProxy", "DataConnectionProxy", "ProxyConfig"]

def __getattr__(name: str):
	if name == "FtpSession":
		from .entities.ftp_session import FtpSession
		return FtpSession
	if name == "ReverseProxy":
		from .entities.reverse_proxy import ReverseProxy
		return ReverseProxy
	if name == "DataConnectionProxy":
		from .core.data_connection import DataConnectionProxy
		return DataConnectionProxy
	if name == "ProxyConfig":
		from .config import ProxyConfig
		return ProxyConfig
	raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

def __dir__():
	return __all__
