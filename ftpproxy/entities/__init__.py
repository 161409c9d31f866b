__all__ = ["FtpSession", "ReverseProxy"]

def __getattr__(name: str):
	if name == "FtpSession":
		from .ftp_session import FtpSession
		return FtpSession
	if name == "ReverseProxy":
		from .reverse_proxy import ReverseProxy
		return ReverseProxy
	raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

def __dir__():
	return __all__
