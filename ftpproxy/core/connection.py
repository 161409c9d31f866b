import socket
import logging
from typing import Optional

from ftpproxy.core.parser import FtpProtocolError

logger = logging.getLogger("ftpproxy.core.connection")

ENCODING = "iso-8859-1"
MAX_LINE_LENGTH = 64 * 1024


class LineTooLongError(FtpProtocolError):
    pass


class LineConnection:
    """
    Canal de control visto como una secuencia de líneas.

    Las líneas se decodifican en ISO-8859-1 (biyectiva con los bytes, así el
    contenido se reenvía intacto) y se escriben terminadas en CRLF. Cada
    línea escrita se registra en DEBUG con `log_prefix`.

    Una línea de más de `max_line_length` bytes sin terminador lanza
    LineTooLongError.
    """

    def __init__(self, sock: socket.socket, log_prefix: str = "", chunk_size: int = 4096,
                 max_line_length: int = MAX_LINE_LENGTH):
        self.sock = sock
        self.log_prefix = log_prefix
        self.chunk_size = chunk_size
        self.max_line_length = max_line_length
        self._buffer = bytearray()
        self._eof = False

    def read_line(self) -> Optional[str]:
        """Retorna la siguiente línea sin su terminador, o None al llegar a EOF."""
        end = self._buffer.find(b"\n")
        while end < 0:
            # +1: el CR del terminador puede haber llegado ya
            if len(self._buffer) > self.max_line_length + 1:
                raise LineTooLongError(f"Line longer than {self.max_line_length} bytes received")
            if self._eof:
                break
            chunk = self.sock.recv(self.chunk_size)
            if not chunk:
                self._eof = True
                break
            # Sólo se busca el terminador en lo recién recibido
            scanned = len(self._buffer)
            self._buffer += chunk
            end = self._buffer.find(b"\n", scanned)

        if end >= 0:
            raw = bytes(self._buffer[:end])
            del self._buffer[:end + 1]
            if raw.endswith(b"\r"):
                raw = raw[:-1]
            if len(raw) > self.max_line_length:
                raise LineTooLongError(f"Line longer than {self.max_line_length} bytes received")
            return raw.decode(ENCODING)

        # Lo que quede tras EOF sin terminador también es una línea
        if self._buffer:
            raw = bytes(self._buffer)
            self._buffer.clear()
            return raw.decode(ENCODING)

        return None

    def write_line(self, line: str) -> None:
        logger.debug("%s%s", self.log_prefix, line)
        self.sock.sendall((line + "\r\n").encode(ENCODING))

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError:
            logger.debug("Error closing socket", exc_info=True)
