import logging
import re
from typing import Optional

logger = logging.getLogger("ftpproxy.core.parser")

REPLY = re.compile(r"(\d\d\d) (.*)")
BRACKETED_REPLY = re.compile(r"(\d\d\d)-(.*)")

RESPONSE_TYPES = {
    '1': 'preliminary',
    '2': 'success',
    '3': 'missing_info',
    '4': 'error',
    '5': 'error'
}


class FtpProtocolError(Exception):
    """El servidor envió algo que no respeta la gramática de respuestas FTP."""
    pass


class InvalidReplyError(FtpProtocolError):
    pass


class IncompleteReplyError(FtpProtocolError):
    pass


class Reply:
    """
    Una respuesta FTP completa: código de 3 dígitos y una o más líneas.

    `text` contiene las líneas unidas con CRLF, tal como se reenvían.
    El código que decide si la respuesta es preliminar es el de la última
    línea (la que cierra una respuesta multilínea).
    """

    def __init__(self, lines: list[str]):
        self.lines = lines
        self.code = REPLY.fullmatch(lines[-1]).group(1)
        self.type = RESPONSE_TYPES.get(self.code[0], 'unknown')

    @property
    def text(self) -> str:
        return "\r\n".join(self.lines)

    def is_multiline(self) -> bool:
        return len(self.lines) > 1

    def is_preliminary(self) -> bool:
        return self.code.startswith("1")

    def __str__(self):
        return f"Reply(code={self.code}, type={self.type}, lines={len(self.lines)})"


class Command:
    """Un comando del cliente. Se conserva la línea original sin modificar."""

    def __init__(self, raw_command: str):
        self.raw_command = raw_command
        self.parse_command()

    def parse_command(self):
        """Separa el verbo (en mayúsculas) del resto de la línea."""
        name, _, args = self.raw_command.partition(" ")
        self.name = name.upper()
        self.args = args

    def get_name(self):
        return self.name

    def get_args(self):
        return self.args

    def __str__(self):
        # No mostrar contraseñas en los logs
        if self.name == "PASS":
            return "Command(name='PASS', args='***')"
        return f"Command(name='{self.name}', args='{self.args}')"


class ReplyReader:
    """
    Agrupa las líneas que envía el servidor en respuestas lógicas
    (RFC 959, sección 4.2).

    Por defecto la línea que cierra una respuesta multilínea es cualquier
    línea "ddd texto", sin comprobar que el código coincida con el de la
    apertura. Con `strict=True` se exige el mismo código, como pide el RFC.
    """

    def __init__(self, connection, strict: bool = False):
        self.connection = connection
        self.strict = strict

    def read_reply(self) -> Optional[Reply]:
        """Retorna la siguiente respuesta, o None si el servidor cerró la conexión."""
        line = self.connection.read_line()
        if line is None:
            return None

        if REPLY.fullmatch(line):
            return Reply([line])

        opening = BRACKETED_REPLY.fullmatch(line)
        if not opening:
            raise InvalidReplyError(f"Invalid reply '{line}' received")

        lines = [line]
        while True:
            line = self.connection.read_line()
            if line is None:
                raise IncompleteReplyError("Incomplete bracketed reply")
            lines.append(line)

            closing = REPLY.fullmatch(line)
            if not closing:
                continue
            if self.strict and closing.group(1) != opening.group(1):
                logger.debug("Ignoring line with foreign code inside %s reply: %s", opening.group(1), line)
                continue
            return Reply(lines)
