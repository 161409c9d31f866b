import logging

from ftpproxy.core.address import (
    Endpoint,
    PROTOCOL_IPV4,
    format_227_reply,
    format_229_reply,
    format_eprt_command,
    format_port_command,
    parse_227_reply,
    parse_229_reply,
    parse_eprt_command,
    parse_port_command,
)
from ftpproxy.core.connection import LineConnection
from ftpproxy.core.data_connection import DataConnectionProxy, PortAllocator
from ftpproxy.core.parser import Command, ReplyReader

logger = logging.getLogger("ftpproxy.entities.ftp_session")


class FtpSession:
    """
    Bucle del canal de control de una conexión FTP a través del proxy.

    Alterna dos estados:
        - esperar respuestas del servidor y reenviarlas al cliente
          (reescribiendo 227/229) hasta recibir una que no sea preliminar;
        - leer un comando del cliente y reenviarlo al servidor
          (reescribiendo PORT/EPRT).

    Empieza esperando respuestas (el servidor saluda primero) y termina
    cuando cualquiera de los dos lados cierra. Los errores de protocolo del
    lector de respuestas se propagan.

    `client` y `server` son objetos con read_line()/write_line(), normalmente
    LineConnection. `data_proxy` sólo necesita start(bind_address, target).
    """

    def __init__(self, client, server, client_local: Endpoint, client_remote: Endpoint,
                 server_local: Endpoint, server_remote: Endpoint, data_proxy,
                 replace_eprt_with_port: bool = False, strict_replies: bool = False):
        self.client = client
        self.server = server
        self.client_local = client_local
        self.client_remote = client_remote
        self.server_local = server_local
        self.server_remote = server_remote
        self.data_proxy = data_proxy
        self.replace_eprt_with_port = replace_eprt_with_port
        self.reader = ReplyReader(server, strict=strict_replies)

    def run(self) -> None:
        while True:
            if not self.forward_replies():
                logger.info("Connection closed by remote server %s", self.server_remote)
                return

            if not self.forward_command():
                logger.info("Connection closed by client %s", self.client_remote)
                return

    # ----------------- server -> client -----------------
    def forward_replies(self) -> bool:
        """Reenvía respuestas hasta la primera no preliminar. Retorna False si el servidor cerró."""
        while True:
            reply = self.reader.read_reply()
            if reply is None:
                return False

            logger.debug("Reply '%s' received", reply.text)
            self.client.write_line(self.rewrite_reply(reply.text))

            if not reply.is_preliminary():
                return True

    def rewrite_reply(self, text: str) -> str:
        if text.startswith("227 "):
            target = parse_227_reply(text)
            if target is None:
                logger.warning("Unrecognized 227 reply forwarded unchanged: %s", text)
                return text

            endpoint = self.data_proxy.start(self.client_local.address, target)
            logger.info("Rewriting PASV %s -> %s", target, endpoint)
            return format_227_reply(endpoint)

        if text.startswith("229 "):
            port = parse_229_reply(text)
            if port is None:
                logger.warning("Unrecognized 229 reply forwarded unchanged: %s", text)
                return text

            # 229 no lleva dirección: el servidor es el extremo de la conexión de control
            target = Endpoint(self.server_remote.address, port)
            endpoint = self.data_proxy.start(self.client_local.address, target)
            logger.info("Rewriting EPSV %s -> %s", target, endpoint)
            return format_229_reply(endpoint.port)

        return text

    # ----------------- client -> server -----------------
    def forward_command(self) -> bool:
        """Reenvía un comando del cliente. Retorna False si el cliente cerró."""
        line = self.client.read_line()
        if line is None:
            return False

        command = Command(line)
        logger.debug("Command %s received", command)
        self.server.write_line(self.rewrite_command(command))
        return True

    def rewrite_command(self, command: Command) -> str:
        line = command.raw_command

        if command.get_name() == "PORT":
            target = parse_port_command(line)
            if target is None:
                logger.warning("Unrecognized PORT command forwarded unchanged: %s", line)
                return line

            endpoint = self.data_proxy.start(self.server_local.address, target)
            logger.info("Rewriting PORT %s -> %s", target, endpoint)
            return format_port_command(endpoint)

        if command.get_name() == "EPRT":
            parsed = parse_eprt_command(line)
            if parsed is None:
                logger.warning("Unrecognized EPRT command forwarded unchanged: %s", line)
                return line

            protocol, target = parsed
            endpoint = self.data_proxy.start(self.server_local.address, target)
            logger.info("Rewriting EPRT %s -> %s", target, endpoint)

            if protocol == PROTOCOL_IPV4 and self.replace_eprt_with_port:
                return format_port_command(endpoint)
            return format_eprt_command(endpoint)

        return line


def session_handler(config):
    """
    Construye el handler que ReverseProxy invoca por cada conexión aceptada,
    con un PortAllocator compartido por todas las sesiones.
    """
    port_allocator = PortAllocator(config.data_port_first, config.data_port_last)

    def handler(client_sock, server_sock, client_local, client_remote, server_local, server_remote, stoppable):
        data_proxy = DataConnectionProxy(
            port_allocator,
            connect_timeout=config.data_connect_timeout,
            accept_timeout=config.data_accept_timeout,
        )
        handle_connection(
            client_sock, server_sock, client_local, client_remote, server_local, server_remote,
            data_proxy,
            replace_eprt_with_port=config.replace_eprt_with_port,
            strict_replies=config.strict_replies,
        )

    return handler


def handle_connection(client_sock, server_sock, client_local, client_remote, server_local, server_remote,
                      data_proxy: DataConnectionProxy, replace_eprt_with_port: bool = False,
                      strict_replies: bool = False) -> None:
    """Atiende una conexión de control. Los sockets los cierra quien los creó."""
    logger.info("Session %s -> %s started", client_remote, server_remote)

    session = FtpSession(
        LineConnection(client_sock, log_prefix="<<< "),
        LineConnection(server_sock, log_prefix=">>> "),
        client_local,
        client_remote,
        server_local,
        server_remote,
        data_proxy,
        replace_eprt_with_port=replace_eprt_with_port,
        strict_replies=strict_replies,
    )

    try:
        session.run()

    finally:
        data_proxy.stop_all()
        logger.info("Session %s -> %s finished", client_remote, server_remote)
