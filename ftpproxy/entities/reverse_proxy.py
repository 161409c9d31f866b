import socket
import threading
import logging
from typing import Callable, Optional

from ftpproxy.core.address import Endpoint

logger = logging.getLogger("ftpproxy.entities.reverse_proxy")


def _endpoint(sockaddr) -> Endpoint:
    # AF_INET6 devuelve (host, port, flowinfo, scope_id)
    return Endpoint(sockaddr[0], sockaddr[1])


def _close_quietly(sock: Optional[socket.socket]) -> None:
    if sock is None:
        return
    try:
        sock.close()
    except OSError:
        logger.debug("Error closing socket", exc_info=True)


class ReverseProxy:
    """
    Acepta conexiones en `endpoint` y, por cada cliente, abre una conexión
    a `server_address` y entrega ambos sockets al `handler` en un hilo propio.

    El handler recibe:
        (client_sock, server_sock, client_local, client_remote,
         server_local, server_remote, stoppable)
    donde las cuatro direcciones son Endpoint y `stoppable` es este mismo
    ReverseProxy. Los dos sockets se cierran cuando el handler termina.

    El socket de escucha se abre en el constructor: un error de bind se
    propaga al que crea el proxy.
    """

    def __init__(self, endpoint: Endpoint, backlog: int, server_address: Endpoint,
                 server_connection_timeout: Optional[float], handler: Callable,
                 one_shot: bool = False, accept_timeout: Optional[float] = None):
        self.server_address = server_address
        self.server_connection_timeout = server_connection_timeout or None
        self.handler = handler
        self.one_shot = one_shot

        self._lock = threading.Lock()
        self._stopped = False
        self._sockets: set[socket.socket] = set()

        family = socket.AF_INET6 if ":" in endpoint.address else socket.AF_INET
        self._listener = socket.socket(family, socket.SOCK_STREAM)
        try:
            self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self._listener.bind(tuple(endpoint))
            self._listener.listen(backlog or 50)
            self._listener.settimeout(accept_timeout)
        except OSError:
            self._listener.close()
            raise

        self.endpoint_address = _endpoint(self._listener.getsockname())
        logger.debug("Listening on %s for %s", self.endpoint_address, self.server_address)

    # ----------------- accept loop -----------------
    def run(self) -> None:
        """Bucle de aceptación. Retorna al llamar stop(), o tras la primera conexión si es one_shot."""
        try:
            while not self._stopped:
                try:
                    client_sock, client_addr = self._listener.accept()

                except socket.timeout:
                    logger.info("No connection on %s within timeout, giving up", self.endpoint_address)
                    break

                except OSError:
                    if self._stopped:
                        break
                    raise

                client_sock.settimeout(None)
                logger.info("Accepted connection from %s on %s", _endpoint(client_addr), self.endpoint_address)

                if self.one_shot:
                    # Una sola conexión: dejar de escuchar y atenderla en este mismo hilo
                    self._close_listener()
                    self._handle_client(client_sock)
                    break

                threading.Thread(target=self._handle_client, args=(client_sock,), daemon=True).start()

        finally:
            self._close_listener()

    def _handle_client(self, client_sock: socket.socket) -> None:
        if not self._track(client_sock):
            _close_quietly(client_sock)
            return

        server_sock = None
        try:
            logger.debug("Connecting with %s", self.server_address)
            try:
                server_sock = socket.create_connection(tuple(self.server_address), timeout=self.server_connection_timeout)

            except socket.timeout:
                logger.warning("Connecting with %s timed out after %s s", self.server_address, self.server_connection_timeout)
                return

            except OSError as e:
                logger.error("Connecting with %s failed: %s", self.server_address, e)
                return

            server_sock.settimeout(None)
            if not self._track(server_sock):
                return

            client_local = _endpoint(client_sock.getsockname())
            client_remote = _endpoint(client_sock.getpeername())
            server_local = _endpoint(server_sock.getsockname())
            server_remote = _endpoint(server_sock.getpeername())
            logger.debug("Connected %s => %s", server_local, server_remote)

            self.handler(client_sock, server_sock, client_local, client_remote, server_local, server_remote, self)

        except Exception:
            logger.exception("Error while handling connection on %s", self.endpoint_address)

        finally:
            for sock in (client_sock, server_sock):
                if sock is not None:
                    self._untrack(sock)
                    _close_quietly(sock)

    # ----------------- lifecycle -----------------
    def _track(self, sock: socket.socket) -> bool:
        with self._lock:
            if self._stopped:
                return False
            self._sockets.add(sock)
            return True

    def _untrack(self, sock: socket.socket) -> None:
        with self._lock:
            self._sockets.discard(sock)

    def _close_listener(self) -> None:
        _close_quietly(self._listener)

    def is_stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Cierra el socket de escucha y todas las conexiones activas."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            sockets = list(self._sockets)
            self._sockets.clear()

        # shutdown() desbloquea un accept() pendiente en Linux; close() sólo no basta
        for sock in [self._listener] + sockets:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            _close_quietly(sock)

        logger.debug("Reverse proxy on %s stopped", self.endpoint_address)


def _copy(src: socket.socket, dst: socket.socket, log_prefix: str, chunk_size: int = 65536) -> None:
    try:
        while True:
            chunk = src.recv(chunk_size)
            if not chunk:
                break
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("%s%s", log_prefix, chunk.hex(" "))
            dst.sendall(chunk)

    except OSError as e:
        logger.debug("Copy %s interrupted: %s", log_prefix.strip(), e)
        # Romper también la otra dirección
        for sock in (src, dst):
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        return

    try:
        dst.shutdown(socket.SHUT_WR)
    except OSError:
        pass


def pump(client_sock: socket.socket, server_sock: socket.socket, log_prefixes: tuple[str, str] = ("> ", "< ")) -> None:
    """
    Copia bytes en ambas direcciones hasta que las dos terminen. Cuando una
    dirección llega a EOF se cierra la escritura del otro extremo.
    """
    upstream = threading.Thread(target=_copy, args=(client_sock, server_sock, log_prefixes[0]), daemon=True)
    upstream.start()
    _copy(server_sock, client_sock, log_prefixes[1])
    upstream.join()
