import errno
import threading
import logging
from typing import Optional

from ftpproxy.core.address import Endpoint
from ftpproxy.entities.reverse_proxy import ReverseProxy, pump

logger = logging.getLogger("ftpproxy.core.data_connection")


class PortAllocator:
    """
    Decide en qué puerto local escucha cada proxy de conexión de datos.

    - first == last == 0: puerto efímero elegido por el sistema.
    - first == last: siempre ese puerto (una conexión de datos a la vez).
    - en otro caso se recorre el rango de first a last (ascendente o
      descendente, ambos incluidos) y se vuelve a empezar.
    """

    def __init__(self, first: int = 0, last: int = 0):
        for port in (first, last):
            if not 0 <= port <= 0xFFFF:
                raise ValueError(f"Invalid data connection port {port}")
        if (first == 0) != (last == 0):
            raise ValueError("Data connection port range must not include port 0")

        self.first = first
        self.last = last
        self._lock = threading.Lock()
        self._next = first

    def ports(self) -> list[int]:
        """Puertos a probar para la próxima conexión, en orden."""
        step = 1 if self.last >= self.first else -1
        span = list(range(self.first, self.last + step, step))

        with self._lock:
            start = span.index(self._next)
            self._next = span[(start + 1) % len(span)]

        return span[start:] + span[:start]

    def bind(self, bind_address: str, target: Endpoint, **kwargs) -> ReverseProxy:
        """
        Crea un ReverseProxy de un solo uso en el primer puerto libre.
        Sólo se propaga EADDRINUSE si todos los puertos del rango están ocupados.
        """
        ports = self.ports()
        for port in ports:
            try:
                return ReverseProxy(Endpoint(bind_address, port), 1, target, handler=_relay, one_shot=True, **kwargs)

            except OSError as e:
                if e.errno != errno.EADDRINUSE or port == ports[-1]:
                    raise
                logger.debug("Port %d is in use; trying next", port)


def _relay(client_sock, server_sock, client_local, client_remote, server_local, server_remote, stoppable):
    logger.info("Data connection %s => %s established", client_remote, server_remote)
    pump(client_sock, server_sock)
    logger.info("Data connection %s => %s closed", client_remote, server_remote)


class DataConnectionProxy:
    """
    Crea los proxies de las conexiones de datos de una sesión de control.

    Cada start() abre un socket de escucha independiente y retorna enseguida
    su dirección; la aceptación, la conexión al destino real y la copia de
    bytes ocurren en un hilo aparte. stop_all() cierra los que sigan vivos
    cuando termina la sesión.
    """

    def __init__(self, port_allocator: Optional[PortAllocator] = None,
                 connect_timeout: Optional[float] = 20.0, accept_timeout: Optional[float] = 120.0):
        self.port_allocator = port_allocator or PortAllocator()
        self.connect_timeout = connect_timeout
        self.accept_timeout = accept_timeout

        self._lock = threading.Lock()
        self._active: set[ReverseProxy] = set()

    def start(self, bind_address: str, target: Endpoint) -> Endpoint:
        """
        Params:
            - bind_address: interfaz local donde escuchar
            - target: extremo real al que conectar cuando llegue un par
        Retorna el Endpoint en el que quedó escuchando el proxy.
        """
        rp = self.port_allocator.bind(
            bind_address,
            target,
            server_connection_timeout=self.connect_timeout,
            accept_timeout=self.accept_timeout,
        )

        with self._lock:
            self._active.add(rp)

        threading.Thread(target=self._run, args=(rp,), name=f"data-{rp.endpoint_address.port}", daemon=True).start()
        logger.info("Data connection proxy %s -> %s started", rp.endpoint_address, target)
        return rp.endpoint_address

    def _run(self, rp: ReverseProxy) -> None:
        try:
            rp.run()

        except Exception:
            logger.exception("Data connection proxy on %s failed", rp.endpoint_address)

        finally:
            with self._lock:
                self._active.discard(rp)

    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def stop_all(self) -> None:
        with self._lock:
            active = list(self._active)
            self._active.clear()

        for rp in active:
            rp.stop()

        if active:
            logger.info("Stopped %d pending data connection proxies", len(active))
