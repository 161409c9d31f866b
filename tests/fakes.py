class FakeConnection:
    """Conexión de líneas en memoria: entrega `lines` y guarda lo escrito."""

    def __init__(self, lines=()):
        self.lines = list(lines)
        self.written = []

    def read_line(self):
        if not self.lines:
            return None
        return self.lines.pop(0)

    def write_line(self, line):
        self.written.append(line)


class RecordingDataProxy:
    """Registra las llamadas a start() y stop_all() y devuelve endpoints predefinidos."""

    def __init__(self, *endpoints):
        self.endpoints = list(endpoints)
        self.calls = []
        self.stopped = 0

    def start(self, bind_address, target):
        self.calls.append((bind_address, target))
        return self.endpoints.pop(0)

    def stop_all(self):
        self.stopped += 1
