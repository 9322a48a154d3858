"""
request_counter.py
Contador de peticiones con ventana deslizante de 60 segundos.
Guarda un delta por segundo en un buffer circular y persiste el estado en JSON
para sobrevivir reinicios.
"""

import contextlib
import json
import os
import threading
from dataclasses import dataclass

WINDOW_SIZE = 60          # buckets de un segundo
TIME_LAPSE = 1.0          # segundos por bucket
STATE_FILE = "request-file.txt"
MAX_COUNT = 2**64 - 1     # los campos se guardan como uint64


class CounterStateError(Exception):
    """Error base del estado del contador."""


class StateCorruptionError(CounterStateError):
    """El archivo de estado existe pero no tiene la forma esperada."""


class PersistenceWriteError(CounterStateError):
    """No se pudo escribir el archivo de estado."""


@dataclass(frozen=True)
class CounterSnapshot:
    cursor: int
    bucket_history: tuple
    window_total: int
    current_bucket_count: int


def describe_window():
    # formato de duracion: 1m0s
    minutes, seconds = divmod(int(WINDOW_SIZE * TIME_LAPSE), 60)
    return f"{minutes}m{seconds}s" if minutes else f"{seconds}s"


def _check_count(value, name):
    # bool es subclase de int, no lo aceptamos
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= MAX_COUNT:
        raise StateCorruptionError(f"campo {name!r} invalido: {value!r}")
    return value


def decode_state(raw):
    """Valida el documento JSON y devuelve (cursor, deltas, total)."""
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError) as e:
        raise StateCorruptionError(f"JSON invalido: {e}") from e
    if not isinstance(data, dict):
        raise StateCorruptionError("el estado debe ser un objeto JSON")

    cursor = _check_count(data.get("DeltaIdx"), "DeltaIdx")
    total = _check_count(data.get("TimeWindowReqNo"), "TimeWindowReqNo")
    deltas = data.get("Deltas")
    if not isinstance(deltas, list) or len(deltas) != WINDOW_SIZE:
        raise StateCorruptionError(f"'Deltas' debe ser una lista de {WINDOW_SIZE} enteros")
    deltas = [_check_count(d, "Deltas") for d in deltas]

    if cursor > WINDOW_SIZE:
        raise StateCorruptionError(f"'DeltaIdx' fuera de rango: {cursor}")
    if cursor == WINDOW_SIZE:
        # un proceso anterior pudo guardar el indice justo despues del ultimo bucket
        cursor = 0
    if total != sum(deltas):
        raise StateCorruptionError(
            f"'TimeWindowReqNo' ({total}) no coincide con la suma de 'Deltas' ({sum(deltas)})"
        )
    return cursor, deltas, total


def encode_state(cursor, deltas, total):
    return json.dumps({"DeltaIdx": cursor, "Deltas": list(deltas), "TimeWindowReqNo": total})


class SlidingWindowCounter:
    """
    Cuenta las peticiones de los ultimos WINDOW_SIZE segundos.

    increment() suma al bucket en curso, rotate() lo cierra una vez por segundo
    y window_total() devuelve el total asentado mas el bucket abierto.
    Todas las operaciones comparten un unico lock, incluida la escritura en disco.
    """

    def __init__(self, state_file=STATE_FILE):
        self.state_file = state_file
        self._lock = threading.Lock()
        self._current = 0
        self._deltas = [0] * WINDOW_SIZE
        self._cursor = 0
        self._total = 0

    def increment(self):
        with self._lock:
            self._current += 1

    def rotate(self):
        with self._lock:
            # total = (total - delta mas antiguo) + delta nuevo
            self._total += self._current - self._deltas[self._cursor]
            self._deltas[self._cursor] = self._current
            self._current = 0
            self._cursor = (self._cursor + 1) % WINDOW_SIZE

    def window_total(self):
        with self._lock:
            return self._total + self._current

    def snapshot(self):
        with self._lock:
            return CounterSnapshot(self._cursor, tuple(self._deltas), self._total, self._current)

    def load(self):
        """Carga el estado desde disco; sin archivo es un arranque en frio."""
        if not os.path.exists(self.state_file):
            return False
        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                raw = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise StateCorruptionError(f"no se pudo leer {self.state_file}: {e}") from e

        cursor, deltas, total = decode_state(raw)
        with self._lock:
            self._cursor = cursor
            self._deltas = deltas
            self._total = total
            self._current = 0
        return True

    def flush(self):
        """Reescribe el archivo de estado completo. El bucket en curso no se guarda."""
        with self._lock:
            data = encode_state(self._cursor, self._deltas, self._total)
            tmp = self.state_file + ".tmp"
            try:
                with open(tmp, "w", encoding="utf-8") as f:
                    f.write(data)
                os.replace(tmp, self.state_file)
            except OSError as e:
                with contextlib.suppress(OSError):
                    os.remove(tmp)
                raise PersistenceWriteError(f"no se pudo actualizar {self.state_file}: {e}") from e
