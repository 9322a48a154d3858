"""
counter_server.py
Servidor Flask que informa cuantas peticiones se sirvieron en el ultimo minuto.
El contador rota cada segundo en un hilo aparte y se guarda en disco; CTRL-C
guarda el estado una ultima vez antes de salir.

Uso ejemplo:
python counter_server.py --port 8080 --state-file request-file.txt --access-log access_log.csv
"""

import argparse
import html
import logging
import os
import signal
import sys
import threading
from datetime import datetime

from flask import Flask, Response, request

from access_log import AccessLog
from request_counter import (
    STATE_FILE,
    TIME_LAPSE,
    PersistenceWriteError,
    SlidingWindowCounter,
    StateCorruptionError,
    describe_window,
)

HOST = os.getenv("COUNTER_HOST", "0.0.0.0")
PORT = int(os.getenv("COUNTER_PORT", "8080"))
STATE_PATH = os.getenv("COUNTER_STATE_FILE", STATE_FILE)
ACCESS_LOG = os.getenv("COUNTER_ACCESS_LOG", "")
LOG_LEVEL = os.getenv("COUNTER_LOG_LEVEL", "INFO")

# HEAD y OPTIONS tambien llegan a la vista para poder responder 405
ROUTE_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

logger = logging.getLogger(__name__)


def rfc1123_now():
    return datetime.now().astimezone().strftime("%a, %d %b %Y %H:%M:%S %Z")


def escape_path(path):
    # la comilla simple se escapa como &#39;
    return html.escape(path).replace("&#x27;", "&#39;")


def method_not_allowed():
    return Response(status=405, headers={"Allow": "GET"})


def create_app(counter, access_log=None):
    app = Flask(__name__)
    app.extensions["request_counter"] = counter
    if access_log is not None:
        access_log.init_app(app)

    @app.route("/", methods=ROUTE_METHODS)
    def index():
        if request.method != "GET":
            return method_not_allowed()
        counter.increment()
        body = (
            f"Served {counter.window_total()} requests in the last {describe_window()}\n"
            f"The time is: {rfc1123_now()}\n"
        )
        return Response(body, status=200, mimetype="text/plain")

    @app.errorhandler(404)
    def not_found(e):
        body = f"Requested resource '{escape_path(request.path)}' does not exist\n"
        return Response(body, status=404, mimetype="text/plain")

    @app.errorhandler(405)
    def wrong_method(e):
        return method_not_allowed()

    return app


def _die(code):
    logging.shutdown()
    os._exit(code)


class RotationTicker(threading.Thread):
    """
    Hilo que cada `interval` segundos cierra el bucket en curso y guarda el estado.
    Un fallo al escribir es fatal: se registra y se llama a on_fatal.
    """

    def __init__(self, counter, interval=TIME_LAPSE, on_fatal=None):
        super().__init__(name="rotation-ticker", daemon=True)
        self.counter = counter
        self.interval = interval
        self.on_fatal = on_fatal or (lambda: _die(1))
        self._stopped = threading.Event()

    def tick(self):
        self.counter.rotate()
        self.counter.flush()

    def run(self):
        while not self._stopped.wait(self.interval):
            try:
                self.tick()
            except PersistenceWriteError as e:
                logger.critical("No se pudo actualizar el archivo de estado: %s", e)
                self.on_fatal()
                return

    def stop(self):
        # solo para pruebas, en produccion el hilo vive hasta que sale el proceso
        self._stopped.set()


def install_interrupt_handler(counter, exit_fn=sys.exit):
    def handle_sigint(signum, frame):
        try:
            counter.flush()
        except PersistenceWriteError as e:
            logger.critical("No se pudo guardar el estado al salir: %s", e)
            exit_fn(1)
            return
        logger.info("Deteniendo servidor... (%d peticiones en la ventana)", counter.snapshot().window_total)
        exit_fn(0)

    signal.signal(signal.SIGINT, handle_sigint)
    return handle_sigint


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Servidor contador de peticiones (ventana de 60s)")
    parser.add_argument("--host", default=HOST, help=f"Direccion de escucha (default {HOST})")
    parser.add_argument("--port", type=int, default=PORT, help=f"Puerto (default {PORT})")
    parser.add_argument("--state-file", default=STATE_PATH, help=f"Archivo de estado JSON (default {STATE_PATH})")
    parser.add_argument("--access-log", default=ACCESS_LOG, help="CSV de accesos (opcional)")
    parser.add_argument("--log-level", default=LOG_LEVEL, help=f"Nivel de logging (default {LOG_LEVEL})")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info("Iniciando servidor")
    counter = SlidingWindowCounter(args.state_file)
    try:
        if counter.load():
            logger.info("Estado cargado desde %s", args.state_file)
    except StateCorruptionError as e:
        logger.critical("No se pudo cargar el archivo de estado: %s", e)
        return 1

    app = create_app(counter, AccessLog(args.access_log) if args.access_log else None)
    RotationTicker(counter).start()
    install_interrupt_handler(counter)

    logger.info("Escuchando en http://%s:%d", args.host, args.port)
    logger.info("Ventana=%s Estado=%s", describe_window(), args.state_file)
    logger.info("Pulsa CTRL-C para detener el servidor")
    app.run(host=args.host, port=args.port, threaded=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
