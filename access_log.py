"""
access_log.py
Registro de accesos del servidor.
Cada peticion deja una linea en el logger y, si hay ruta configurada, una fila en CSV.
"""

import csv
import logging
import os
import threading
from datetime import datetime, timezone

from flask import request

logger = logging.getLogger("access_log")

CSV_HEADER = ["timestamp_utc", "remote_addr", "path", "status"]


def utc_timestamp():
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


class AccessLog:
    def __init__(self, csv_path=None):
        self.csv_path = csv_path or None
        self._lock = threading.Lock()
        # inicializar archivo de log si no existe
        if self.csv_path and not os.path.exists(self.csv_path):
            try:
                with open(self.csv_path, "w", newline="", encoding="utf-8") as f:
                    csv.writer(f).writerow(CSV_HEADER)
            except OSError as e:
                logger.warning("No se pudo crear %s: %s", self.csv_path, e)

    def record(self, remote_addr, path, status):
        ts = utc_timestamp()
        ip = remote_addr or "unknown"
        logger.info("%s %s %s %s", ts, ip, path, status)
        if not self.csv_path:
            return
        try:
            with self._lock:
                with open(self.csv_path, "a", newline="", encoding="utf-8") as f:
                    csv.writer(f).writerow([ts, ip, path, status])
        except OSError as e:
            logger.warning("Error escribiendo log: %s", e)

    def init_app(self, app):
        """Registra el log de accesos como after_request de una app Flask."""
        @app.after_request
        def _log_response(response):
            self.record(request.remote_addr, request.path, response.status_code)
            return response

        app.extensions["access_log"] = self
        return self
