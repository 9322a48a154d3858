"""
load_client.py
Cliente de prueba SEGURO para generar trafico contra tu propio contador de peticiones.

Uso ejemplo:
python load_client.py http://127.0.0.1:8080 --concurrency 20 --duration 90 --ramp-up 10 --out results.csv --confirm-own
"""
import argparse
import csv
import re
import sys
import threading
import time
from datetime import datetime, timezone
from queue import Queue
from threading import Lock

import requests

# Parámetros máximos razonables por seguridad (ajusta con precaución)
MAX_CONCURRENCY_SAFE = 200

SERVED_RE = re.compile(r"^Served (\d+) requests", re.MULTILINE)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Cliente de prueba controlada (SEGURO)")
    parser.add_argument("baseurl", help="URL del servidor contador (debe ser tuyo). Ej: http://127.0.0.1:8080")
    parser.add_argument("--concurrency", type=int, default=10, help="Hilos concurrentes (default 10)")
    parser.add_argument("--duration", type=int, default=90, help="Duración total en segundos (default 90)")
    parser.add_argument("--path", default="/", help="Ruta a solicitar (default /)")
    parser.add_argument("--timeout", type=float, default=5.0, help="Timeout por request (s)")
    parser.add_argument("--ramp-up", type=int, default=0, help="Segundos para aumentar hilos gradualmente (default 0)")
    parser.add_argument("--delay", type=float, default=0.0, help="Delay (s) entre requests por hilo (default 0.0)")
    parser.add_argument("--out", default=None, help="Archivo CSV de salida para registros (opcional)")
    parser.add_argument("--confirm-own", action="store_true", help="Confirmas que eres propietario del objetivo (OBLIGATORIO)")
    return parser.parse_args(argv)


def parse_served(text):
    """Extrae N de 'Served N requests ...' o None si la respuesta no lo trae."""
    m = SERVED_RE.search(text or "")
    return int(m.group(1)) if m else None


class LoadStats:
    def __init__(self, keep_records=False):
        self.lock = Lock()
        self.keep_records = keep_records
        self.sent = 0
        self.success = 0
        self.errors = 0
        self.codes = {}
        self.max_served = 0
        self.records = []

    def add_response(self, ts, thread_id, status, body):
        served = parse_served(body) if status == 200 else None
        with self.lock:
            self.sent += 1
            self.codes[status] = self.codes.get(status, 0) + 1
            if status < 400:
                self.success += 1
            if served is not None and served > self.max_served:
                self.max_served = served
            if self.keep_records:
                self.records.append((ts, thread_id, status, len(body)))

    def add_error(self, ts, thread_id, err):
        with self.lock:
            self.sent += 1
            self.errors += 1
            if self.keep_records:
                self.records.append((ts, thread_id, "ERR", str(err)))


def worker(session, url, stop_time, stats, thread_id, timeout=5.0, delay=0.0, done=None):
    while time.time() < stop_time:
        ts = datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"
        try:
            r = session.get(url, timeout=timeout)
            stats.add_response(ts, thread_id, r.status_code, r.text)
        except requests.RequestException as e:
            stats.add_error(ts, thread_id, e)
        if delay > 0:
            time.sleep(delay)
    if done is not None:
        done.put(True)


def run_load(url, concurrency, duration, timeout=5.0, ramp_up=0, delay=0.0, keep_records=False):
    stats = LoadStats(keep_records)
    stop_time = time.time() + duration
    q = Queue()

    # ramp-up: incrementar hilos gradualmente
    interval = ramp_up / max(1, concurrency - 1) if ramp_up > 0 and concurrency > 1 else 0

    for i in range(concurrency):
        t = threading.Thread(
            target=worker,
            args=(requests.Session(), url, stop_time, stats, i, timeout, delay, q),
            daemon=True,
        )
        t.start()
        if interval > 0:
            time.sleep(interval)

    # esperar a que todos terminen
    for _ in range(concurrency):
        q.get()
    return stats


def write_csv(path, records):
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["timestamp_utc", "thread_id", "status_or_error", "bytes_or_error"])
        for rec in records:
            writer.writerow(rec)


def print_report(url, duration, stats):
    print("\n=== INFORME FINAL ===")
    print(f"URL objetivo: {url}")
    print(f"Duración real (s): {duration}")
    print(f"Peticiones enviadas: {stats.sent}")
    print(f"Respuestas exitosas (<400): {stats.success}")
    print(f"Errores/Timeouts: {stats.errors}")
    print(f"Máximo 'Served' reportado por el servidor: {stats.max_served}")
    print("Códigos HTTP recibidos:")
    for code, n in sorted(stats.codes.items(), key=lambda kv: str(kv[0])):
        print(f"  {code}: {n}")


def main(argv=None):
    args = parse_args(argv)

    # Seguridad básica: requerir confirmación explícita
    if not args.confirm_own:
        print("ERROR: Debes pasar la opción --confirm-own para confirmar que el objetivo es tuyo.")
        print("Ejemplo:\n  python load_client.py http://127.0.0.1:8080 --confirm-own")
        return 1

    concurrency = max(1, args.concurrency)
    # Límite máximo para evitar abusos accidentales
    if concurrency > MAX_CONCURRENCY_SAFE:
        print(f"Advertencia: concurrency solicitado ({concurrency}) excede el máximo seguro ({MAX_CONCURRENCY_SAFE}).")
        return 1

    url = args.baseurl.rstrip("/") + args.path
    print("=" * 60)
    print("CLIENTE DE PRUEBA SEGURO")
    print(f"Objetivo: {url}")
    print(f"Duración (s): {args.duration}")
    print(f"Hilos solicitados: {concurrency}")
    print(f"Timeout por request (s): {args.timeout}")
    print(f"Ramp-up (s): {args.ramp_up}")
    print(f"Delay por petición (s): {args.delay}")
    if args.out:
        print(f"Salida CSV: {args.out}")
    print("=" * 60)

    stats = run_load(
        url,
        concurrency,
        args.duration,
        timeout=args.timeout,
        ramp_up=max(0, args.ramp_up),
        delay=max(0.0, args.delay),
        keep_records=bool(args.out),
    )
    print_report(url, args.duration, stats)

    if args.out:
        try:
            write_csv(args.out, stats.records)
            print(f"Registros guardados en {args.out}")
        except OSError as e:
            print("No se pudo escribir CSV:", e)

    print("FIN.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
