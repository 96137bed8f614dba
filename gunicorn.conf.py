"""Gunicorn settings for the marketplace billing API.

    gunicorn -c gunicorn.conf.py app.main:app

Every value can be overridden with a ``GUNICORN_*`` environment variable.
"""
from __future__ import annotations

import multiprocessing
import os


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_flag(name: str, default: bool = False) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8001")

workers = _env_int("GUNICORN_WORKERS", multiprocessing.cpu_count() * 2 + 1)
worker_class = "uvicorn.workers.UvicornWorker"
worker_tmp_dir = "/dev/shm"

# Checkout awaits the payment provider; keep the worker timeout well above
# PAYMENT_HTTP_TIMEOUT.
timeout = _env_int("GUNICORN_TIMEOUT", 120)
graceful_timeout = _env_int("GUNICORN_GRACEFUL_TIMEOUT", 30)
keepalive = _env_int("GUNICORN_KEEPALIVE", 5)

max_requests = _env_int("GUNICORN_MAX_REQUESTS", 1000)
max_requests_jitter = _env_int("GUNICORN_MAX_REQUESTS_JITTER", 50)

preload_app = _env_flag("GUNICORN_PRELOAD")

# Provider webhooks arrive through the ingress proxy.
forwarded_allow_ips = os.getenv("GUNICORN_FORWARDED_ALLOW_IPS", "127.0.0.1")

accesslog = os.getenv("GUNICORN_ACCESSLOG", "-")
errorlog = os.getenv("GUNICORN_ERRORLOG", "-")
loglevel = os.getenv("GUNICORN_LOGLEVEL", "info")
access_log_format = (
    '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s '
    '%({x-request-id}o)s'
)

proc_name = "plugin_market"
