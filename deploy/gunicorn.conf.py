"""
Gunicorn configuration for the tournament API.

    gunicorn -c deploy/gunicorn.conf.py

Run a single worker when FEATURE_AUTO_CANCEL_SWEEP is on, or disable the
sweep on all but one instance; every worker starts its own sweep task.
"""
import os
import multiprocessing

wsgi_app = "esports_backend.main:app"

# Server socket
bind = os.environ.get("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 60
graceful_timeout = 30
keepalive = 5

# Logging ("-" is stdout/stderr)
accesslog = os.environ.get("GUNICORN_ACCESS_LOG", "-")
errorlog = os.environ.get("GUNICORN_ERROR_LOG", "-")
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(D)s'

proc_name = "esports-tournaments"

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def when_ready(server):
    server.log.info(f"Tournament API ready on {bind} with {workers} workers")


def worker_exit(server, worker):
    server.log.info(f"Worker {worker.pid} exited")
