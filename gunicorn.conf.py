"""
Gunicorn settings for the ingest gateway.

    gunicorn -c gunicorn.conf.py

GUNICORN_* environment variables override the defaults.
"""
import multiprocessing
import os

wsgi_module = "fleet_gateway.asgi:application"
worker_class = "uvicorn.workers.UvicornWorker"

# OsmAnd clients default to port 5055
bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:5055")
workers = int(os.environ.get("GUNICORN_WORKERS", multiprocessing.cpu_count() * 2 + 1))
proc_name = "fleet-gateway"

timeout = int(os.environ.get("GUNICORN_TIMEOUT", 15))
keepalive = 5
max_requests = 5000
max_requests_jitter = 250

loglevel = os.environ.get("GUNICORN_LOG_LEVEL", "info")
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(D)sus'
