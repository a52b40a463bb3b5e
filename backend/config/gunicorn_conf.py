# ==============================================================================
# GUNICORN CONFIGURATION
# ==============================================================================

import os
import multiprocessing

# ==============================================================================
# WORKER CONFIGURATION
# ==============================================================================
# (2 * CPU_COUNT) + 1, overridable with GUNICORN_WORKERS
CPU_COUNT = multiprocessing.cpu_count()
DEFAULT_WORKERS = (CPU_COUNT * 2) + 1
workers = int(os.getenv("GUNICORN_WORKERS", DEFAULT_WORKERS))

# Stock writes hold row locks for the length of a request; threads keep
# short requests moving while one waits on a lock.
worker_class = "gthread"
threads = int(os.getenv("GUNICORN_THREADS", 4))

# ==============================================================================
# SERVER SOCKET
# ==============================================================================
port = int(os.getenv("PORT", 8000))
bind = [f"0.0.0.0:{port}"]

proc_name = "erp-inventory-api"

# ==============================================================================
# TIMEOUTS
# ==============================================================================
timeout = int(os.getenv("GUNICORN_TIMEOUT", 60))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", 30))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", 5))

# ==============================================================================
# LOGGING (stdout/stderr for containers)
# ==============================================================================
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")

# ==============================================================================
# WORKER RECYCLING
# ==============================================================================
max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", 1000))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", 100))

forwarded_allow_ips = "*"
preload_app = True


def on_starting(server):
    server.log.info(f"Starting {proc_name} with {workers} {worker_class} workers x {threads} threads on :{port}")


def on_exit(server):
    server.log.info(f"{proc_name} shutting down")
