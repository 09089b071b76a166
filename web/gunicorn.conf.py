import os

wsgi_app = "tasting.wsgi:application"
bind = os.getenv("GUNI_BIND", "0.0.0.0:8000")


def cpu():
    return max(1, (os.cpu_count() or 1))


# The local broadcast hub lives in one process: with BROADCAST_BACKEND=local
# every SSE subscriber and every writer must share a single worker.
if os.getenv("BROADCAST_BACKEND", "local") == "local":
    workers = 1
else:
    workers = int(os.getenv("GUNI_WORKERS", str(min(max(2, cpu() * 2), 8))))

# Each open SSE stream holds a thread
worker_class = "gthread"
threads = int(os.getenv("GTHREADS", "32"))

timeout = int(os.getenv("GUNI_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNI_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNI_KEEPALIVE", "5"))

# Fork before any hub/relay thread exists; they start lazily per worker
preload_app = True
max_requests = int(os.getenv("GUNI_MAX_REQUESTS", "0"))
max_requests_jitter = int(os.getenv("GUNI_MAX_REQUESTS_JITTER", "0"))

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNI_LOGLEVEL", "info")
