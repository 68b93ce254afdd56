"""
Gunicorn configuration for TourKeep.

Every setting can be overridden through the environment.

Environment Variables:
    GUNICORN_BIND - Bind address (default: 127.0.0.1:8000)
    GUNICORN_WORKERS - Number of worker processes (default: CPU * 2 + 1)
    GUNICORN_THREADS - Threads per worker (default: 4)
    GUNICORN_TIMEOUT - Worker timeout in seconds (default: 120)
    GUNICORN_GRACEFUL_TIMEOUT - Graceful shutdown timeout (default: 30)
    GUNICORN_MAX_REQUESTS - Max requests per worker before restart (default: 1000)
    GUNICORN_LOG_LEVEL - Logging level (default: info)
"""

import multiprocessing
import os


def get_env_int(key: str, default: int) -> int:
    """Get integer from environment variable with fallback."""
    try:
        return int(os.getenv(key, default))
    except (ValueError, TypeError):
        return default


def get_env_str(key: str, default: str) -> str:
    return os.getenv(key, default)


# =============================================================================
# Server Socket
# =============================================================================

bind = get_env_str('GUNICORN_BIND', '127.0.0.1:8000')
backlog = get_env_int('GUNICORN_BACKLOG', 2048)

# =============================================================================
# Workers
# =============================================================================

workers = get_env_int('GUNICORN_WORKERS', multiprocessing.cpu_count() * 2 + 1)

# Continuations post back to this same server without waiting for the answer,
# so each worker needs spare threads to accept them.
worker_class = 'gthread'
threads = get_env_int('GUNICORN_THREADS', 4)

# One backup part (download, zip, upload) must fit inside this window.
timeout = get_env_int('GUNICORN_TIMEOUT', 120)
graceful_timeout = get_env_int('GUNICORN_GRACEFUL_TIMEOUT', 30)
keepalive = get_env_int('GUNICORN_KEEPALIVE', 5)

max_requests = get_env_int('GUNICORN_MAX_REQUESTS', 1000)
max_requests_jitter = get_env_int('GUNICORN_MAX_REQUESTS_JITTER', 50)

# =============================================================================
# Logging
# =============================================================================

accesslog = get_env_str('GUNICORN_ACCESS_LOG', '-')
errorlog = get_env_str('GUNICORN_ERROR_LOG', '-')
loglevel = get_env_str('GUNICORN_LOG_LEVEL', 'info')
proc_name = get_env_str('GUNICORN_PROC_NAME', 'tourkeep')

# Photo uploads arrive as multipart bodies; headers stay small.
limit_request_line = get_env_int('GUNICORN_LIMIT_REQUEST_LINE', 4094)
limit_request_fields = get_env_int('GUNICORN_LIMIT_REQUEST_FIELDS', 100)


# =============================================================================
# Server Hooks
# =============================================================================

def on_starting(server):
    server.log.info("Starting TourKeep with Gunicorn")
    server.log.info(f"Workers: {workers} x {threads} threads, Bind: {bind}, Timeout: {timeout}s")


def worker_abort(worker):
    """A worker killed here may leave a backup job in processing; the cleanup worker reclaims it."""
    worker.log.warning(f"Worker {worker.pid} aborted (timeout?)")


def on_exit(server):
    server.log.info("Shutting down TourKeep")
