"""
Gunicorn configuration for production deployment.

    gunicorn -c backend/gunicorn.conf.py livechat.main:app
"""
import os

# Server Socket
bind = f"0.0.0.0:{os.getenv('PORT', '8000')}"
backlog = 2048

# Worker Processes
# Push connections live in the worker that accepted them, so the hub runs as
# one worker; scale out with separate hubs behind sticky routing.
workers = 1
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
timeout = 30
graceful_timeout = 30
keepalive = 5

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.getenv('LOG_LEVEL', 'info').lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process Naming
proc_name = 'livechat-hub'

# Server Mechanics
daemon = False
pidfile = '/tmp/livechat-hub.pid'
user = None
group = None


def when_ready(server):
    """Called just after the server is started."""
    server.log.info("Chat hub is ready")


def worker_int(worker):
    """Called just after a worker exited on SIGINT or SIGQUIT."""
    worker.log.info("Worker interrupted; open push connections will be dropped")


def worker_abort(worker):
    """Called when a worker received the SIGABRT signal."""
    worker.log.info("Worker aborted")
