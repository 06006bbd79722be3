"""
Gunicorn configuration for the Church Finder project
"""

import os

# Server socket
bind = os.environ.get('GUNICORN_BIND', "0.0.0.0:8000")
backlog = 2048

# Worker processes
workers = int(os.environ.get('GUNICORN_WORKERS', 2))
worker_class = "sync"
worker_connections = 1000
# Registration geocodes and uploads inside the request
timeout = 60
keepalive = 2

# Restart workers after this many requests, to prevent memory leaks
max_requests = 1000
max_requests_jitter = 50

# Logging
accesslog = os.environ.get('GUNICORN_ACCESS_LOG', "-")
errorlog = os.environ.get('GUNICORN_ERROR_LOG', "-")
loglevel = "info"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s"'

# Process naming
proc_name = 'church_finder_gunicorn'

wsgi_app = 'church_finder.wsgi:application'

# Daemon mode
daemon = False
pidfile = os.environ.get('GUNICORN_PIDFILE')

# Preload application for better memory usage
preload_app = True

# Graceful timeout
graceful_timeout = 30

# Temporary directory
tmp_upload_dir = None
