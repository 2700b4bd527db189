# Gunicorn configuration for running clinicstream behind uvicorn workers
import os
import sys

current_dir = os.path.dirname(os.path.abspath(__file__))
src_path = os.path.join(current_dir, "src")
sys.path.insert(0, src_path)

wsgi_app = "clinicstream.app:app"

# Server socket
bind = f"0.0.0.0:{os.environ.get('PORT', 8000)}"
backlog = 2048

# Live sessions live in process memory: keep a single worker
workers = 1
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
# A consultation stream can stay open for the whole visit
timeout = 0
graceful_timeout = 30
keepalive = 75

# Logging
accesslog = "-"
errorlog = "-"
loglevel = "info"

proc_name = "clinicstream"

preload_app = False
daemon = False
