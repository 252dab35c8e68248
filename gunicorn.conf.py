"""
Gunicorn configuration for the Collecto Vault health endpoint.

Usage:
    gunicorn -c gunicorn.conf.py run:app
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# The service is DB-bound; a couple of sync workers is enough
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = int(os.getenv('GUNICORN_TIMEOUT', '60'))
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info').lower()
capture_output = True

proc_name = 'collecto-vault'

preload_app = True
graceful_timeout = 30


def on_starting(server):
    print("[Gunicorn] Starting Collecto Vault...")


def on_exit(server):
    print("[Gunicorn] Collecto Vault shutting down...")
