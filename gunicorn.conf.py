"""
Gunicorn configuration for the storefront pricing engine.
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Sync workers; each checkout is a short database transaction
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = 60
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

proc_name = 'storefront-pricing'

preload_app = True
graceful_timeout = 30


def on_starting(server):
    print("[Gunicorn] Starting storefront pricing server...")


def on_exit(server):
    print("[Gunicorn] Storefront pricing server shutting down...")
