"""
Gunicorn configuration for the Clinic Engage API.

Env vars that override defaults:
  PORT     - TCP port to bind (default: 8000)
  WORKERS  - number of worker processes (default: 2)
  TIMEOUT  - worker timeout in seconds (default: 60)
"""
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

# Webhook handling blocks on the classifier and Twilio; two workers keep
# one free while the other waits on a slow model call.
workers = int(os.environ.get("WORKERS", "2"))

worker_class = "uvicorn.workers.UvicornWorker"

keepalive = 5

# Must exceed LLM_TIMEOUT_SECONDS plus the Twilio round trip.
timeout = int(os.environ.get("TIMEOUT", "60"))

loglevel = "info"
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)sB %(D)sµs'

graceful_timeout = 30
