import multiprocessing
import os

bind = os.getenv("SCHOOLHUB_BIND", "127.0.0.1:8000")
wsgi_app = "schoolhub.main:app"
workers = int(os.getenv("SCHOOLHUB_WORKERS", (multiprocessing.cpu_count() * 2) + 1))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 60
graceful_timeout = 30
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = "-"
errorlog = "-"
