import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"
worker_class = "uvicorn.workers.UvicornWorker"

# one worker per container: the local queue backend keeps its stage queues in-process
workers = int(os.getenv("WEB_CONCURRENCY", "1"))
timeout = 1800            # must cover TASK_DISPATCH_DEADLINE_SECONDS for a single stage
graceful_timeout = 120
keepalive = 75
threads = 2

# recycle workers to contain Pillow memory growth on large print rasters
max_requests = int(os.getenv("MAX_REQUESTS", "1000"))
max_requests_jitter = int(os.getenv("MAX_REQUESTS_JITTER", "100"))

# Cloud Run/GKE capture stdout
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")
