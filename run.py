"""Development server: ``python run.py [--reload] [--host HOST] [--port PORT]``.

Production runs ``uvicorn dashvault.main:app`` directly; workers run
``celery -A dashvault.tasks.celery_app:celery_app worker -Q backups`` plus
``beat`` for the nightly sweep.
"""
import argparse

import uvicorn

from dashvault.config import settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the Dashvault API")
    parser.add_argument("--reload", action="store_true", default=False)
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    uvicorn.run(
        "dashvault.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
