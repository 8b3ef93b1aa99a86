"""
RQ Worker bootstrap
"""

from rq import Worker, Queue
from app.infrastructure.logging_config import setup_logging
from app.infrastructure.redis_client import get_queue_redis
from app.infrastructure.settings import get_settings
from app.workers.jobs import QUEUE_NAME

listen = [QUEUE_NAME]


def main() -> None:
    setup_logging(get_settings().LOG_LEVEL)
    redis_conn = get_queue_redis()
    worker = Worker([Queue(name, connection=redis_conn) for name in listen], connection=redis_conn)
    worker.work()


if __name__ == "__main__":
    main()
