"""
RQ worker entry point — processes runs enqueued with "async": true.

    python worker.py
"""
from rq import Worker

from prospector.extensions import redis_client
from prospector.logging_config import configure_logging

if __name__ == '__main__':
    configure_logging()
    Worker(['default'], connection=redis_client).work()
