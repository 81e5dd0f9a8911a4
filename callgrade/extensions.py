from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from redis import Redis
from redis.exceptions import RedisError
from rq import Queue
from flask import current_app


class RQWrapper:
    def __init__(self):
        self.redis = None
        self.queue = None

    def init_app(self, app):
        if not app.config.get("RQ_ENABLED", True):
            # tests and single-process setups run jobs inline
            self.redis = None
            self.queue = None
            return
        self.redis = Redis.from_url(app.config.get("REDIS_URL"))
        self.queue = Queue("grading", connection=self.redis)

    def enqueue(self, func, *args, **kwargs):
        # Prefer enqueueing to RQ, but run the function synchronously when
        # Redis is not configured or not reachable.
        if self.queue is not None:
            try:
                return self.queue.enqueue(func, *args, **kwargs)
            except RedisError:
                current_app.logger.exception('RQ enqueue failed, falling back to sync execution')
        rq_keys = {'job_timeout', 'timeout', 'at_front', 'depends_on', 'result_ttl', 'ttl', 'meta', 'description'}
        safe_kwargs = {k: v for k, v in kwargs.items() if k not in rq_keys}
        func(*args, **safe_kwargs)
        return None


db = SQLAlchemy()
migrate = Migrate()
rq = RQWrapper()
