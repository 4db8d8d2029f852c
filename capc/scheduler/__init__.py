"""Work queues, controllers and the manager that runs them."""

from capc.scheduler.controller import Controller
from capc.scheduler.manager import Manager
from capc.scheduler.queue import BackoffRateLimiter, QueueShutDown, WorkQueue

__all__ = ["BackoffRateLimiter", "Controller", "Manager", "QueueShutDown", "WorkQueue"]
