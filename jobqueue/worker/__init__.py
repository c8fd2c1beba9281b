"""
Worker module.
Contains the handler registry, the executor and the dispatcher.
"""

from jobqueue.worker.executor import Executor
from jobqueue.worker.handlers import HandlerRegistry, JobHandler
from jobqueue.worker.main import Dispatcher, run

__all__ = ["Dispatcher", "Executor", "HandlerRegistry", "JobHandler", "run"]
