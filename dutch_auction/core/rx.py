"""
Provides reactivex schedulers
"""
import multiprocessing
from threading import Thread
from typing import Callable

from reactivex.scheduler import EventLoopScheduler, ThreadPoolScheduler
from reactivex.scheduler.scheduler import Scheduler

# observer callbacks are delivered on this scheduler, i.e., off the thread that emitted the event
default_scheduler: Scheduler = ThreadPoolScheduler(multiprocessing.cpu_count())


def threadpool_scheduler(max_workers: int | None = None) -> ThreadPoolScheduler:
    """
    :param max_workers: if not specified, the max workers will be set to the CPU count
    """
    return ThreadPoolScheduler(
        max_workers if max_workers else multiprocessing.cpu_count()
    )


def event_loop_scheduler(name: str) -> EventLoopScheduler:
    """
    Creates a scheduler that runs all of its scheduled actions, in due time order, on a single daemon thread.

    The scheduler owns its thread. The owner is responsible for disposing the scheduler.

    :param name: thread name
    """

    def thread_factory(target: Callable[[], None]) -> Thread:
        return Thread(target=target, name=name, daemon=True)

    return EventLoopScheduler(thread_factory=thread_factory)
