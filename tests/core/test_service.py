import logging
import unittest
from dataclasses import dataclass, field
from datetime import timedelta

from reactivex import Subject, Observer, Observable
from reactivex.operators import observe_on

from dutch_auction.core.rx import default_scheduler
from dutch_auction.core.service import (
    Service,
    ServiceCommand,
    ServiceLifecycleEvent,
    ServiceLifecycleState,
    ServiceStartError,
    ServiceStopError,
)
from tests.test_support import DutchAuctionTestCase, wait_until

logger = logging.getLogger("ServiceTestCase")


class FooService(Service):
    start_error: Exception | None = None
    stop_error: Exception | None = None

    def _start(self):
        if self.start_error:
            raise self.start_error

    def _stop(self):
        if self.stop_error:
            raise self.stop_error


@dataclass
class ServiceStateSubscriber(Observer[ServiceLifecycleEvent]):
    events_received: list[ServiceLifecycleEvent] = field(default_factory=list)
    error: Exception | None = None
    completed: bool = False

    def on_next(self, event: ServiceLifecycleEvent) -> None:
        logger.info(f"ServiceStateSubscriber.on_next(): {event}")
        self.events_received.append(event)

    def on_error(self, error: Exception) -> None:
        self.error = error

    def on_completed(self) -> None:
        self.completed = True


class ServiceTestCase(DutchAuctionTestCase):
    def test_service_lifecycle(self) -> None:
        commands: Subject[ServiceCommand] = Subject()
        commands_observable: Observable[ServiceCommand] = commands.pipe(
            observe_on(default_scheduler)
        )

        foo = FooService(commands_observable)
        foo_state_observer = ServiceStateSubscriber()
        foo.lifecycle_state_observable.subscribe(foo_state_observer)

        # signal the service to start
        commands.on_next(ServiceCommand.START)
        foo.await_running(timedelta(seconds=5))

        # trying to start the service when it's running should be a noop
        commands.on_next(ServiceCommand.START)

        commands.on_next(ServiceCommand.STOP)
        foo.await_stopped(timedelta(seconds=5))

        expected = [
            ServiceLifecycleEvent(foo.name, ServiceLifecycleState.NEW),
            ServiceLifecycleEvent(foo.name, ServiceLifecycleState.STARTING),
            ServiceLifecycleEvent(foo.name, ServiceLifecycleState.RUNNING),
            ServiceLifecycleEvent(foo.name, ServiceLifecycleState.STOPPING),
            ServiceLifecycleEvent(foo.name, ServiceLifecycleState.STOPPED),
        ]
        # events are streamed async
        wait_until(lambda: len(foo_state_observer.events_received) >= len(expected))
        self.assertEqual(expected, foo_state_observer.events_received)

        with self.subTest("running service can be restarted"):
            foo.start()
            self.assertTrue(foo.running)
            foo.restart()
            self.assertTrue(foo.running)
            foo.stop()
            self.assertTrue(foo.stopped)

    def test_service_start_error(self):
        foo = FooService()
        foo.start_error = Exception("BOOM!")

        with self.assertRaises(ServiceStartError) as err:
            foo.start()
        self.assertEqual(foo.name, err.exception.service_name)
        # stop is triggered on start failure
        self.assertTrue(foo.stopped)

        with self.subTest("service can be started after the error is fixed"):
            foo.start_error = None
            foo.start()
            self.assertTrue(foo.running)
            foo.stop()

    def test_service_stop_error(self):
        foo = FooService()
        foo.stop_error = Exception("BOOM!")
        foo.start()

        with self.assertRaises(ServiceStopError):
            foo.stop()
        # the service is marked stopped even if the shutdown hook fails
        self.assertTrue(foo.stopped)

    def test_stop_new_service(self):
        foo = FooService()
        foo.stop()
        self.assertEqual(ServiceLifecycleState.STOPPED, foo.state)

    def test_await_running_timeout(self):
        foo = FooService()
        with self.assertRaises(TimeoutError):
            foo.await_running(timedelta(milliseconds=10))


if __name__ == "__main__":
    unittest.main()
