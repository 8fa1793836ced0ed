"""
Delivers auction events to observers
"""
import logging
from threading import Lock
from typing import Callable

from reactivex import Observable, Observer, Subject
from reactivex import operators as ops
from reactivex.abc import DisposableBase, ObserverBase
from reactivex.scheduler.scheduler import Scheduler

from dutch_auction.auction.domain.auction_record import OrderId
from dutch_auction.auction.events import AuctionEvent
from dutch_auction.core.rx import default_scheduler


class EventBroadcaster:
    """
    Broadcasts auction events to all currently subscribed observers.

    Notes
    -----
    - Events are delivered on the scheduler, i.e., observers never run on the thread that published the event.
    - Each subscription is delivered events one at a time, in publish order. Thus, for a single auction, every
      observer sees the events in the order the AuctionManager emitted them. There is no ordering guarantee across
      auctions.
    - Delivery is best effort: observers only receive events published while they are subscribed. There is no replay.
    - An observer that raises an error is logged. Its error does not affect other observers.
    """

    def __init__(self, scheduler: Scheduler | None = None):
        self._logger = logging.getLogger(self.__class__.__name__)
        self._subject: Subject[AuctionEvent] = Subject()
        # serializes calls into the subject, which may be published to concurrently from different auctions.
        # Held only while each subscription enqueues the event onto its observe_on queue, never while an observer
        # runs. Thus, a slow observer cannot stall publishers that hold other auctions' locks.
        self._lock = Lock()
        self._observable: Observable[AuctionEvent] = self._subject.pipe(
            ops.observe_on(scheduler if scheduler else default_scheduler)
        )

    @property
    def observable(self) -> Observable[AuctionEvent]:
        return self._observable

    def events(self, order_id: OrderId) -> Observable[AuctionEvent]:
        """
        :return: Observable that only emits events for the specified order
        """
        return self._observable.pipe(ops.filter(lambda event: event.order_id == order_id))

    def subscribe(
        self,
        observer: ObserverBase[AuctionEvent] | Callable[[AuctionEvent], None],
    ) -> DisposableBase:
        """
        Subscribes the observer to all auction events.

        :return: disposing the subscription disconnects the observer
        """
        on_next = observer.on_next if isinstance(observer, ObserverBase) else observer
        name = getattr(observer, "__qualname__", observer.__class__.__name__)

        def deliver(event: AuctionEvent):
            try:
                on_next(event)
            except Exception:  # pylint: disable=broad-exception-caught
                self._logger.exception("observer failed to handle event: %s : %s", name, event)

        return self._observable.subscribe(
            Observer(
                on_next=deliver,
                on_error=observer.on_error if isinstance(observer, ObserverBase) else None,
                on_completed=observer.on_completed
                if isinstance(observer, ObserverBase)
                else None,
            )
        )

    def publish(self, event: AuctionEvent):
        """
        Enqueues the event for delivery to each observer, i.e., does not wait for observers to handle the event.
        """
        self._logger.debug("publish: %s", event)
        with self._lock:
            self._subject.on_next(event)

    def close(self):
        """
        Completes the event stream
        """
        with self._lock:
            self._subject.on_completed()
