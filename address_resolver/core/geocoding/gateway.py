"""Cancellable asynchronous reverse geocoding over a synchronous transport.

Each request is tracked by its caller-supplied token and moves from
``PENDING`` to exactly one of ``COMPLETED``, ``CANCELED`` or ``FAULTED``.
Work runs on a thread pool; completion handlers are invoked on the worker
thread that finished the request.
"""

import logging
import threading
from concurrent.futures import Future, InvalidStateError, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Hashable, Optional

from address_resolver.core.geocoding.errors import (
    CancellationNotSupportedError,
    GeocodeServiceFault,
    GeocoderArgumentError,
    GeocoderAuthenticationError,
)
from address_resolver.core.geocoding.models import Address, Point

logger = logging.getLogger(__name__)


class ReverseGeocodeState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELED = "canceled"
    FAULTED = "faulted"


@dataclass(frozen=True)
class ReverseGeocodeCompleted:
    """Completion event: the found address, its location and the request token."""

    address: Address
    location: Point
    token: Hashable


ReverseGeocodeHandler = Callable[[ReverseGeocodeCompleted], None]

# Raises GeocodeServiceFault on transport failure; None means no match.
ReverseGeocodeFunc = Callable[[Point], Optional[tuple[Address, Point]]]


@dataclass
class ReverseGeocodeRequest:
    """Handle for one outstanding reverse geocode request."""

    token: Hashable
    location: Point
    future: "Future[Optional[ReverseGeocodeCompleted]]" = field(default_factory=Future)
    state: ReverseGeocodeState = ReverseGeocodeState.PENDING
    work: Optional["Future[Any]"] = None

    def result(self, timeout: Optional[float] = None) -> Optional[ReverseGeocodeCompleted]:
        return self.future.result(timeout)


class ReverseGeocodeGateway:
    """Runs reverse geocode requests in the background and reports completions."""

    def __init__(
        self,
        reverse_geocode: ReverseGeocodeFunc,
        supports_cancellation: bool,
        max_workers: int = 4,
        name: str = "reverse-geocode",
    ):
        """Initialize the gateway.

        Args:
            reverse_geocode: Synchronous reverse geocode callable
            supports_cancellation: Whether ``cancel`` may be used
            max_workers: Thread pool size
            name: Thread name prefix
        """
        self._reverse_geocode = reverse_geocode
        self.supports_cancellation = supports_cancellation
        self._max_workers = max_workers
        self._name = name
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: dict[Hashable, ReverseGeocodeRequest] = {}
        self._handlers: list[ReverseGeocodeHandler] = []

    def add_handler(self, handler: ReverseGeocodeHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def remove_handler(self, handler: ReverseGeocodeHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def pending_tokens(self) -> list[Hashable]:
        with self._lock:
            return list(self._pending)

    def submit(self, location: Point, token: Hashable) -> ReverseGeocodeRequest:
        """Start reverse geocoding ``location``; returns immediately.

        Raises:
            GeocoderArgumentError: If the token or location is None, or the
                token already identifies a pending request
        """
        if token is None:
            raise GeocoderArgumentError("token")
        if location is None:
            raise GeocoderArgumentError("location")

        request = ReverseGeocodeRequest(token=token, location=location)
        with self._lock:
            if token in self._pending:
                raise GeocoderArgumentError(
                    "token", f"A reverse geocode request for {token!r} is already pending"
                )
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix=self._name
                )
            self._pending[token] = request
            request.work = self._executor.submit(self._run, request)
        return request

    def cancel(self, token: Hashable) -> bool:
        """Cancel the pending request identified by ``token``.

        Returns:
            True if a pending request was canceled, False if none was found

        Raises:
            GeocoderArgumentError: If the token is None
            CancellationNotSupportedError: If this gateway cannot cancel
        """
        if token is None:
            raise GeocoderArgumentError("token")
        if not self.supports_cancellation:
            raise CancellationNotSupportedError(
                "Reverse geocoding cannot be canceled for this geocoder"
            )

        with self._lock:
            request = self._pending.pop(token, None)
            if request is None:
                return False
            request.state = ReverseGeocodeState.CANCELED
        if request.work is not None:
            request.work.cancel()
        request.future.cancel()
        logger.debug(f"Reverse geocode request {token!r} canceled")
        return True

    def _finish(
        self, request: ReverseGeocodeRequest, state: ReverseGeocodeState
    ) -> bool:
        """Move a pending request to its final state; False if already canceled."""
        with self._lock:
            if request.state is not ReverseGeocodeState.PENDING:
                return False
            request.state = state
            if self._pending.get(request.token) is request:
                del self._pending[request.token]
        return True

    def _run(self, request: ReverseGeocodeRequest) -> None:
        try:
            outcome = self._reverse_geocode(request.location)
        except GeocodeServiceFault as e:
            logger.warning(
                f"Reverse geocoding failed for ({request.location.x}, "
                f"{request.location.y}): {e}"
            )
            if self._finish(request, ReverseGeocodeState.FAULTED):
                self._resolve(request, None)
            return
        except GeocoderAuthenticationError as e:
            logger.error(f"Reverse geocoding rejected by server: {e}")
            if self._finish(request, ReverseGeocodeState.FAULTED):
                self._reject(request, e)
            return
        except Exception as e:
            logger.exception(f"Unexpected reverse geocoding error: {e}")
            if self._finish(request, ReverseGeocodeState.FAULTED):
                self._reject(request, e)
            return

        if not self._finish(request, ReverseGeocodeState.COMPLETED):
            # Canceled while in flight: the result is discarded.
            return

        event = None
        if outcome is not None:
            address, location = outcome
            event = ReverseGeocodeCompleted(
                address=address.clone(), location=location, token=request.token
            )
        self._resolve(request, event)

        if event is not None:
            with self._lock:
                handlers = list(self._handlers)
            for handler in handlers:
                try:
                    handler(event)
                except Exception as e:
                    logger.exception(f"Reverse geocode completion handler failed: {e}")

    @staticmethod
    def _resolve(
        request: ReverseGeocodeRequest, event: Optional[ReverseGeocodeCompleted]
    ) -> None:
        try:
            request.future.set_result(event)
        except InvalidStateError:
            # The caller canceled the future directly.
            pass

    @staticmethod
    def _reject(request: ReverseGeocodeRequest, error: BaseException) -> None:
        try:
            request.future.set_exception(error)
        except InvalidStateError:
            pass

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is None:
            return
        executor.shutdown(wait=wait, cancel_futures=True)
        # Requests whose work never started are canceled.
        with self._lock:
            abandoned = [
                r for r in self._pending.values() if r.work is not None and r.work.cancelled()
            ]
            for request in abandoned:
                request.state = ReverseGeocodeState.CANCELED
                del self._pending[request.token]
        for request in abandoned:
            request.future.cancel()
