"""RFC 8628 token polling state machine.

After the user has been shown a user code, :class:`PollingEngine` repeatedly
exchanges the device code at the token endpoint until the server grants a
token, refuses, or the code expires::

    POLLING --success---------------> SUCCEEDED
       |  --authorization_pending--> POLLING (same interval)
       |  --slow_down--------------> POLLING (interval backed off)
       |  --access_denied----------> DENIED
       |  --expired_token----------> EXPIRED
       |  --other error------------> FAILED
       +--cancel / deadline--------> CANCELLED

On ``slow_down`` the backoff multiplier grows by :data:`SLOW_DOWN_FACTOR`
and the interval becomes ``min(interval * multiplier, MAX_INTERVAL_SECONDS)``,
so repeated ``slow_down`` answers compound on the current interval.
``authorization_pending`` and ``slow_down`` never leave the engine.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from authgate.auth.observer import FlowObserver
from authgate.exceptions import (
    AccessDeniedError,
    AuthgateError,
    DeviceCodeExpiredError,
    DeviceFlowError,
    FlowCancelledError,
    OAuthError,
)
from authgate.models import CredentialRecord, DeviceAuthorization

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 5.0
MAX_INTERVAL_SECONDS = 60.0
SLOW_DOWN_FACTOR = 1.5

ExchangeFn = Callable[[str, Optional[float]], CredentialRecord]
"""``exchange(device_code, deadline) -> CredentialRecord``; raises on any non-success."""


class PollState(str, Enum):
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    DENIED = "denied"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PollingEngine:
    """Drive one device authorization to a terminal state.

    Args:
        exchange: Performs a single token exchange attempt, typically
            :meth:`ExchangeClient.exchange_device_code
            <authgate.auth.exchange.ExchangeClient.exchange_device_code>`.
            It receives the flow deadline so its HTTP timeout never outlives
            the flow.
        observer: Receives ``poll_slow_down`` notifications.
        cancel_event: Set from another thread (the signal handler) to abort
            the wait immediately.
        deadline: Optional :func:`time.monotonic` instant after which the
            flow counts as cancelled.

    Attributes:
        state: The current :class:`PollState`.
        interval: The current spacing between polls, in seconds.
    """

    def __init__(
        self,
        exchange: ExchangeFn,
        observer: Optional[FlowObserver] = None,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> None:
        self._exchange = exchange
        self._observer = observer or FlowObserver()
        self._cancel_event = cancel_event or threading.Event()
        self._deadline = deadline
        self.state = PollState.POLLING
        self.interval = DEFAULT_INTERVAL_SECONDS

    def run(self, authorization: DeviceAuthorization) -> CredentialRecord:
        """Poll until the server grants a token.

        Returns:
            The validated credential.

        Raises:
            AccessDeniedError: The user refused the request.
            DeviceCodeExpiredError: The device code expired first.
            OAuthError: Any other OAuth error, code and description verbatim.
            DeviceFlowError: Transport, validation or malformed-response
                failure, chained to its cause.
            FlowCancelledError: The cancel event fired or the deadline passed.
        """
        multiplier = 1.0
        self.interval = float(authorization.interval) or DEFAULT_INTERVAL_SECONDS
        self.state = PollState.POLLING

        while True:
            self._wait(self.interval)
            self._check_cancelled()

            try:
                record = self._exchange(authorization.device_code, self._deadline)
            except FlowCancelledError:
                self.state = PollState.CANCELLED
                raise
            except OAuthError as exc:
                # A late answer must not mask a cancellation
                self._check_cancelled()
                if exc.code == "authorization_pending":
                    logger.debug("Authorization pending, polling again in %ss", self.interval)
                    continue
                if exc.code == "slow_down":
                    multiplier *= SLOW_DOWN_FACTOR
                    self.interval = min(self.interval * multiplier, MAX_INTERVAL_SECONDS)
                    logger.debug("slow_down received, interval now %ss", self.interval)
                    self._observer.poll_slow_down(self.interval)
                    continue
                if exc.code == "expired_token":
                    self.state = PollState.EXPIRED
                    raise DeviceCodeExpiredError(
                        "device code expired, please restart the flow"
                    ) from exc
                if exc.code == "access_denied":
                    self.state = PollState.DENIED
                    raise AccessDeniedError("user denied authorization") from exc
                self.state = PollState.FAILED
                raise
            except AuthgateError as exc:
                self._check_cancelled()
                self.state = PollState.FAILED
                raise DeviceFlowError(f"token exchange failed: {exc}") from exc

            self._check_cancelled()
            self.state = PollState.SUCCEEDED
            return record

    def _wait(self, seconds: float) -> None:
        if self._deadline is not None:
            seconds = min(seconds, max(self._deadline - time.monotonic(), 0.0))
        self._cancel_event.wait(seconds)

    def _check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            self.state = PollState.CANCELLED
            raise FlowCancelledError("authorization cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.state = PollState.CANCELLED
            raise FlowCancelledError("authorization deadline exceeded")
