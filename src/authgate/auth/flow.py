"""Credential lifecycle orchestration.

:class:`DeviceFlow` is the only place where errors become policy:

* a cached, unexpired credential is used as is;
* an expired one is refreshed, and any refresh failure other than
  cancellation falls back to a fresh device authorization;
* a device-flow result that cannot be saved is still returned, with a
  ``token_save_failed`` notification;
* a 401 from the resource server triggers one refresh and one retry, and a
  dead refresh token (``invalid_grant`` / ``invalid_token``) triggers full
  re-authentication.

Everything the user sees goes through the
:class:`~authgate.auth.observer.FlowObserver` passed in.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from authgate.auth.credential_store import CredentialStore
from authgate.auth.exchange import ExchangeClient
from authgate.auth.observer import FlowObserver
from authgate.auth.polling import PollingEngine
from authgate.exceptions import (
    AccessTokenRejectedError,
    AuthgateError,
    FlowCancelledError,
    NotFoundError,
    RefreshTokenExpiredError,
    StorageError,
)
from authgate.models import AppConfig, CredentialRecord

logger = logging.getLogger(__name__)


class DeviceFlow:
    """Obtain, refresh, verify and use the credential of one client.

    Args:
        config: Effective configuration; ``config.client_id`` selects the
            record in the shared store.
        client: An entered :class:`~authgate.auth.exchange.ExchangeClient`.
        store: The shared credential store.
        observer: Receives progress notifications.
        cancel_event: Set by the CLI signal handler to abort the flow.
        deadline: Optional :func:`time.monotonic` instant bounding the
            whole flow, including every HTTP call it makes.
    """

    def __init__(
        self,
        config: AppConfig,
        client: ExchangeClient,
        store: CredentialStore,
        observer: Optional[FlowObserver] = None,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> None:
        self._config = config
        self._client = client
        self._store = store
        self._observer = observer or FlowObserver()
        self._cancel_event = cancel_event or threading.Event()
        self._deadline = deadline

    # ------------------------------------------------------------------ #
    # Full lifecycle
    # ------------------------------------------------------------------ #

    def run(self) -> CredentialRecord:
        """Obtain a credential, show it, verify it, then use it once.

        Returns:
            The credential in effect at the end of the run.

        Raises:
            FlowCancelledError: On SIGINT/SIGTERM or deadline.
            AuthgateError: Any unrecoverable failure, after a single
                ``fatal`` notification.
        """
        try:
            return self._run()
        except FlowCancelledError:
            raise
        except AuthgateError as exc:
            self._observer.fatal(exc)
            raise

    def _run(self) -> CredentialRecord:
        self._observer.banner()
        record = self.obtain_credential()
        self._observer.done(record.preview(), record.token_type, record.expires_in())

        self.verify(record)

        try:
            record = self.call_with_auto_refresh(record)
        except RefreshTokenExpiredError:
            self._observer.reauth_required()
            record = self.perform_device_flow()
            self._observer.token_refreshed_retrying()
            record = self.call_with_auto_refresh(record)
        except FlowCancelledError:
            raise
        except AuthgateError as exc:
            self._observer.api_call_failed(exc)
        return record

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #

    def obtain_credential(self) -> CredentialRecord:
        """Return a usable credential from cache, refresh, or a new device flow."""
        self._check_cancelled()
        try:
            record = self._store.load(self._config.client_id)
        except NotFoundError:
            self._observer.tokens_not_found()
            return self.perform_device_flow()
        except StorageError as exc:
            logger.warning("Ignoring unreadable token file: %s", exc)
            self._observer.tokens_not_found()
            return self.perform_device_flow()

        self._observer.tokens_found()
        if not record.is_expired():
            self._observer.token_valid()
            return record

        self._observer.token_expired()
        self._observer.refreshing()
        try:
            record = self.refresh(record)
        except FlowCancelledError:
            raise
        except AuthgateError as exc:
            self._observer.refresh_failed(exc)
            return self.perform_device_flow()
        self._observer.refresh_ok()
        return record

    def perform_device_flow(self) -> CredentialRecord:
        """Run a complete RFC 8628 authorization and persist the result.

        A failed save is reported through ``token_save_failed`` and does not
        fail the flow: the caller still gets the credential.
        """
        self._check_cancelled()
        self._observer.requesting_device_code()
        authorization = self._client.request_device_code(self._deadline)
        self._observer.device_code_ready(
            authorization.user_code,
            authorization.verification_uri,
            authorization.verification_uri_complete,
            authorization.expiry,
        )

        self._observer.waiting_for_auth()
        engine = PollingEngine(
            self._client.exchange_device_code,
            observer=self._observer,
            cancel_event=self._cancel_event,
            deadline=self._deadline,
        )
        record = engine.run(authorization)
        self._observer.auth_success()

        try:
            self._store.save(record)
        except StorageError as exc:
            logger.debug("Saving tokens failed", exc_info=True)
            self._observer.token_save_failed(exc)
        else:
            self._observer.token_saved(self._store.path)
        return record

    def refresh(self, record: CredentialRecord) -> CredentialRecord:
        """Exchange the refresh token of *record* and persist the new record.

        Raises:
            RefreshTokenExpiredError: No refresh token is stored, or the
                server rejected it.
        """
        self._check_cancelled()
        if not record.refresh_token:
            raise RefreshTokenExpiredError("invalid_grant", "no refresh token stored")
        new_record = self._client.refresh(record.refresh_token, self._deadline)
        try:
            self._store.save(new_record)
        except StorageError as exc:
            self._observer.token_save_failed(exc)
        return new_record

    def verify(self, record: CredentialRecord) -> bool:
        """Introspect *record* at the server. Failure is reported, not raised."""
        self._observer.verifying()
        try:
            body = self._client.introspect(record.access_token, self._deadline)
        except FlowCancelledError:
            raise
        except AuthgateError as exc:
            self._observer.verify_failed(exc)
            return False
        self._observer.verify_ok(body)
        return True

    def call_with_auto_refresh(self, record: CredentialRecord) -> CredentialRecord:
        """Call the protected endpoint, refreshing once on a 401.

        Returns:
            The credential that succeeded (the refreshed one after a 401).

        Raises:
            RefreshTokenExpiredError: The refresh token is dead; the caller
                must re-authenticate.
        """
        self._check_cancelled()
        try:
            self._client.introspect(record.access_token, self._deadline)
        except AccessTokenRejectedError:
            self._observer.access_token_rejected()
            record = self.refresh(record)
            self._observer.token_refreshed_retrying()
            self._client.introspect(record.access_token, self._deadline)
        self._observer.api_call_ok()
        return record

    def _check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise FlowCancelledError("authorization cancelled")
