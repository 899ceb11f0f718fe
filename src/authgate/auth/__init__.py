"""Device authorization, token exchange, and the shared credential store.

The main entry points are:

- :class:`DeviceFlow` -- orchestrates cache lookup, refresh, and a fresh
  device authorization when nothing else works.
- :class:`PollingEngine` -- the RFC 8628 polling state machine.
- :class:`ExchangeClient` -- HTTP calls to the authorization server.
- :class:`CredentialStore` -- multi-client token file with atomic,
  lock-serialised writes.

Typical usage::

    from authgate.auth import CredentialStore, DeviceFlow, ExchangeClient

    with ExchangeClient(config) as client:
        record = DeviceFlow(config, client, CredentialStore(config.token_file)).run()
"""

from authgate.auth.credential_store import CredentialStore
from authgate.auth.exchange import ExchangeClient
from authgate.auth.filelock import FileLock, LockManager, MarkerFileLockManager
from authgate.auth.flow import DeviceFlow
from authgate.auth.observer import FlowObserver, PlainObserver, RichObserver
from authgate.auth.polling import PollingEngine, PollState

__all__ = [
    "CredentialStore",
    "DeviceFlow",
    "ExchangeClient",
    "FileLock",
    "FlowObserver",
    "LockManager",
    "MarkerFileLockManager",
    "PlainObserver",
    "PollState",
    "PollingEngine",
    "RichObserver",
]
