"""Login command -- obtain a working access token for one client.

``authgate login`` reuses a cached token when it is still valid, refreshes
an expired one, and otherwise walks the user through a device
authorization. The token is then verified and used once against the
server's token info endpoint, refreshing or re-authenticating on a 401.

Example::

    authgate login --server-url https://auth.example.com --client-id 7b0c2a3e-...
"""

from __future__ import annotations

import signal
import sys
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import typer

from authgate.exceptions import AuthgateError, ConfigError, FlowCancelledError
from authgate.exit_codes import EXIT_CANCELLED
from authgate.output import error, get_output, warning


@contextmanager
def cancel_on_signals(event: threading.Event) -> Iterator[threading.Event]:
    """Set *event* on SIGINT/SIGTERM while the block runs, then restore handlers."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        event.set()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _handler)
    try:
        yield event
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def login_command(
    server_url: Optional[str] = typer.Option(
        None, "--server-url", help="OAuth server URL (env: SERVER_URL)."
    ),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="OAuth client ID (env: CLIENT_ID)."
    ),
    token_file: Optional[str] = typer.Option(
        None, "--token-file", help="Token storage file (env: TOKEN_FILE)."
    ),
) -> None:
    """Authorize this device, or reuse and refresh stored tokens.

    Exits 0 when a usable token is in hand, 3 on denial or expiry of the
    device code, 130 when interrupted, and with the matching error code
    for network, server or storage failures.
    """
    from authgate.auth.credential_store import CredentialStore
    from authgate.auth.exchange import ExchangeClient
    from authgate.auth.flow import DeviceFlow
    from authgate.auth.observer import PlainObserver, RichObserver
    from authgate.config import resolve_config

    try:
        config, warnings = resolve_config(server_url, client_id, token_file)
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    for message in warnings:
        warning(message)

    store = CredentialStore(config.token_file)
    cancel_event = threading.Event()

    try:
        with cancel_on_signals(cancel_event), ExchangeClient(
            config, cancel_event=cancel_event
        ) as client:
            if get_output().is_interactive:
                with RichObserver() as observer:
                    DeviceFlow(config, client, store, observer, cancel_event).run()
            else:
                DeviceFlow(config, client, store, PlainObserver(), cancel_event).run()
    except FlowCancelledError:
        sys.stderr.write("\nCancelled.\n")
        raise typer.Exit(code=EXIT_CANCELLED) from None
    except AuthgateError as exc:
        # Already reported through the observer's fatal notification
        raise typer.Exit(code=exc.exit_code) from None
