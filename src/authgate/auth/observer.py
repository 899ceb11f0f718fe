"""Progress notifications emitted by the device flow.

:class:`~authgate.auth.flow.DeviceFlow` and
:class:`~authgate.auth.polling.PollingEngine` report every step through a
:class:`FlowObserver`. Notifications flow one way only: an observer never
returns anything the flow acts on, so presentation can be swapped freely.

Two presenters ship with the CLI:

* :class:`PlainObserver` -- one line per notification via
  :mod:`authgate.output`, suited to pipes, CI logs and ``--plain``.
* :class:`RichObserver` -- a live :class:`rich.panel.Panel` on stderr with a
  countdown to device code expiry, redrawn once per second by its own UI
  thread.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from authgate import output

UI_REFRESH_SECONDS = 1.0


def format_duration(value: timedelta | float) -> str:
    """Render a duration compactly, e.g. ``7.5s``, ``4m05s`` or ``1h00m00s``."""
    seconds = value.total_seconds() if isinstance(value, timedelta) else float(value)
    if seconds < 0:
        return "-" + format_duration(-seconds)
    if seconds < 60:
        return f"{seconds:g}s"
    whole = int(round(seconds))
    hours, rest = divmod(whole, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{secs:02d}s"
    return f"{minutes}m{secs:02d}s"


class FlowObserver:
    """Base observer; every notification is a no-op.

    Subclasses override only what they present. The flow calls these
    methods from the thread that runs it.
    """

    def banner(self) -> None:
        pass

    def tokens_found(self) -> None:
        pass

    def tokens_not_found(self) -> None:
        pass

    def token_valid(self) -> None:
        pass

    def token_expired(self) -> None:
        pass

    def refreshing(self) -> None:
        pass

    def refresh_ok(self) -> None:
        pass

    def refresh_failed(self, err: Exception) -> None:
        pass

    def requesting_device_code(self) -> None:
        pass

    def device_code_ready(
        self,
        user_code: str,
        verification_uri: str,
        verification_uri_complete: str,
        expiry: datetime,
    ) -> None:
        pass

    def waiting_for_auth(self) -> None:
        pass

    def poll_slow_down(self, interval: float) -> None:
        pass

    def auth_success(self) -> None:
        pass

    def token_saved(self, path: Path) -> None:
        pass

    def token_save_failed(self, err: Exception) -> None:
        pass

    def verifying(self) -> None:
        pass

    def verify_ok(self, body: str) -> None:
        pass

    def verify_failed(self, err: Exception) -> None:
        pass

    def api_call_ok(self) -> None:
        pass

    def api_call_failed(self, err: Exception) -> None:
        pass

    def access_token_rejected(self) -> None:
        pass

    def token_refreshed_retrying(self) -> None:
        pass

    def reauth_required(self) -> None:
        pass

    def done(self, preview: str, token_type: str, expires_in: timedelta) -> None:
        pass

    def fatal(self, err: Exception) -> None:
        pass


class PlainObserver(FlowObserver):
    """Line-oriented presenter writing through the global output manager."""

    def banner(self) -> None:
        output.info("=== OAuth Device Code Flow ===")

    def tokens_found(self) -> None:
        output.info("Found existing tokens!")

    def tokens_not_found(self) -> None:
        output.info("No existing tokens found, starting device flow...")

    def token_valid(self) -> None:
        output.info("Access token is still valid, using it...")

    def token_expired(self) -> None:
        output.info("Access token expired, refreshing...")

    def refreshing(self) -> None:
        output.info("Refreshing access token...")

    def refresh_ok(self) -> None:
        output.success("Token refreshed successfully!")

    def refresh_failed(self, err: Exception) -> None:
        output.warning(f"Refresh failed: {err}")
        output.info("Starting new device flow...")

    def requesting_device_code(self) -> None:
        output.info("Step 1: Requesting device code...")

    def device_code_ready(
        self,
        user_code: str,
        verification_uri: str,
        verification_uri_complete: str,
        expiry: datetime,
    ) -> None:
        remaining = expiry - datetime.now(timezone.utc)
        output.info("----------------------------------------")
        output.info(f"Please open this link to authorize:\n{verification_uri_complete}")
        output.info(f"\nOr manually visit: {verification_uri}")
        output.info(f"And enter code: {user_code}")
        output.info(f"The code expires in {format_duration(max(remaining, timedelta(0)))}.")
        output.info("----------------------------------------")

    def waiting_for_auth(self) -> None:
        output.info("Step 2: Waiting for authorization...")

    def poll_slow_down(self, interval: float) -> None:
        output.info(f"Server requested slower polling, new interval: {format_duration(interval)}")

    def auth_success(self) -> None:
        output.success("Authorization successful!")

    def token_saved(self, path: Path) -> None:
        output.info(f"Tokens saved to {path}")

    def token_save_failed(self, err: Exception) -> None:
        output.warning(f"Failed to save tokens: {err}")

    def verifying(self) -> None:
        output.info("Verifying token...")

    def verify_ok(self, body: str) -> None:
        if body:
            output.debug(f"Token Info: {body}")
        output.success("Token verified successfully!")

    def verify_failed(self, err: Exception) -> None:
        output.warning(f"Token verification failed: {err}")

    def api_call_ok(self) -> None:
        output.success("API call successful!")

    def api_call_failed(self, err: Exception) -> None:
        output.warning(f"API call failed: {err}")

    def access_token_rejected(self) -> None:
        output.info("Access token rejected (401), refreshing...")

    def token_refreshed_retrying(self) -> None:
        output.info("Token refreshed, retrying API call...")

    def reauth_required(self) -> None:
        output.info("Refresh token expired, re-authenticating...")

    def done(self, preview: str, token_type: str, expires_in: timedelta) -> None:
        output.info("========================================")
        output.info("Current Token Info:")
        output.info(f"Access Token: {preview}...")
        output.info(f"Token Type: {token_type or '-'}")
        output.info(f"Expires In: {format_duration(expires_in)}")
        output.info("========================================")

    def fatal(self, err: Exception) -> None:
        output.error(str(err))


class RichObserver(FlowObserver):
    """Live terminal panel with a status log and a device code countdown.

    The flow thread only mutates state under ``_lock``; a separate UI thread
    redraws the panel every :data:`UI_REFRESH_SECONDS` so the countdown keeps
    moving while the flow is blocked in a poll wait. Use as a context
    manager around the flow::

        with RichObserver(console) as observer:
            DeviceFlow(config, client, store, observer).run()
    """

    _MARKS = {
        "ok": ("✓", "green"),
        "warn": ("!", "yellow"),
        "info": ("•", "dim"),
    }

    def __init__(
        self,
        console: Optional[Console] = None,
        refresh_seconds: float = UI_REFRESH_SECONDS,
    ) -> None:
        self._console = console or output.get_output().stderr_console
        self._refresh_seconds = refresh_seconds
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._live: Optional[Live] = None

        self._phase = "Starting"
        self._status: list[tuple[str, str]] = []
        self._user_code = ""
        self._verification_uri = ""
        self._verification_uri_complete = ""
        self._expiry: Optional[datetime] = None
        self._interval: Optional[float] = None
        self._summary: Optional[tuple[str, str, timedelta]] = None
        self._error = ""

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def __enter__(self) -> RichObserver:
        self._live = Live(
            self.render(),
            console=self._console,
            auto_refresh=False,
            transient=False,
        )
        self._live.start()
        self._stop.clear()
        self._thread = threading.Thread(target=self._ui_loop, name="authgate-ui", daemon=True)
        self._thread.start()
        return self

    def __exit__(self, *args: object) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self._live is not None:
            self._live.update(self.render(), refresh=True)
            self._live.stop()
            self._live = None

    def _ui_loop(self) -> None:
        while not self._stop.wait(self._refresh_seconds):
            self._redraw()

    def _redraw(self) -> None:
        live = self._live
        if live is not None:
            live.update(self.render(), refresh=True)

    # ------------------------------------------------------------------ #
    # Rendering
    # ------------------------------------------------------------------ #

    def render(self, now: Optional[datetime] = None) -> Panel:
        """Build the panel for the current state."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            parts: list[Text] = []

            if self._user_code and self._summary is None:
                parts.append(
                    Text.assemble(("Enter code: ", "bold"), (self._user_code, "bold yellow"))
                )
                parts.append(Text(f"Open: {self._verification_uri_complete}"))
                if self._verification_uri != self._verification_uri_complete:
                    parts.append(Text(f"Or visit {self._verification_uri}", style="dim"))
                if self._expiry is not None:
                    remaining = int(max(self._expiry - now, timedelta(0)).total_seconds())
                    parts.append(Text(f"Code expires in {format_duration(remaining)}"))
                if self._interval is not None:
                    parts.append(Text(f"Polling every {format_duration(self._interval)}", style="dim"))
                parts.append(Text(""))

            for kind, message in self._status:
                mark, style = self._MARKS[kind]
                parts.append(Text.assemble((f"{mark} ", style), message))

            if self._summary is not None:
                preview, token_type, expires_in = self._summary
                parts.append(Text(""))
                parts.append(Text(f"Access Token: {preview}...", style="bold"))
                parts.append(Text(f"Token Type: {token_type or '-'}"))
                parts.append(Text(f"Expires In: {format_duration(expires_in)}"))

            if self._error:
                parts.append(Text(f"Error: {self._error}", style="bold red"))

            border = "red" if self._error else ("green" if self._summary else "cyan")
            return Panel(
                Group(*parts),
                title=f"[bold]OAuth Device Flow[/bold] · {self._phase}",
                border_style=border,
            )

    # ------------------------------------------------------------------ #
    # Notifications
    # ------------------------------------------------------------------ #

    def _add(self, kind: str, message: str, phase: Optional[str] = None) -> None:
        with self._lock:
            self._status.append((kind, message))
            if phase is not None:
                self._phase = phase
        self._redraw()

    def tokens_found(self) -> None:
        self._add("ok", "Found existing tokens")

    def tokens_not_found(self) -> None:
        self._add("info", "No existing tokens, starting device flow")

    def token_valid(self) -> None:
        self._add("ok", "Access token is still valid")

    def token_expired(self) -> None:
        self._add("warn", "Access token expired", phase="Refreshing")

    def refreshing(self) -> None:
        self._add("info", "Refreshing access token", phase="Refreshing")

    def refresh_ok(self) -> None:
        self._add("ok", "Token refreshed")

    def refresh_failed(self, err: Exception) -> None:
        self._add("warn", f"Refresh failed: {err}")

    def requesting_device_code(self) -> None:
        self._add("info", "Requesting device code", phase="Requesting device code")

    def device_code_ready(
        self,
        user_code: str,
        verification_uri: str,
        verification_uri_complete: str,
        expiry: datetime,
    ) -> None:
        with self._lock:
            self._user_code = user_code
            self._verification_uri = verification_uri
            self._verification_uri_complete = verification_uri_complete
            self._expiry = expiry
            self._phase = "Authorize this device"
        self._redraw()

    def waiting_for_auth(self) -> None:
        self._add("info", "Waiting for authorization", phase="Waiting for authorization")

    def poll_slow_down(self, interval: float) -> None:
        with self._lock:
            self._interval = interval
        self._add("warn", f"Server asked to slow down, polling every {format_duration(interval)}")

    def auth_success(self) -> None:
        self._add("ok", "Authorization successful")

    def token_saved(self, path: Path) -> None:
        self._add("ok", f"Tokens saved to {path}")

    def token_save_failed(self, err: Exception) -> None:
        self._add("warn", f"Failed to save tokens: {err}")

    def verifying(self) -> None:
        self._add("info", "Verifying token", phase="Verifying")

    def verify_ok(self, body: str) -> None:
        self._add("ok", "Token verified")

    def verify_failed(self, err: Exception) -> None:
        self._add("warn", f"Token verification failed: {err}")

    def api_call_ok(self) -> None:
        self._add("ok", "API call successful")

    def api_call_failed(self, err: Exception) -> None:
        self._add("warn", f"API call failed: {err}")

    def access_token_rejected(self) -> None:
        self._add("warn", "Access token rejected (401), refreshing")

    def token_refreshed_retrying(self) -> None:
        self._add("info", "Token refreshed, retrying API call")

    def reauth_required(self) -> None:
        self._add("warn", "Refresh token expired, re-authenticating")

    def done(self, preview: str, token_type: str, expires_in: timedelta) -> None:
        with self._lock:
            self._summary = (preview, token_type, expires_in)
            self._phase = "Done"
        self._redraw()

    def fatal(self, err: Exception) -> None:
        with self._lock:
            self._error = str(err)
            self._phase = "Failed"
        self._redraw()
