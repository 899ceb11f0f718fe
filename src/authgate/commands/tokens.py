"""Tokens commands -- inspect the shared token file.

Provides the ``authgate tokens`` sub-command group. Both commands only
read the file (no lock is needed) and never print a full secret: access
tokens are shown as a preview and refresh tokens only as present/absent.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import typer

from authgate.exceptions import AuthgateError
from authgate.models import CredentialRecord
from authgate.output import (
    OutputFormat,
    error,
    get_output,
    info,
    print_data,
    print_json,
    print_table,
)


tokens_app = typer.Typer(no_args_is_help=True)

_TOKEN_FILE_HELP = "Token storage file (env: TOKEN_FILE)."


def _summary(record: CredentialRecord, now: datetime) -> dict[str, Any]:
    return {
        "client_id": record.client_id,
        "access_token": record.preview(16) + "...",
        "refresh_token": "present" if record.refresh_token else "absent",
        "token_type": record.token_type or "-",
        "expires_at": record.expires_at.isoformat(),
        "expired": record.is_expired(now),
    }


@tokens_app.command("list")
def tokens_list(
    token_file: Optional[str] = typer.Option(None, "--token-file", help=_TOKEN_FILE_HELP),
) -> None:
    """List every client identity stored in the token file.

    Example::

        authgate tokens list
        authgate --json tokens list
    """
    from authgate.auth.credential_store import CredentialStore
    from authgate.config import resolve_token_file

    store = CredentialStore(resolve_token_file(token_file))
    try:
        records = store.list_records()
    except AuthgateError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    if not records and get_output().format != OutputFormat.JSON:
        info(f"No tokens stored in {store.path}")
        return

    now = datetime.now(timezone.utc)
    summaries = [_summary(record, now) for record in records]
    if get_output().format == OutputFormat.JSON:
        print_json(summaries)
        return

    headers = ["client_id", "access_token", "token_type", "expires_at", "expired"]
    rows = [[str(s[h]) for h in headers] for s in summaries]
    print_table(headers, rows, title=f"Tokens in {store.path}")


@tokens_app.command("show")
def tokens_show(
    client_id: str = typer.Option(..., "--client-id", help="Client ID to show."),
    token_file: Optional[str] = typer.Option(None, "--token-file", help=_TOKEN_FILE_HELP),
) -> None:
    """Show the stored credential of one client.

    Raises:
        typer.Exit: With code 4 if no record exists for *client_id*, or 8
            if the token file is unreadable.

    Example::

        authgate tokens show --client-id 7b0c2a3e-...
    """
    from authgate.auth.credential_store import CredentialStore
    from authgate.config import resolve_token_file

    store = CredentialStore(resolve_token_file(token_file))
    try:
        record = store.load(client_id)
    except AuthgateError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    summary = _summary(record, datetime.now(timezone.utc))
    if get_output().format == OutputFormat.JSON:
        print_json(summary)
        return
    summary["expires_in"] = str(record.expires_in())
    for key, value in summary.items():
        print_data(f"{key}: {value}")
