"""authgate -- OAuth 2.0 Device Authorization Grant client for the terminal.

This package obtains and maintains access tokens for headless and SSH
sessions using RFC 8628: the user approves the request on another device
while the CLI polls the authorization server. Tokens for many client
identities share one JSON file that any number of local processes may
read and write concurrently.

Typical workflow::

    authgate login --client-id 7b0c2a3e-...   # authorize or reuse tokens
    authgate tokens list                      # inspect the shared store

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: Precedence resolution of server URL, client id and token file.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
