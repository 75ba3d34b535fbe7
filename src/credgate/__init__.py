"""credgate -- acquire access credentials for remote integrations.

This package drives a remote service's authorization flow to completion and
hands back a usable access credential, independent of which service is
targeted. Two acquisition strategies are provided:

* **OAuth 2.0 authorization code + PKCE** -- scope discovery, static or
  dynamically registered client identity, a single-use loopback callback
  listener and the system browser. See :mod:`credgate.auth`.
* **Browser extraction** -- for services without a conformant OAuth
  surface, an embedded browser is polled until a credential can be read
  from an authenticated page. See :mod:`credgate.browser`.

Typical workflow::

    credgate target add linear --server-url https://mcp.linear.app
    credgate auth login linear

Modules:
    app: Typer application factory and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: XDG-aware configuration, targets and settings resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.3.0"
