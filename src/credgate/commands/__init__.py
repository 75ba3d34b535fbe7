"""Built-in CLI sub-commands for credgate.

* :mod:`~credgate.commands.target` -- manage target configurations.
* :mod:`~credgate.commands.auth` -- acquire, inspect and clear credentials.

Each module exports a :class:`typer.Typer` sub-application registered on
the root app in :func:`credgate.app.main`.
"""
