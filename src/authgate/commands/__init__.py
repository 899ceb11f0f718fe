"""Built-in CLI sub-commands for authgate.

* :mod:`~authgate.commands.login` -- run the device flow for one client.
* :mod:`~authgate.commands.tokens` -- inspect the shared token file.
"""
