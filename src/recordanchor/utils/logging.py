from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s - %(message)s"
_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler once; later calls only adjust the level."""
    global _configured
    numeric = logging.getLevelName((level or "INFO").upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    if not _configured:
        logging.basicConfig(level=numeric, format=_FORMAT)
        _configured = True
    logging.getLogger("recordanchor").setLevel(numeric)
