# pyright: standard

"""lvsnap-backup: lvsnap_backup/handshake.py
Pause and resume the data service over HTTP around the snapshot window.
"""

import logging

import requests

from .__util__ import RemoteHandshakeError

logger = logging.getLogger(__name__)


def lock(url: str, name: str) -> None:
    """Ask the service behind ``url`` to pause writes."""
    logger.info("%s started locking DB at:\n  '%s'", name, url)
    _get(url, name, "lock")


def unlock(url: str, name: str) -> None:
    """Ask the service behind ``url`` to resume."""
    logger.info("%s started unlocking DB at:\n  '%s'", name, url)
    _get(url, name, "unlock")


def _get(url: str, name: str, phase: str) -> None:
    """GET ``url``; anything but HTTP 200 aborts the run."""
    try:
        response = requests.get(url)
    except requests.RequestException as e:
        raise RemoteHandshakeError(
            f"{name} could not GET '{url}': {e}", url, target=name, phase=phase
        ) from e

    if response.status_code != 200:
        raise RemoteHandshakeError(
            f"{name} could not GET '{url}': HTTP {response.status_code} {response.reason}",
            url,
            status=response.status_code,
            target=name,
            phase=phase,
        )
    logger.debug("%s %s endpoint answered HTTP 200", name, phase)
