# pyright: standard

"""lvsnap-backup: lvsnap_backup/__main__.py

Back up a live data directory from an LVM copy-on-write snapshot.
"""

import sys

from .cli import main as cli_main


def main() -> None:
    """Console script entry point."""
    sys.exit(cli_main())


if __name__ == "__main__":
    main()
