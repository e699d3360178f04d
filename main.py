"""
Entry point shim.

The project is packaged as ``indoor_locator_server`` with the
``indoor-locator-server`` CLI; this file keeps ``python main.py`` working
by forwarding to ``indoor_locator_server.cli:main``.
"""

import sys

from indoor_locator_server.cli import main as _cli_main


def main():
    return _cli_main()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
