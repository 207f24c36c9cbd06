"""Entrypoint for `python -m drivesync`."""

from drivesync.cli.main import main

if __name__ == "__main__":
    main()
