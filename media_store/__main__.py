"""Entrypoint for `python -m media_store`."""

from .cli import main


if __name__ == "__main__":
    main()
