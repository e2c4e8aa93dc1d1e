"""Allow ``python -m toolgate``."""

from toolgate.cli.cli import main

if __name__ == "__main__":
    main()
