"""Entry point for ``python -m fleetssh``."""

from fleetssh.cli import main

if __name__ == "__main__":
    main()
