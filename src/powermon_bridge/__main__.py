"""Allow running as ``python -m powermon_bridge``."""

from .cli import main

if __name__ == "__main__":
    main()
