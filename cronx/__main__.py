"""Allow running as ``python -m cronx``."""

from cronx.cli import main

if __name__ == '__main__':
    main()
