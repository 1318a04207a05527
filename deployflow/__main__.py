"""Entry point for ``python -m deployflow``."""

from deployflow.cli.main import main

if __name__ == "__main__":
    main()
