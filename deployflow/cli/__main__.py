"""Entry point for deployflow CLI when run as python -m deployflow.cli."""

if __name__ == "__main__":
    from deployflow.cli.main import main

    main()
