"""orm-schemas CLI module."""


def main() -> None:
    """CLI entry point."""
    from orm_schemas.cli.app import main as app_main

    app_main()


__all__ = ["main"]
