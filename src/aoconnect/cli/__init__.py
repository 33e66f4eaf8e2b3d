"""aoconnect command-line interface (typer + rich)."""
