"""Allow running as ``python -m mobilectl``."""

from mobilectl.main import cli

if __name__ == "__main__":
    cli()
