"""CLI entry point for tsbridge."""

import sys


def main() -> int:
    """Main entry point for the tsbridge CLI."""
    from tsbridge.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
