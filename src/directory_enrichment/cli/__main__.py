"""
Unified CLI entry point for Directory Enrichment.

Usage:
    python -m directory_enrichment.cli <command> [options]

Available commands:
    enrich       - Replace directory object ids in a JSON file with names

Examples:
    # Enrich an audit log export for the default tenant
    python -m directory_enrichment.cli enrich --input audit.json --output audit.named.json

    # Render "Name (upn)" and resolve canonical GUIDs in another tenant
    python -m directory_enrichment.cli enrich --input signins.json --tenant fabrikam.onmicrosoft.com --with-upn
"""

import argparse
import sys
from typing import List, Optional


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point with subcommand routing.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = argparse.ArgumentParser(
        prog="direnrich",
        description="Directory Enrichment CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m directory_enrichment.cli enrich --input audit.json --output audit.named.json
  python -m directory_enrichment.cli enrich --input signins.json --tenant fabrikam.onmicrosoft.com --with-upn
        """,
    )

    subparsers = parser.add_subparsers(
        title="commands",
        description="Available commands",
        dest="command",
        required=True,
        help="Command to execute",
    )

    # Argument parsing is delegated to the command module
    subparsers.add_parser(
        "enrich",
        help="Replace directory object ids in a JSON file with names",
        description="Resolve identifiers in a JSON document and substitute display names",
        add_help=False,
    )

    args, remaining_args = parser.parse_known_args(argv)

    if args.command == "enrich":
        from directory_enrichment.cli.enrich import main as enrich_main

        return enrich_main(remaining_args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
