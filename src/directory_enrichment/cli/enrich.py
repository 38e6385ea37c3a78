"""
CLI for enriching JSON documents with directory display names.

Reads a JSON document, resolves every canonical GUID and partner UPN it
contains through the directory objects API, and writes the same document
with resolved identifiers replaced by display names. Identifiers that cannot
be resolved are left as they are.

Usage:
    python -m directory_enrichment.cli enrich --input audit.json
    python -m directory_enrichment.cli enrich --input - --tenant contoso.onmicrosoft.com --with-upn --output out.json

Configuration comes from ``DIRENRICH_*`` environment variables (or .env):
DIRENRICH_DIRECTORY_BASE_URL, DIRENRICH_DIRECTORY_TOKEN,
DIRENRICH_DEFAULT_TENANT, DIRENRICH_LOOKUP_BATCH_SIZE, ...
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, List, Optional, Tuple

from directory_enrichment.config.settings import Settings, get_settings
from directory_enrichment.domain.identifier_resolution.observability import (
    ResolutionStats,
)
from directory_enrichment.infrastructure.enrichment.engine import GuidResolver
from directory_enrichment.infrastructure.enrichment.substitution import (
    display_name_only,
    display_name_with_upn,
)
from directory_enrichment.io.connectors.directory.core import (
    DirectoryObjectsClient,
    LookupFunction,
)
from directory_enrichment.io.connectors.directory.models import DirectoryClientError
from directory_enrichment.utils.logging import get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="direnrich enrich",
        description="Replace directory object ids in a JSON document with display names",
    )
    parser.add_argument(
        "--input",
        required=True,
        help="JSON file to enrich ('-' reads standard input)",
    )
    parser.add_argument(
        "--output",
        help="Where to write the enriched JSON (default: standard output)",
    )
    parser.add_argument(
        "--tenant",
        help="Tenant for canonical GUIDs (default: DIRENRICH_DEFAULT_TENANT)",
    )
    parser.add_argument(
        "--with-upn",
        action="store_true",
        help="Render resolved identifiers as 'Name (upn)'",
    )
    return parser


def _load_document(source: str) -> Any:
    if source == "-":
        return json.load(sys.stdin)
    with Path(source).open(encoding="utf-8") as handle:
        return json.load(handle)


def _write_document(document: Any, target: Optional[str]) -> None:
    rendered = json.dumps(document, ensure_ascii=False, indent=2)
    if target:
        Path(target).write_text(rendered + "\n", encoding="utf-8")
    else:
        sys.stdout.write(rendered + "\n")


def _build_lookup(settings: Settings) -> LookupFunction:
    client = DirectoryObjectsClient(
        token=settings.directory_token,
        timeout=settings.directory_timeout,
        base_url=settings.directory_base_url,
    )
    return client.as_lookup()


async def enrich_document(
    document: Any,
    lookup: LookupFunction,
    *,
    tenant: Optional[str] = None,
    with_upn: bool = False,
) -> Tuple[Any, ResolutionStats]:
    """
    Resolve and substitute every identifier in ``document``.

    Returns:
        The enriched copy of the document and the resolver statistics.
    """
    overrides = {"default_tenant": tenant} if tenant else {}
    formatter = display_name_with_upn if with_upn else display_name_only

    async with GuidResolver.from_settings(lookup, **overrides) as resolver:
        queued = resolver.resolve_guids(document)
        logger.info("enrich.identifiers_queued", queued=len(queued))
        await resolver.wait_idle()
        return resolver.enrich_value(document, formatter=formatter), resolver.stats


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except Exception as e:
        print(f"Failed to load settings: {e}", file=sys.stderr)
        return 1

    try:
        document = _load_document(args.input)
    except (OSError, ValueError) as e:
        print(f"Failed to read {args.input}: {e}", file=sys.stderr)
        return 1

    try:
        lookup = _build_lookup(settings)
    except DirectoryClientError as e:
        print(f"Directory client unavailable: {e}", file=sys.stderr)
        return 1

    enriched, stats = asyncio.run(
        enrich_document(
            document, lookup, tenant=args.tenant, with_upn=args.with_upn
        )
    )

    try:
        _write_document(enriched, args.output)
    except OSError as e:
        print(f"Failed to write {args.output}: {e}", file=sys.stderr)
        return 1

    print(
        f"Resolved {stats.resolved} identifier(s), "
        f"{stats.failed} unresolved, {stats.lookups_issued} lookup call(s)",
        file=sys.stderr,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
