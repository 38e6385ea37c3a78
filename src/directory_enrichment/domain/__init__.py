"""Directory Enrichment domain layer.

The domain package hosts pure logic: identifier extraction, the resolution
state model and the pending queue. Domain modules may use pydantic and the
shared logging utilities; they must never import from
`directory_enrichment.io`. Network collaborators are injected by the
infrastructure layer so that the dependency direction always flows inward.
"""
