"""Infrastructure layer: caching, batch resolution and substitution."""
