"""CDN cache warmer: sitemap discovery, URL warming and a database-backed task queue."""

__version__ = "0.1.0"
__all__ = ["models", "sitemap", "crawler", "schema", "dbqueue", "tasks", "database", "worker", "cli"]