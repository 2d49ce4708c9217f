"""psi-runner: a PostgreSQL-backed work queue that scores URLs with PageSpeed Insights."""

__version__ = "0.1.0"
