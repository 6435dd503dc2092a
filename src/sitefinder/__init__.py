"""SiteFinder - incremental semantic indexing of a website's sitemap."""

__version__ = "0.1.0"
