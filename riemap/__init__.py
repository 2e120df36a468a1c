"""RieMap: regional OSM extract ingestion, versioning and quality assessment."""

__version__ = "0.1.0"
