"""
Registry cleaner.

Retires unwanted images, tags and manifests from a container registry according
to a declarative retention policy while keeping multi-arch indexes and OCI
referrers consistent.
"""

__version__ = "1.0.0"
