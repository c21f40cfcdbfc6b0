"""kargo-core is a library and command line tool for progressive delivery.

It discovers new versions of Git commits, container images and Helm charts for
Warehouses, bundles them into Freight, refreshes Stages when the Argo CD
Applications they update change, and provisions the namespace of a Project at
admission time.
"""

__all__ = [
    "manifest",
    "versions",
    "selection",
    "sources",
    "store",
    "webhook",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
