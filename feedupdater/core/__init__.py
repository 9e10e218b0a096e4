"""
Core updater engine.

This package contains the primary logic. The `PackageUpdater` is the
high-level coordinator the host owns, delegating dependency expansion to the
`DependencyResolver` and file work to the installation layer.
"""
