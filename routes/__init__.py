from . import (
    auth,
    catalog,
    complaints,
    productions,
    progress,
    roles,
    verification,
)

__all__ = [
    "auth",
    "catalog",
    "complaints",
    "productions",
    "progress",
    "roles",
    "verification",
]
