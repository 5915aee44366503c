"""Request-side helpers: domain validation, quota guard, caller identity, analytics."""
