from reconciler.api.v1 import internal, webhooks

__all__ = [
    "internal",
    "webhooks",
]
