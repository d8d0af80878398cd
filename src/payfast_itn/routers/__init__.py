# Routers package
from . import payfast_router

__all__ = [
    "payfast_router",
]
