"""HTTP route generation."""

from fluxrest.api.routers.rest import RestRouter

__all__ = ["RestRouter"]
