from geocascade.cache.store import PlaceCache

__all__ = ["PlaceCache"]
