from geocascade.remote.client import PlaceApiClient

__all__ = ["PlaceApiClient"]
