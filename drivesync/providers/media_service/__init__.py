from .media_client import MediaServiceClient

__all__ = ["MediaServiceClient"]
