from ..config import settings
from .provider import MediaHost
from .blob_provider import BlobMediaHost
from .local_provider import LocalMediaHost


def get_media_host() -> MediaHost:
    """
    Pick the media host from configuration.
    Blob storage when STORAGE_PROVIDER=blob and Azure is configured, local filesystem otherwise.
    """
    if settings.storage_provider == "blob" and settings.azure_blob_connection and settings.azure_blob_container:
        return BlobMediaHost()
    return LocalMediaHost()
