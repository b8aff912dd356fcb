from datetime import datetime, timedelta

from azure.storage.blob import (
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
    BlobSasPermissions,
)

from ..config import settings
from .provider import MediaHost, UploadedMedia, detect_media_kind, file_format, image_dimensions, canonical_key


class BlobMediaHost(MediaHost):
    def __init__(self) -> None:
        if not settings.azure_blob_connection or not settings.azure_blob_container:
            raise RuntimeError("AZURE_BLOB_CONNECTION and AZURE_BLOB_CONTAINER must be set")
        self._service = BlobServiceClient.from_connection_string(settings.azure_blob_connection)
        self._container = settings.azure_blob_container

    def _read_url(self, key: str, expires_s: int = 3600 * 24 * 365) -> str:
        expiry = datetime.utcnow() + timedelta(seconds=expires_s)
        sas = generate_blob_sas(
            account_name=self._service.account_name,
            container_name=self._container,
            blob_name=key,
            account_key=self._service.credential.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=expiry,
        )
        blob_url = self._service.get_blob_client(self._container, key).url
        return f"{blob_url}?{sas}"

    def upload(self, data: bytes, *, folder: str, filename: str, content_type: str) -> UploadedMedia:
        key = canonical_key(folder, filename)
        client = self._service.get_blob_client(self._container, key)
        client.upload_blob(data, overwrite=True, content_settings=ContentSettings(content_type=content_type))
        kind = detect_media_kind(content_type, filename) or "image"
        width, height = image_dimensions(data) if kind == "image" else (None, None)
        return UploadedMedia(
            secure_url=self._read_url(key),
            storage_id=key,
            kind=kind,
            format=file_format(filename),
            width=width,
            height=height,
        )

    def delete(self, storage_id: str, resource_type: str = "image") -> None:
        client = self._service.get_blob_client(self._container, storage_id.lstrip("/"))
        client.delete_blob()
