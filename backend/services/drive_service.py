"""
Google Drive file store.

Notes and attestation documents are stored in Drive; the database keeps only
the Drive file id. ``FileStore`` is the seam the routers depend on so tests
can swap in an in-memory store.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional
import httpx
from config import DRIVE_ROOT_FOLDER_ID, DRIVE_TIMEOUT
from services.google_auth import GoogleAuthError, get_access_token

logger = logging.getLogger(__name__)

_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
_FILES_URL = "https://www.googleapis.com/drive/v3/files"


class FileStoreError(RuntimeError):
    pass


@dataclass
class StoredFile:
    content: bytes
    content_type: str
    name: str


class FileStore:
    def upload_file(self, name: str, mime_type: str, content: bytes,
                    folder: Optional[str] = None) -> str:
        raise NotImplementedError

    def download_file(self, file_id: str) -> StoredFile:
        raise NotImplementedError

    def delete_file(self, file_id: str) -> None:
        raise NotImplementedError


class GoogleDriveStore(FileStore):
    def __init__(self, timeout: float = DRIVE_TIMEOUT, root_folder_id: str = DRIVE_ROOT_FOLDER_ID):
        self.timeout = timeout
        self.root_folder_id = root_folder_id

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout)

    def _headers(self, client: httpx.Client) -> dict:
        return {"Authorization": f"Bearer {get_access_token(client)}"}

    def _find_or_create_folder(self, client: httpx.Client, headers: dict, folder: str) -> str:
        """Notes are grouped in one Drive folder per project account."""
        safe = folder.replace("'", "\\'")
        query = (f"name = '{safe}' and mimeType = 'application/vnd.google-apps.folder'"
                 " and trashed = false")
        if self.root_folder_id:
            query += f" and '{self.root_folder_id}' in parents"
        resp = client.get(_FILES_URL, headers=headers, params={
            "q": query, "fields": "files(id)", "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
        })
        resp.raise_for_status()
        files = resp.json().get("files", [])
        if files:
            return files[0]["id"]
        meta = {"name": folder, "mimeType": "application/vnd.google-apps.folder"}
        if self.root_folder_id:
            meta["parents"] = [self.root_folder_id]
        resp = client.post(_FILES_URL, headers=headers, json=meta,
                           params={"supportsAllDrives": "true"})
        resp.raise_for_status()
        return resp.json()["id"]

    def upload_file(self, name: str, mime_type: str, content: bytes,
                    folder: Optional[str] = None) -> str:
        try:
            with self._client() as client:
                headers = self._headers(client)
                meta = {"name": name}
                if folder:
                    meta["parents"] = [self._find_or_create_folder(client, headers, folder)]
                elif self.root_folder_id:
                    meta["parents"] = [self.root_folder_id]
                files = {
                    "metadata": (None, json.dumps(meta), "application/json; charset=UTF-8"),
                    "file": (name, content, mime_type),
                }
                resp = client.post(_UPLOAD_URL, headers=headers, files=files, params={
                    "uploadType": "multipart", "supportsAllDrives": "true", "fields": "id",
                })
                resp.raise_for_status()
                file_id = resp.json().get("id")
        except httpx.TimeoutException:
            logger.error(f"Drive upload timeout — {name}")
            raise FileStoreError("Tempo esgotado ao enviar arquivo ao Google Drive")
        except (httpx.HTTPError, GoogleAuthError) as e:
            logger.error(f"Drive upload error — {name}: {e}")
            raise FileStoreError("Falha ao fazer upload do arquivo para o Google Drive") from e
        if not file_id:
            raise FileStoreError("Google Drive não retornou o id do arquivo")
        logger.info(f"Drive upload ok: {name} → {file_id}")
        return file_id

    def download_file(self, file_id: str) -> StoredFile:
        try:
            with self._client() as client:
                headers = self._headers(client)
                meta = client.get(f"{_FILES_URL}/{file_id}", headers=headers, params={
                    "fields": "name,mimeType", "supportsAllDrives": "true",
                })
                meta.raise_for_status()
                media = client.get(f"{_FILES_URL}/{file_id}", headers=headers, params={
                    "alt": "media", "supportsAllDrives": "true",
                })
                media.raise_for_status()
        except (httpx.HTTPError, GoogleAuthError) as e:
            logger.error(f"Drive download error — {file_id}: {e}")
            raise FileStoreError("Erro ao baixar o arquivo") from e
        info = meta.json()
        return StoredFile(
            content=media.content,
            content_type=info.get("mimeType") or media.headers.get(
                "content-type", "application/octet-stream"),
            name=info.get("name") or "download",
        )

    def delete_file(self, file_id: str) -> None:
        try:
            with self._client() as client:
                resp = client.delete(f"{_FILES_URL}/{file_id}", headers=self._headers(client),
                                     params={"supportsAllDrives": "true"})
                resp.raise_for_status()
        except (httpx.HTTPError, GoogleAuthError) as e:
            raise FileStoreError(f"Falha ao remover arquivo {file_id}") from e


_store: FileStore = GoogleDriveStore()


def get_file_store() -> FileStore:
    return _store
