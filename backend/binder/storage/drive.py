"""Google Drive v3 client implementing the CloudStore contract."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..packing.collaborators import CloudStoreError

logger = logging.getLogger(__name__)

DRIVE_API_URL = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


class DriveClient:
    """Thin async wrapper around the Drive REST endpoints the binder needs."""

    def __init__(
        self,
        access_token: str,
        *,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.access_token = access_token
        self.timeout = timeout
        self._transport = transport
        self.headers = {"Authorization": f"Bearer {access_token}"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, headers=self.headers, transport=self._transport)

    @staticmethod
    def _escape(value: str) -> str:
        return value.replace("\\", "\\\\").replace("'", "\\'")

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.status_code >= 400:
            raise CloudStoreError(f"Drive {action} failed: {response.status_code} - {response.text}")

    # ========================================
    # Lookup
    # ========================================

    async def list_files(self, folder_id: str = "root", *, query: Optional[str] = None) -> List[Dict[str, Any]]:
        """List non-trashed files directly inside ``folder_id``."""
        clauses = [f"'{self._escape(folder_id)}' in parents", "trashed = false"]
        if query:
            clauses.append(query)
        params = {
            "q": " and ".join(clauses),
            "fields": "files(id, name, mimeType, size, modifiedTime)",
            "pageSize": "1000",
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
        }
        try:
            async with self._client() as client:
                response = await client.get(f"{DRIVE_API_URL}/files", params=params)
        except httpx.HTTPError as exc:
            raise CloudStoreError(f"Drive list failed: {exc}") from exc
        self._raise_for_status(response, "list")
        return response.json().get("files", [])

    async def exists(self, container_id: str, filename: str) -> Optional[str]:
        files = await self.list_files(container_id, query=f"name = '{self._escape(filename)}'")
        if files:
            return files[0]["id"]
        return None

    # ========================================
    # Folders
    # ========================================

    async def create_folder(self, parent_id: Optional[str], name: str) -> str:
        metadata: Dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id and parent_id != "root":
            metadata["parents"] = [parent_id]
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{DRIVE_API_URL}/files",
                    params={"supportsAllDrives": "true"},
                    json=metadata,
                )
        except httpx.HTTPError as exc:
            raise CloudStoreError(f"Drive folder creation failed: {exc}") from exc
        self._raise_for_status(response, "folder creation")
        folder_id = response.json().get("id")
        if not folder_id:
            raise CloudStoreError("Drive folder creation did not return an id")
        logger.info("Created Drive folder %s (%s)", name, folder_id)
        return folder_id

    async def ensure_folder(self, parent_id: Optional[str], name: str) -> str:
        existing = await self.exists(parent_id or "root", name)
        if existing:
            return existing
        return await self.create_folder(parent_id, name)

    async def _patch_name(self, file_id: str, new_name: str) -> None:
        try:
            async with self._client() as client:
                response = await client.patch(
                    f"{DRIVE_API_URL}/files/{file_id}",
                    params={"supportsAllDrives": "true"},
                    json={"name": new_name},
                )
        except httpx.HTTPError as exc:
            raise CloudStoreError(f"Drive rename failed: {exc}") from exc
        self._raise_for_status(response, "rename")

    async def delete(self, file_id: str) -> None:
        try:
            async with self._client() as client:
                response = await client.delete(
                    f"{DRIVE_API_URL}/files/{file_id}",
                    params={"supportsAllDrives": "true"},
                )
        except httpx.HTTPError as exc:
            raise CloudStoreError(f"Drive delete failed: {exc}") from exc
        self._raise_for_status(response, "delete")

    async def rename(self, container_id: str, filename: str, new_filename: str) -> None:
        """Rename an artifact; when the new name is taken, the old one is deleted."""
        file_id = await self.exists(container_id, filename)
        if file_id is None:
            return
        if await self.exists(container_id, new_filename):
            await self.delete(file_id)
            logger.info("Removed %s; %s already exists", filename, new_filename)
            return
        await self._patch_name(file_id, new_filename)
        logger.info("Renamed %s to %s", filename, new_filename)

    async def rename_folder(self, folder_id: str, name: str) -> str:
        await self._patch_name(folder_id, name)
        logger.info("Renamed Drive folder %s to %s", folder_id, name)
        return folder_id

    # ========================================
    # Upload
    # ========================================

    async def upload(
        self,
        container_id: str,
        filename: str,
        data: bytes,
        mime_type: str = "application/pdf",
    ) -> None:
        """Resumable upsert: update the file with this name, or create it."""
        existing_id = await self.exists(container_id, filename)
        metadata: Dict[str, Any] = {"mimeType": mime_type}
        if existing_id:
            method = "PATCH"
            url = f"{DRIVE_UPLOAD_URL}/files/{existing_id}"
        else:
            method = "POST"
            url = f"{DRIVE_UPLOAD_URL}/files"
            metadata["name"] = filename
            metadata["parents"] = [container_id]

        try:
            async with self._client() as client:
                init = await client.request(
                    method,
                    url,
                    params={"uploadType": "resumable", "supportsAllDrives": "true"},
                    headers={
                        "Content-Type": "application/json; charset=UTF-8",
                        "X-Upload-Content-Type": mime_type,
                        "X-Upload-Content-Length": str(len(data)),
                    },
                    json=metadata,
                )
                self._raise_for_status(init, "upload init")
                session_url = init.headers.get("Location")
                if not session_url:
                    raise CloudStoreError("Drive did not return a resumable upload location")
                response = await client.put(session_url, content=data, headers={"Content-Type": mime_type})
        except httpx.HTTPError as exc:
            raise CloudStoreError(f"Drive upload failed: {exc}") from exc
        self._raise_for_status(response, "upload")
        logger.info("Uploaded %s to Drive folder %s (%s bytes)", filename, container_id, len(data))
