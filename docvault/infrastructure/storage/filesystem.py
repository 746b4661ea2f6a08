import asyncio
import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import AsyncIterator, List, Optional

from docvault.domains.documents.errors import StoreError
from docvault.domains.documents.streams import DEFAULT_CHUNK_SIZE, BlobReader, Content, iter_chunks

logger = logging.getLogger(__name__)


class FileSystemBlobStore:
    """Хранилище содержимого в каталоге на диске.

    Раскладка: ``<root>/<id[:2]>/<id>.bin`` с содержимым и ``<id>.json``
    с именем файла. Содержимое пишется во временный файл и переименовывается
    атомарно, поэтому недописанный blob никогда не виден.
    """

    def __init__(self, root: Path, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.root = Path(root)
        self.chunk_size = chunk_size

    async def ensure_indexes(self) -> None:
        await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)

    def _paths(self, document_id: uuid.UUID):
        folder = self.root / document_id.hex[:2]
        return folder, folder / f"{document_id}.bin", folder / f"{document_id}.json"

    async def upload(self, document_id: uuid.UUID, name_hint: str, content: Content) -> int:
        """Загрузка содержимого; существующий blob с тем же id заменяется"""
        folder, data_path, meta_path = self._paths(document_id)
        length = 0
        try:
            await asyncio.to_thread(folder.mkdir, parents=True, exist_ok=True)
            fd, tmp_name = await asyncio.to_thread(tempfile.mkstemp, dir=folder, prefix=".upload-")
            try:
                with os.fdopen(fd, "wb") as tmp:
                    async for chunk in iter_chunks(content, self.chunk_size):
                        await asyncio.to_thread(tmp.write, chunk)
                        length += len(chunk)
                meta = json.dumps({"filename": name_hint, "length": length})
                await asyncio.to_thread(meta_path.write_text, meta, encoding="utf-8")
                await asyncio.to_thread(os.replace, tmp_name, data_path)
            except BaseException:
                # Interrupted or failed upload leaves nothing visible behind
                await asyncio.to_thread(_unlink_quietly, Path(tmp_name))
                raise
        except OSError as exc:
            raise StoreError(f"Failed to upload content for {document_id}: {exc}") from exc

        logger.info(f"Stored {length} bytes for document {document_id} in {data_path}")
        return length

    async def download(self, document_id: uuid.UUID) -> Optional[BlobReader]:
        """Открытие потока содержимого или None, если blob нет"""
        _, data_path, meta_path = self._paths(document_id)
        try:
            handle = await asyncio.to_thread(open, data_path, "rb")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreError(f"Failed to open content for {document_id}: {exc}") from exc

        try:
            length = await asyncio.to_thread(lambda: os.fstat(handle.fileno()).st_size)
            name = await asyncio.to_thread(_read_filename, meta_path, str(document_id))
        except BaseException:
            handle.close()
            raise
        return BlobReader(document_id, name, length, self._stream_chunks(handle))

    async def _stream_chunks(self, handle) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, self.chunk_size)
                if not chunk:
                    break
                yield chunk
        except OSError as exc:
            raise StoreError(f"Failed to read content from {handle.name}: {exc}") from exc
        finally:
            handle.close()

    async def exists(self, document_id: uuid.UUID) -> bool:
        _, data_path, _ = self._paths(document_id)
        return await asyncio.to_thread(data_path.exists)

    async def list_ids(self) -> List[uuid.UUID]:
        def _scan() -> List[uuid.UUID]:
            if not self.root.exists():
                return []
            ids = []
            for path in self.root.glob("*/*.bin"):
                try:
                    ids.append(uuid.UUID(path.stem))
                except ValueError:
                    logger.warning(f"Ignoring unexpected file {path}")
            return ids

        try:
            return await asyncio.to_thread(_scan)
        except OSError as exc:
            raise StoreError(f"Failed to list content in {self.root}: {exc}") from exc

    async def delete(self, document_id: uuid.UUID) -> bool:
        """Удаление содержимого; отсутствие blob не ошибка"""
        _, data_path, meta_path = self._paths(document_id)
        try:
            removed = await asyncio.to_thread(_unlink_quietly, data_path)
            await asyncio.to_thread(_unlink_quietly, meta_path)
        except OSError as exc:
            raise StoreError(f"Failed to delete content for {document_id}: {exc}") from exc
        return removed


def _unlink_quietly(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False


def _read_filename(meta_path: Path, default: str) -> str:
    try:
        return json.loads(meta_path.read_text(encoding="utf-8")).get("filename") or default
    except (FileNotFoundError, ValueError):
        return default
