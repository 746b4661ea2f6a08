"""Потоковое содержимое документов.

Содержимое никогда не читается целиком в память хранилищем: загрузка
принимает байты, файловый объект или асинхронный итератор чанков, а
выгрузка отдает ``BlobReader``, который читает чанки лениво.
"""
import asyncio
import inspect
import uuid
from typing import AsyncIterable, AsyncIterator, Awaitable, BinaryIO, Callable, List, Optional, Union

from docvault.domains.documents.errors import StoreError

Content = Union[bytes, bytearray, BinaryIO, AsyncIterable[bytes]]

DEFAULT_CHUNK_SIZE = 255 * 1024


async def iter_chunks(content: Content, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Приведение любого поддерживаемого источника к потоку чанков"""
    if isinstance(content, (bytes, bytearray)):
        for start in range(0, len(content), chunk_size):
            yield bytes(content[start:start + chunk_size])
        return

    if hasattr(content, "__aiter__"):
        async for chunk in content:
            if chunk:
                yield bytes(chunk)
        return

    read = getattr(content, "read", None)
    if read is None:
        raise TypeError(f"Unsupported content type: {type(content).__name__}")

    # Starlette's UploadFile exposes an async read()
    while True:
        if inspect.iscoroutinefunction(read):
            chunk = await read(chunk_size)
        else:
            chunk = await asyncio.to_thread(read, chunk_size)
        if not chunk:
            break
        yield bytes(chunk)


class BlobReader:
    """Открытый поток содержимого документа.

    Вызывающий владеет потоком и обязан закрыть его ровно один раз,
    удобнее всего через ``async with``. Повторный ``aclose`` безопасен.
    Хранилище может держать за потоком ресурсы (сессию БД, файл); они
    освобождаются колбэками закрытия в порядке регистрации.
    """

    def __init__(
        self,
        document_id: uuid.UUID,
        name: str,
        length: Optional[int],
        chunks: AsyncIterator[bytes],
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.document_id = document_id
        self.name = name
        self.length = length
        self._chunks = chunks
        self._closed = False
        self._close_callbacks: List[Callable[[], Awaitable[None]]] = []
        if on_close is not None:
            self._close_callbacks.append(on_close)

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "BlobReader":
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            await self.aclose()
            raise

    async def read(self) -> bytes:
        """Чтение оставшегося содержимого целиком"""
        if self._closed:
            raise StoreError(f"Stream for document {self.document_id} is closed")
        return b"".join([chunk async for chunk in self])

    def add_close_callback(self, callback: Callable[[], Awaitable[None]]) -> None:
        self._close_callbacks.append(callback)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            aclose = getattr(self._chunks, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            await self._run_close_callbacks(list(self._close_callbacks))

    async def _run_close_callbacks(self, callbacks) -> None:
        if not callbacks:
            return
        try:
            await callbacks[0]()
        finally:
            await self._run_close_callbacks(callbacks[1:])

    async def __aenter__(self) -> "BlobReader":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"BlobReader(document_id={self.document_id}, name={self.name}, length={self.length})"
