"""Конвейер компиляции.

Компилятор выбирается по языку документа через реестр: чтобы добавить
язык, достаточно зарегистрировать новую реализацию.
"""
import logging
from typing import AsyncIterator, Dict, List, Optional, Union

import httpx

from docvault.core.config import Settings
from docvault.domains.documents.entities import DocumentLanguage
from docvault.domains.documents.errors import CompileError
from docvault.domains.documents.ports import Compiler

logger = logging.getLogger(__name__)


class PassthroughCompiler:
    """Компилятор, возвращающий исходник без изменений"""

    async def compile(self, language: DocumentLanguage, source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        async for chunk in source:
            yield chunk


class HttpCompiler:
    """Делегирование компиляции внешнему сервису по HTTP.

    Исходник отправляется потоком в теле ``POST`` запроса, результат
    читается потоком из ответа. Любая ошибка транспорта или ответ
    с кодом 4xx/5xx превращается в ``CompileError``.
    """

    def __init__(self, endpoint: str, timeout: float = 60.0, client: Optional[httpx.AsyncClient] = None):
        self.endpoint = endpoint
        self.timeout = timeout
        self._client = client

    async def compile(self, language: DocumentLanguage, source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            async with client.stream(
                "POST",
                self.endpoint,
                params={"language": language.value},
                content=source,
                headers={"Content-Type": "application/octet-stream"},
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise CompileError(
                        f"Compiler service returned {response.status_code}: {response.text[:200]}"
                    )
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as exc:
            raise CompileError(f"Compiler service at {self.endpoint} is unavailable: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()

    def __repr__(self) -> str:
        return f"HttpCompiler(endpoint={self.endpoint})"


class CompilerRegistry:
    """Реестр компиляторов по языкам"""

    def __init__(self):
        self._compilers: Dict[DocumentLanguage, Compiler] = {}

    def register(self, language: Union[DocumentLanguage, str], compiler: Compiler) -> None:
        """Регистрация компилятора для языка"""
        language = DocumentLanguage(language)
        self._compilers[language] = compiler
        logger.debug(f"Registered {compiler!r} for {language.value}")

    def get(self, language: Union[DocumentLanguage, str]) -> Compiler:
        """Получение компилятора для языка"""
        try:
            return self._compilers[DocumentLanguage(language)]
        except (KeyError, ValueError):
            raise CompileError(f"No compiler registered for language '{language}'")

    def languages(self) -> List[DocumentLanguage]:
        return list(self._compilers)

    def __contains__(self, language) -> bool:
        try:
            return DocumentLanguage(language) in self._compilers
        except ValueError:
            return False

    async def compile(self, language: DocumentLanguage, source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        """Компиляция через зарегистрированный компилятор; все ошибки становятся CompileError"""
        compiler = self.get(language)
        try:
            async for chunk in compiler.compile(language, source):
                yield chunk
        except CompileError:
            raise
        except Exception as exc:
            raise CompileError(f"Failed to compile {language.value} source: {exc}") from exc


def build_registry(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> CompilerRegistry:
    """Реестр по настройкам: внешний сервис, где он задан, иначе passthrough"""
    registry = CompilerRegistry()
    for language in settings.supported_languages:
        endpoint = settings.compiler_endpoints.get(language)
        if endpoint:
            registry.register(language, HttpCompiler(endpoint, timeout=settings.compiler_timeout, client=client))
        else:
            registry.register(language, PassthroughCompiler())
    return registry
