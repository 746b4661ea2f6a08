class DocumentError(Exception):
    """Базовая ошибка домена Documents"""


class ValidationError(DocumentError, ValueError):
    """Пустое или некорректное обязательное поле"""


class NotFoundError(DocumentError, LookupError):
    """Запись с таким id не найдена"""


class ConflictError(DocumentError):
    """Запись с таким id уже существует"""


class CompileError(DocumentError):
    """Ошибка компиляции исходного документа"""


class StoreError(DocumentError):
    """Ошибка чтения или записи в хранилище"""
