import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from docvault.domains.documents.errors import ValidationError


class DocumentLanguage(str, enum.Enum):
    """Исходный язык документа"""
    LATEX = "latex"
    MARKDOWN = "markdown"
    TYPST = "typst"
    PLAINTEXT = "plaintext"


def _require(document_id: uuid.UUID, name: str, owner_id: uuid.UUID) -> None:
    if not isinstance(document_id, uuid.UUID) or document_id.int == 0:
        raise ValidationError("Document ID cannot be empty")
    if not name or not name.strip():
        raise ValidationError("Document name cannot be empty")
    if not isinstance(owner_id, uuid.UUID) or owner_id.int == 0:
        raise ValidationError("Owner ID cannot be empty")


@dataclass(frozen=True)
class Intent:
    """Намерение создать документ: только метаданные, без содержимого"""
    id: uuid.UUID
    owner_id: uuid.UUID
    name: str
    language: DocumentLanguage

    def __post_init__(self):
        _require(self.id, self.name, self.owner_id)

    @classmethod
    def register(cls, owner_id: uuid.UUID, name: str, language: DocumentLanguage) -> "Intent":
        """Создание нового намерения со свежим id"""
        return cls(id=uuid.uuid4(), owner_id=owner_id, name=name, language=language)


@dataclass(frozen=True)
class Document:
    """Готовый документ; содержимое хранится в blob store под тем же id"""
    id: uuid.UUID
    name: str
    owner_id: uuid.UUID
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        _require(self.id, self.name, self.owner_id)

    @classmethod
    def from_intent(cls, intent: Intent) -> "Document":
        """Создание документа из намерения"""
        return cls(id=intent.id, name=intent.name, owner_id=intent.owner_id)


@dataclass
class ReconcileReport:
    """Результат сверки метаданных и blob store"""
    orphan_documents: list = field(default_factory=list)
    orphan_blobs: list = field(default_factory=list)
    skipped: list = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not (self.orphan_documents or self.orphan_blobs)
