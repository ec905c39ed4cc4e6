from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from lessondeck.core.constants import (
    DEFAULT_CARD_SPLIT,
    DEFAULT_DECK_FORMAT,
    DEFAULT_IMAGE_SOURCE,
    DEFAULT_TEXT_MODE,
    DEFAULT_THEME_NAME,
)
from lessondeck.core.errors import InvalidStateError

# Whatever json.loads returns. Response shapes vary between API revisions, so
# nothing downstream assumes a schema.
JsonValue = Any

DeckFormat = Literal["presentation", "webpage"]
ExportFormat = Literal["pdf", "pptx"]
JobStatus = Literal["pending", "completed", "failed", "timed_out"]
LessonStatus = Literal["completed", "failed", "timeout", "throttled", "error"]

TERMINAL_JOB_STATUSES: frozenset[str] = frozenset({"completed", "failed", "timed_out"})


class SharingPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    workspace_access: str = "edit"
    external_access: str = "view"


class GenerationOptions(BaseModel):
    """Per-lesson overrides applied on top of the configured defaults."""

    model_config = ConfigDict(frozen=True)

    format: DeckFormat = DEFAULT_DECK_FORMAT
    theme: str = DEFAULT_THEME_NAME
    export_format: ExportFormat | None = None
    language: str = "en"
    additional_instructions: str | None = None
    sharing: SharingPolicy = Field(default_factory=SharingPolicy)


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_text: str = Field(min_length=1)
    title: str
    format: DeckFormat = DEFAULT_DECK_FORMAT
    theme: str = DEFAULT_THEME_NAME
    export_format: ExportFormat | None = None
    sharing: SharingPolicy = Field(default_factory=SharingPolicy)
    text_mode: str = DEFAULT_TEXT_MODE
    card_split: str = DEFAULT_CARD_SPLIT
    language: str = "en"
    additional_instructions: str | None = None

    @classmethod
    def build(cls, source_text: str, title: str, options: GenerationOptions) -> GenerationRequest:
        return cls(
            source_text=source_text,
            title=title,
            format=options.format,
            theme=options.theme,
            export_format=options.export_format,
            sharing=options.sharing,
            language=options.language,
            additional_instructions=options.additional_instructions,
        )

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON body for POST /generations."""
        payload: dict[str, Any] = {
            "inputText": self.source_text,
            "textMode": self.text_mode,
            "format": self.format,
            "themeName": self.theme,
            "cardSplit": self.card_split,
            "textOptions": {"language": self.language},
            "imageOptions": {"source": DEFAULT_IMAGE_SOURCE},
            "sharingOptions": {
                "workspaceAccess": self.sharing.workspace_access,
                "externalAccess": self.sharing.external_access,
            },
        }
        if self.export_format:
            payload["exportAs"] = self.export_format
        if self.additional_instructions:
            payload["additionalInstructions"] = self.additional_instructions
        return payload


class GenerationJob(BaseModel):
    """
    A remote generation job as observed by the poller.

    Status only moves forward: pending -> completed | failed | timed_out.
    Observing pending again while pending just refreshes the payload.
    """

    id: str
    status: JobStatus = "pending"
    payload: JsonValue = None
    attempts: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def transition(self, status: JobStatus, payload: JsonValue = None) -> None:
        if self.is_terminal:
            raise InvalidStateError(f"Generation {self.id} is already {self.status}; cannot move to {status}.")
        self.status = status
        if payload is not None:
            self.payload = payload


class ExtractedResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    share_url: str | None = None
    file_url: str | None = None


class LessonSource(BaseModel):
    slug: str
    title: str
    path: str
    markdown: str
    format: DeckFormat | None = None
    theme: str | None = None
    export_format: ExportFormat | None = None


class LessonResult(BaseModel):
    slug: str
    title: str
    status: LessonStatus
    generation_id: str | None = None
    share_url: str | None = None
    file_url: str | None = None
    download_path: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    markdown: str = Field(default="", exclude=True)
