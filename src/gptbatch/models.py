import typing as t
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

CHAT_COMPLETIONS_ENDPOINT = "/v1/chat/completions"
COMPLETION_WINDOW = "24h"


class JobStatus(StrEnum):
    VALIDATING = "validating"
    IN_PROGRESS = "in_progress"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"


class FilePurpose(StrEnum):
    ASSISTANTS = "assistants"
    ASSISTANTS_OUTPUT = "assistants_output"
    BATCH = "batch"
    BATCH_OUTPUT = "batch_output"
    FINE_TUNE = "fine-tune"
    FINE_TUNE_RESULTS = "fine-tune-results"
    VISION = "vision"


class JobLineError(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: str | None = None
    message: str | None = None
    param: str | None = None
    line: int | None = None

    def describe(self) -> str:
        return f"{self.code}: {self.message}"


class JobErrors(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: str | None = None
    data: list[JobLineError] = Field(default_factory=list)


class RequestCounts(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0


class Job(BaseModel):
    """Remote batch job record."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    object: str = "batch"
    endpoint: str | None = None
    errors: JobErrors | None = None
    input_file_id: str | None = None
    completion_window: str | None = None
    # kept as a plain string so unknown remote states still decode
    status: str = JobStatus.VALIDATING
    output_file_id: str | None = None
    error_file_id: str | None = None
    created_at: int | None = None
    in_progress_at: int | None = None
    expires_at: int | None = None
    finalizing_at: int | None = None
    completed_at: int | None = None
    failed_at: int | None = None
    expired_at: int | None = None
    cancelling_at: int | None = None
    cancelled_at: int | None = None
    request_counts: RequestCounts | None = None
    metadata: dict[str, t.Any] | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == JobStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status == JobStatus.FAILED

    def error_descriptions(self) -> list[str]:
        if self.errors is None:
            return []
        return [error.describe() for error in self.errors.data]


class JobPage(BaseModel):
    object: str = "list"
    data: list[Job] = Field(default_factory=list)
    has_more: bool = False
    first_id: str | None = None
    last_id: str | None = None


class FileObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    object: str = "file"
    bytes: int | None = None
    created_at: int | None = None
    filename: str | None = None
    purpose: str | None = None
    status: str | None = None


class FilePage(BaseModel):
    object: str = "list"
    data: list[FileObject] = Field(default_factory=list)


class FileDeletion(BaseModel):
    id: str | None = None
    object: str | None = None
    deleted: bool = False


class ChatMessage(BaseModel):
    role: t.Literal["system", "user", "assistant"]
    content: str


class ShardLineBody(BaseModel):
    seed: int | None = None
    model: str
    messages: list[ChatMessage]
    temperature: float = 0
    response_format: dict[str, t.Any]


class ShardLine(BaseModel):
    custom_id: str
    method: t.Literal["POST"] = "POST"
    url: str = CHAT_COMPLETIONS_ENDPOINT
    body: ShardLineBody


class CompletionMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: str | None = None
    content: str | None = None


class CompletionChoice(BaseModel):
    model_config = ConfigDict(extra="allow")

    index: int = 0
    message: CompletionMessage
    finish_reason: str | None = None


class ChatCompletion(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    object: str | None = None
    created: int | None = None
    model: str | None = None
    choices: list[CompletionChoice] = Field(default_factory=list)


class ResultResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    status_code: int
    request_id: str | None = None
    body: ChatCompletion = Field(default_factory=ChatCompletion)


class ResultLine(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    custom_id: str | None = None
    response: ResultResponse

