from .client import GptBatchClient as GptBatchClient
from .config import ClientConfig as ClientConfig
from .config import CongestionConfig as CongestionConfig
from .exceptions import CapacityExceededError as CapacityExceededError
from .exceptions import GptBatchError as GptBatchError
from .exceptions import JobFailedError as JobFailedError
from .exceptions import JobNotCompletedError as JobNotCompletedError
from .exceptions import LineParseError as LineParseError
from .exceptions import NotFoundError as NotFoundError
from .exceptions import TooManyAttemptsError as TooManyAttemptsError
from .models import JobStatus as JobStatus
from .session import BatchSession as BatchSession
from .shard import with_json_schema as with_json_schema
from .shard import with_model as with_model
from .shard import with_seed as with_seed

__all__ = [
    "GptBatchClient",
    "BatchSession",
    "ClientConfig",
    "CongestionConfig",
    "JobStatus",
    "with_json_schema",
    "with_model",
    "with_seed",
    "GptBatchError",
    "CapacityExceededError",
    "JobFailedError",
    "JobNotCompletedError",
    "LineParseError",
    "NotFoundError",
    "TooManyAttemptsError",
]
