"""
Size-bounded accumulation of chat-completion requests into a JSONL shard.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass, field

import structlog
from pydantic import BaseModel

from gptbatch.config import DEFAULT_MODEL, DEFAULT_SEED
from gptbatch.exceptions import CapacityExceededError, SerializationError
from gptbatch.models import ChatMessage, ShardLine, ShardLineBody
from gptbatch.schema import SchemaDescribable, as_describable, build_response_format

log = structlog.get_logger(__name__)

MAX_SHARD_RECORDS = 50_000
MAX_SHARD_BYTES = 512 * 1024 * 1024


@dataclass
class RequestOptions:
    """Per-request settings written into the line body."""

    model: str = DEFAULT_MODEL
    seed: int = DEFAULT_SEED
    response_format: dict[str, t.Any] = field(default_factory=lambda: {"type": "json_object"})


RequestOption = t.Callable[[RequestOptions], None]


def with_model(model: str) -> RequestOption:
    """Override the model of one request. An empty name keeps the default."""

    def apply(options: RequestOptions) -> None:
        if model:
            options.model = model

    return apply


def with_seed(seed: int) -> RequestOption:
    """Override the sampling seed of one request. ``0`` omits the seed."""

    def apply(options: RequestOptions) -> None:
        options.seed = seed

    return apply


def with_json_schema(schema: SchemaDescribable | type[BaseModel]) -> RequestOption:
    """
    Require the answer to follow a strict, named JSON schema.

    Parameters
    ----------
    schema : SchemaDescribable | type[BaseModel]
        Pydantic model class or any object describing the schema.

    Returns
    -------
    RequestOption
        Option replacing the default ``json_object`` response format.
    """

    def apply(options: RequestOptions) -> None:
        try:
            options.response_format = build_response_format(as_describable(schema))
        except (TypeError, ValueError) as error:
            raise SerializationError(
                "failed to build json schema", operation="with_json_schema"
            ) from error

    return apply


class ShardBuilder:
    """
    Accumulate serialized request lines under hard record and byte ceilings.

    Parameters
    ----------
    model : str
        Default model of every line.
    seed : int
        Default seed of every line.
    max_records : int
        Record-count ceiling.
    max_bytes : int
        Byte-size ceiling of the whole shard.

    Notes
    -----
    A rejected ``add`` leaves the shard untouched.
    """

    def __init__(
        self,
        *,
        model: str = DEFAULT_MODEL,
        seed: int = DEFAULT_SEED,
        max_records: int = MAX_SHARD_RECORDS,
        max_bytes: int = MAX_SHARD_BYTES,
    ) -> None:
        self._model = model
        self._seed = seed
        self._max_records = max_records
        self._max_bytes = max_bytes
        self._records: list[bytes] = []
        self._byte_size = 0

    def __len__(self) -> int:
        return len(self._records)

    @property
    def record_count(self) -> int:
        return len(self._records)

    @property
    def byte_size(self) -> int:
        return self._byte_size

    @property
    def records(self) -> tuple[bytes, ...]:
        return tuple(self._records)

    @property
    def content(self) -> bytes:
        return b"".join(self._records)

    def add(
        self,
        custom_id: str,
        system_prompt: str,
        user_prompt: str,
        options: t.Sequence[RequestOption] = (),
    ) -> int:
        """
        Append one request to the shard.

        Parameters
        ----------
        custom_id : str
            Caller-chosen identifier echoed back in the result line.
        system_prompt : str
            Task description.
        user_prompt : str
            Input data.
        options : typing.Sequence[RequestOption], optional
            Per-request overrides.

        Returns
        -------
        int
            Zero-based ordinal of the request in the shard.

        Raises
        ------
        CapacityExceededError
            If the record or byte ceiling would be exceeded.
        SerializationError
            If an option or the line itself cannot be serialized.
        """
        applied = RequestOptions(model=self._model, seed=self._seed)
        for option in options:
            option(applied)

        if len(self._records) >= self._max_records:
            raise CapacityExceededError(
                f"shard already holds {self._max_records} requests", operation="add_request"
            )

        try:
            line = ShardLine(
                custom_id=custom_id,
                body=ShardLineBody(
                    seed=applied.seed or None,
                    model=applied.model,
                    messages=[
                        ChatMessage(role="system", content=system_prompt),
                        ChatMessage(role="user", content=user_prompt),
                    ],
                    temperature=0,
                    response_format=applied.response_format,
                ),
            )
            exclude = {"body": {"seed"}} if line.body.seed is None else None
            serialized = line.model_dump_json(exclude=exclude).encode("utf-8") + b"\n"
        except (TypeError, ValueError) as error:
            raise SerializationError(
                f"failed to serialize request {custom_id}", operation="add_request"
            ) from error

        if self._byte_size + len(serialized) > self._max_bytes:
            raise CapacityExceededError(
                f"request {custom_id} would grow the shard past {self._max_bytes} bytes",
                operation="add_request",
            )

        self._records.append(serialized)
        self._byte_size += len(serialized)
        ordinal = len(self._records) - 1
        log.debug(
            event="Added request to shard",
            custom_id=custom_id,
            ordinal=ordinal,
            shard_bytes=self._byte_size,
        )
        return ordinal
