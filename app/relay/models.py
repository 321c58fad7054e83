"""
Data models for the change relay.

Provides the wire envelope, relay options, and the hook context that a
model store hands to relay observers.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from core.exceptions import ConfigurationError, EnvelopeDecodeError


class MethodName(str, Enum):
    """Kind of mutation an envelope describes."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class RelayRole(str, Enum):
    """Role a relay plays for its service."""

    UNCONFIGURED = "unconfigured"
    SERVER = "server"
    CLIENT = "client"


class ChangeEnvelope(BaseModel):
    """
    One changed-record event as it travels over the bus.

    Serialized with camelCase keys:
    ``{modelName, methodName, modelId, data, updateData?, dataBeforeUpdate?, userId?}``
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    model_name: str = Field(..., min_length=1)
    method_name: MethodName
    model_id: Any
    data: Any
    update_data: Optional[Any] = None
    data_before_update: Optional[Any] = None
    user_id: Optional[Any] = None

    @field_validator("model_id", mode="before")
    @classmethod
    def model_id_not_empty(cls, v: Any) -> Any:
        if v is None or v == "":
            raise ValueError("modelId is required")
        return v

    def to_wire(self) -> bytes:
        """Encode as JSON bytes, omitting absent optional fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")

    @classmethod
    def from_wire(cls, payload: Union[bytes, str]) -> "ChangeEnvelope":
        """
        Decode JSON bytes into an envelope.

        Raises:
            EnvelopeDecodeError: If the payload is not JSON or lacks required fields.
        """
        try:
            return cls.model_validate_json(payload)
        except ValidationError as e:
            raise EnvelopeDecodeError(
                "Invalid change envelope", {"errors": e.error_count()}
            ) from e


class RelayOptions(BaseModel):
    """
    Options accepted when creating or reconfiguring a relay.

    Both snake_case names and the camelCase keys used by service
    configuration files (``serviceName``, ``modelsToBroadcast``, ...) are
    accepted. ``type`` is accepted as an alias of ``role``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="ignore",
    )

    service_name: Optional[str] = None
    role: Optional[RelayRole] = Field(
        None, validation_alias=AliasChoices("role", "type")
    )
    project_id: Optional[str] = None
    models_to_broadcast: List[str] = Field(default_factory=list)
    models_to_subscribe: List[str] = Field(default_factory=list)
    event_fn: Optional[Callable[..., Any]] = None
    filters: Optional[List[Any]] = None
    on_ready: Optional[Callable[..., Any]] = None

    @field_validator("role", mode="before")
    @classmethod
    def role_is_server_or_client(cls, v: Any) -> Any:
        if v is None:
            return v
        value = v.value if isinstance(v, RelayRole) else v
        if value not in (RelayRole.SERVER.value, RelayRole.CLIENT.value):
            raise ValueError(f'Role "{value}" is not valid. Valid options: client/server')
        return value

    @field_validator("filters", mode="before")
    @classmethod
    def filters_is_sequence(cls, v: Any) -> Any:
        if v is None:
            return v
        if not isinstance(v, (list, tuple)):
            raise ValueError("filters must be a list of functions")
        return list(v)

    @classmethod
    def parse(cls, options: Union["RelayOptions", Mapping, None]) -> "RelayOptions":
        """
        Coerce a mapping into RelayOptions.

        Raises:
            ConfigurationError: If the options do not validate.
        """
        if isinstance(options, RelayOptions):
            return options
        if options is None:
            raise ConfigurationError("options are required")
        try:
            return cls.model_validate(dict(options))
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise ConfigurationError(
                f"Invalid relay options: {first.get('msg')}", {"field": location}
            ) from e


EventCallback = Callable[..., Union[Any, Awaitable[Any]]]


# ============================================================
# Model store hook protocol
# ============================================================


@dataclass
class HookContext:
    """
    Context a model store passes to lifecycle observers.

    Attributes:
        model_name: Name of the model being mutated
        instance: Full record (single-instance save); None for bulk operations
        data: Patch supplied to the operation (bulk update / partial update)
        where: Predicate selecting affected records (bulk update / delete)
        is_new_instance: True when the save created the record
        current_instance: Record as it was before a single-instance update
        hook_state: Scratch state shared by the before/after observers of one operation
        actor: Identity of the acting user, when the caller knows it
    """

    model_name: str
    instance: Optional[Dict[str, Any]] = None
    data: Optional[Dict[str, Any]] = None
    where: Optional[Dict[str, Any]] = None
    is_new_instance: bool = False
    current_instance: Optional[Dict[str, Any]] = None
    hook_state: Dict[str, Any] = field(default_factory=dict)
    actor: Optional[str] = None


HookObserver = Callable[[HookContext], Awaitable[None]]


class ObservableModel(Protocol):
    """A model collection that dispatches lifecycle hooks and can be queried."""

    name: str

    def observe(self, event: str, observer: HookObserver) -> None:
        ...

    async def find(self, where: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        ...


class ModelApp(Protocol):
    """Application object exposing its models by name."""

    models: Mapping


def snapshot(value: Any) -> Any:
    """
    Deep copy a record into plain JSON-compatible data.

    Later mutation of the live record cannot affect the returned value.
    """
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return json.loads(json.dumps(value, default=str))


def record_id(record: Any) -> Any:
    """Return the ``id`` of a dict-like or attribute-style record, or None."""
    if record is None:
        return None
    if isinstance(record, Mapping):
        return record.get("id")
    return getattr(record, "id", None)
