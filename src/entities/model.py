import dataclasses
import enum

from pydantic import BaseModel as PydanticBaseModel
from pydantic import ConfigDict


def _convert_to_serializable(obj):  # noqa: ANN001, ANN202
    """Recursively convert models, sets and enums to JSON-friendly values."""
    if isinstance(obj, PydanticBaseModel):
        return {name: _convert_to_serializable(getattr(obj, name)) for name in obj.__class__.model_fields}
    if isinstance(obj, (frozenset, set)):
        return sorted(_convert_to_serializable(item) for item in obj)
    if isinstance(obj, dict):
        return {key: _convert_to_serializable(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_convert_to_serializable(item) for item in obj]
    if isinstance(obj, enum.Enum):
        return obj.value
    return obj


class BaseModel(PydanticBaseModel):
    model_config = ConfigDict(frozen=True)

    def dict(self, *args, **kwargs) -> dict:  # noqa: ANN003, ANN002, ARG002
        return _convert_to_serializable(self)


def json_default(o: object) -> str | dict | list:
    if isinstance(o, PydanticBaseModel):
        return _convert_to_serializable(o)
    elif dataclasses.is_dataclass(o) and not isinstance(o, type):
        return _convert_to_serializable(dataclasses.asdict(o))
    elif isinstance(o, (frozenset, set)):
        return _convert_to_serializable(o)
    elif isinstance(o, enum.Enum):
        return o.value
    return str(o)
