"""Typed field codecs for records stored as Redis hashes.

Redis hash values are plain strings. Each stored model declares the type of
every field so values are encoded and decoded explicitly instead of being
guessed at read time. Optional fields that are ``None`` are never written;
an encoded record reports them so the caller can HDEL stale values.
"""
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, NamedTuple, Set, Tuple, Type

from pydantic import BaseModel

from .storage import StorageError


class FieldType(NamedTuple):
    name: str
    encode: Callable[[object], str]
    decode: Callable[[str], object]


def _decode_bool(raw: str) -> bool:
    if raw not in ("true", "false"):
        raise ValueError(f"not a boolean: {raw!r}")
    return raw == "true"


def _decode_datetime(raw: str) -> datetime:
    value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


STR = FieldType("str", str, str)
INT = FieldType("int", lambda v: str(int(v)), int)
FLOAT = FieldType("float", lambda v: repr(float(v)), float)
BOOL = FieldType("bool", lambda v: "true" if v else "false", _decode_bool)
DATETIME = FieldType("datetime", lambda v: v.isoformat(), _decode_datetime)


class RecordCodec:
    """Maps a pydantic model to and from a ``{field: str}`` hash.

    Hash keys are the model's JSON aliases (camelCase).
    """

    def __init__(self, model: Type[BaseModel], fields: Dict[str, FieldType]):
        missing = set(model.model_fields) - set(fields)
        if missing:
            raise ValueError(f"no codec for {model.__name__} fields: {sorted(missing)}")
        self.model = model
        self.fields = fields
        self.aliases = {name: (model.model_fields[name].alias or name) for name in fields}
        self.optional: Set[str] = {
            name for name, info in model.model_fields.items() if not info.is_required()
        }

    def encode(self, record: BaseModel) -> Tuple[Dict[str, str], List[str]]:
        """Return ``(mapping, absent)``: fields to write and aliases to delete."""
        mapping: Dict[str, str] = {}
        absent: List[str] = []
        for name, ftype in self.fields.items():
            value = getattr(record, name)
            alias = self.aliases[name]
            if value is None:
                absent.append(alias)
                continue
            mapping[alias] = ftype.encode(value)
        return mapping, absent

    def decode(self, raw: Mapping[str, str], key: str = "?") -> BaseModel:
        values = {}
        for name, ftype in self.fields.items():
            alias = self.aliases[name]
            if alias not in raw:
                if name in self.optional:
                    continue
                raise StorageError(f"{key}: missing field {alias!r}")
            try:
                values[name] = ftype.decode(raw[alias])
            except (TypeError, ValueError) as e:
                raise StorageError(f"{key}: bad {ftype.name} in field {alias!r}: {raw[alias]!r}") from e
        try:
            return self.model.model_validate(values)
        except ValueError as e:
            raise StorageError(f"{key}: stored record is invalid: {e}") from e
