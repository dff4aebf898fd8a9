"""
DTO 基类 - 应用层与调用方之间的数据传输
"""
from datetime import datetime, timezone
from math import ceil
from typing import Type, TypeVar, Union

from pydantic import BaseModel, ValidationError, model_serializer

from domain.common.exceptions import DomainValidationException


T = TypeVar("T", bound=BaseModel)


def parse_dto(model: Type[T], data: Union[T, dict, None]) -> T:
    """Validate a raw payload, turning pydantic errors into DomainValidationException."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False)
        first = errors[0] if errors else {}
        loc = ".".join(str(p) for p in first.get("loc", ())) or None
        raise DomainValidationException(
            f"Invalid {model.__name__}: {first.get('msg', str(exc))}",
            field=loc,
            details={"errors": [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in errors]},
        ) from exc


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class Pagination(DTOBase):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=ceil(total / limit) if limit else 0)
