"""Common machinery for strongly-typed pass parameter records.

Each pass record is a dataclass plus an explicit ``FIELDS`` table. The
table lists, in order, every setting the worker understands: its JSON
key, the Python attribute that stores it, its primitive kind and
whether it may be absent. Serialization, conversion to
DynamicParameters and the built-in FilterSchema all walk this table,
so a setting missing from it is not part of the record's surface.
"""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Type, TypeVar

from restoreflow.exceptions import SchemaMismatch
from restoreflow.models.schema import ParameterType, value_matches_type

T = TypeVar("T", bound="PassParameters")

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def snake_case(key: str) -> str:
    """Convert a camelCase JSON key to a snake_case attribute name."""
    return _CAMEL_BOUNDARY.sub("_", key).lower()


@dataclass(frozen=True)
class FieldSpec:
    """One setting of a pass record.

    Attributes:
        key: JSON key, also the parameter name in DynamicParameters
        attr: Attribute name on the record
        type: Primitive kind
        optional: Whether None (absent) is allowed
        enum: Enum class backing an ENUM field
        minimum: Lower bound advertised in the schema
        maximum: Upper bound advertised in the schema
        step: UI step advertised in the schema
        label: Display label
        visible_when: Visibility predicate advertised in the schema
    """

    key: str
    attr: str
    type: ParameterType
    optional: bool = False
    enum: Optional[Type[Enum]] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    step: Optional[float] = None
    label: str = ""
    visible_when: Optional[Dict[str, Any]] = None

    @property
    def options(self) -> Tuple[str, ...]:
        if self.enum is None:
            return ()
        return tuple(member.value for member in self.enum)

    def dump(self, value: Any) -> Any:
        """Typed attribute value to JSON primitive."""
        if isinstance(value, Enum):
            return value.value
        return value

    def load(self, raw: Any, filter_id: str) -> Any:
        """JSON primitive to typed attribute value.

        Raises:
            SchemaMismatch: If the value has the wrong kind or is not a
                member of the field's enum
        """
        if raw is None:
            if self.optional:
                return None
            raise SchemaMismatch(filter_id, self.key, "value is required")
        if not value_matches_type(self.type, raw):
            raise SchemaMismatch(
                filter_id,
                self.key,
                f"expected {self.type.value}, got {type(raw).__name__}",
            )
        if self.enum is not None:
            try:
                return self.enum(raw)
            except ValueError:
                raise SchemaMismatch(
                    filter_id, self.key, f"'{raw}' is not one of {list(self.options)}"
                ) from None
        if self.type is ParameterType.NUMBER:
            return float(raw)
        return raw


def spec(
    key: str,
    type: ParameterType,
    attr: Optional[str] = None,
    **kwargs: Any,
) -> FieldSpec:
    """Shorthand for declaring a FieldSpec with a derived attribute name."""
    if "enum" in kwargs and kwargs["enum"] is not None:
        type = ParameterType.ENUM
    return FieldSpec(key=key, attr=attr or snake_case(key), type=type, **kwargs)


B = ParameterType.BOOLEAN
I = ParameterType.INTEGER
N = ParameterType.NUMBER
S = ParameterType.STRING
E = ParameterType.ENUM


class PassParameters:
    """Mixin for pass records; subclasses are dataclasses.

    Class attributes:
        FILTER_ID: Filter identifier shared with the schema registry
        FIELDS: Ordered settings table
        METHOD_ENUM: Enum of algorithm choices, None for single-method passes
        METHOD_IDS: Method enum member to schema method id
        FIXED_METHOD: Method id of single-method passes
    """

    FILTER_ID: ClassVar[str] = ""
    FIELDS: ClassVar[Tuple[FieldSpec, ...]] = ()
    METHOD_ENUM: ClassVar[Optional[Type[Enum]]] = None
    METHOD_IDS: ClassVar[Dict[Any, str]] = {}
    FIXED_METHOD: ClassVar[str] = ""

    @property
    def method_id(self) -> str:
        if self.METHOD_ENUM is None:
            return self.FIXED_METHOD
        return self.METHOD_IDS[getattr(self, "method")]

    @classmethod
    def method_ids(cls) -> Tuple[str, ...]:
        if cls.METHOD_ENUM is None:
            return (cls.FIXED_METHOD,)
        return tuple(cls.METHOD_IDS[m] for m in cls.METHOD_ENUM)

    @classmethod
    def field_for(cls, key: str) -> Optional[FieldSpec]:
        for field_spec in cls.FIELDS:
            if field_spec.key == key:
                return field_spec
        return None

    def with_method_id(self: T, method_id: str) -> T:
        """Copy with the method selected by schema method id.

        Raises:
            SchemaMismatch: If the pass has no method with that id
        """
        if self.METHOD_ENUM is None:
            if method_id != self.FIXED_METHOD:
                raise SchemaMismatch(self.FILTER_ID, "method", f"unknown method '{method_id}'")
            return self
        for member, member_id in self.METHOD_IDS.items():
            if member_id == method_id:
                return dataclasses.replace(self, method=member)
        raise SchemaMismatch(self.FILTER_ID, "method", f"unknown method '{method_id}'")

    def replace(self: T, **changes: Any) -> T:
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize in the worker's JSON layout; unset optionals are omitted."""
        data: Dict[str, Any] = {"enabled": getattr(self, "enabled")}
        if self.METHOD_ENUM is not None:
            data["method"] = getattr(self, "method").value
        for field_spec in self.FIELDS:
            value = getattr(self, field_spec.attr)
            if value is None and field_spec.optional:
                continue
            data[field_spec.key] = field_spec.dump(value)
        return data

    @classmethod
    def from_dict(cls: Type[T], data: Mapping[str, Any]) -> T:
        """Build a record from worker JSON; missing keys take defaults.

        Keys the record does not know are ignored, matching the worker's
        own lenient reader.
        """
        changes: Dict[str, Any] = {}
        if "enabled" in data:
            changes["enabled"] = bool(data["enabled"])
        if cls.METHOD_ENUM is not None and "method" in data:
            try:
                changes["method"] = cls.METHOD_ENUM(data["method"])
            except ValueError:
                raise SchemaMismatch(
                    cls.FILTER_ID, "method", f"unknown method '{data['method']}'"
                ) from None
        for field_spec in cls.FIELDS:
            if field_spec.key in data:
                changes[field_spec.attr] = field_spec.load(data[field_spec.key], cls.FILTER_ID)
        return cls(**changes)  # type: ignore[call-arg]
