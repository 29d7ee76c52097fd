"""Schema-driven parameter descriptions for restoration passes.

A FilterSchema describes the configurable surface of one pass: the
mutually exclusive algorithm *methods* it offers and the named
*parameters* those methods consume. DynamicParameters is the generic
value bag matching a schema; UI code can render and edit it without
knowing anything about the strongly-typed pass records.

Parameter values are plain JSON primitives (bool, int, float, str).
An optional parameter that is *absent* from the bag means "leave the
tool default alone", which is different from being present with the
default value.

Example:
    >>> schema = FilterSchema.from_dict(json.loads(path.read_text()))
    >>> params = DynamicParameters.from_schema(schema, enabled=True)
    >>> schema.is_visible("yahrDepth", params.values)
    False
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional


class ParameterType(Enum):
    """Primitive value kinds a parameter can hold."""

    BOOLEAN = "boolean"
    INTEGER = "integer"
    NUMBER = "number"
    STRING = "string"
    ENUM = "enum"


def value_matches_type(param_type: ParameterType, value: Any) -> bool:
    """Check a raw value against a parameter kind without coercion."""
    if param_type is ParameterType.BOOLEAN:
        return isinstance(value, bool)
    if param_type is ParameterType.INTEGER:
        return isinstance(value, int) and not isinstance(value, bool)
    if param_type is ParameterType.NUMBER:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return math.isfinite(value)
    # STRING and ENUM both carry text
    return isinstance(value, str)


def evaluate_visibility(
    conditions: Optional[Mapping[str, Any]],
    values: Mapping[str, Any],
) -> bool:
    """Evaluate a ``visibleWhen`` predicate against a value set.

    Every condition must hold (AND). A condition whose expected value is a
    list holds when the current value is one of its members; otherwise it
    holds on equality. A parameter missing from ``values`` compares as None.

    Args:
        conditions: Mapping of parameter name to expected value(s), or None
        values: Current parameter values

    Returns:
        True when the parameter should be shown
    """
    if not conditions:
        return True
    for name, expected in conditions.items():
        current = values.get(name)
        if isinstance(expected, (list, tuple)):
            if current not in expected:
                return False
        elif current != expected:
            return False
    return True


@dataclass
class ParameterDefinition:
    """A single named parameter of a filter.

    Attributes:
        name: Parameter name as it appears in the value bag
        type: Primitive value kind
        default: Default value (None for optional parameters without one)
        optional: Whether the parameter may be absent
        minimum: Lower bound for numeric parameters
        maximum: Upper bound for numeric parameters
        step: UI step for numeric parameters
        options: Allowed values for enum parameters
        label: Display label
        description: Help text
        visible_when: Visibility predicate, see evaluate_visibility
    """

    name: str
    type: ParameterType
    default: Any = None
    optional: bool = False
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    step: Optional[float] = None
    options: List[str] = field(default_factory=list)
    label: str = ""
    description: str = ""
    visible_when: Optional[Dict[str, Any]] = None

    def check_value(self, value: Any) -> Optional[str]:
        """Return a problem description for ``value``, or None if it is valid."""
        if value is None:
            return None if self.optional else f"{self.name} is required"
        if not value_matches_type(self.type, value):
            return f"{self.name} expects {self.type.value}, got {type(value).__name__}"
        if self.type in (ParameterType.INTEGER, ParameterType.NUMBER):
            if self.minimum is not None and value < self.minimum:
                return f"{self.name} must be >= {self.minimum}"
            if self.maximum is not None and value > self.maximum:
                return f"{self.name} must be <= {self.maximum}"
        if self.type is ParameterType.ENUM and self.options and value not in self.options:
            return f"{self.name} must be one of {self.options}"
        return None

    def is_visible(self, values: Mapping[str, Any]) -> bool:
        return evaluate_visibility(self.visible_when, values)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type.value, "default": self.default}
        if self.optional:
            data["optional"] = True
        if self.minimum is not None:
            data["min"] = self.minimum
        if self.maximum is not None:
            data["max"] = self.maximum
        if self.step is not None:
            data["step"] = self.step
        if self.options:
            data["options"] = list(self.options)
        ui: Dict[str, Any] = {}
        if self.label:
            ui["label"] = self.label
        if self.description:
            ui["description"] = self.description
        if self.visible_when:
            ui["visibleWhen"] = dict(self.visible_when)
        if ui:
            data["ui"] = ui
        return data

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "ParameterDefinition":
        ui = data.get("ui") or {}
        return cls(
            name=name,
            type=ParameterType(data["type"]),
            default=data.get("default"),
            optional=bool(data.get("optional", False)),
            minimum=data.get("min"),
            maximum=data.get("max"),
            step=data.get("step"),
            options=list(data.get("options") or []),
            label=ui.get("label", ""),
            description=ui.get("description", ""),
            visible_when=ui.get("visibleWhen"),
        )


@dataclass
class MethodDefinition:
    """One algorithm choice within a filter.

    Attributes:
        id: Stable method identifier stored in DynamicParameters.method
        name: Display name
        function: Name of the underlying filter function
        parameters: Names of the parameters this method consumes
        description: Help text
    """

    id: str
    name: str
    function: str
    parameters: List[str] = field(default_factory=list)
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "function": self.function,
            "parameters": list(self.parameters),
        }
        if self.description:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MethodDefinition":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            function=data.get("function", ""),
            parameters=list(data.get("parameters") or []),
            description=data.get("description", ""),
        )


@dataclass
class FilterSchema:
    """Configurable surface of one restoration pass.

    Attributes:
        id: Filter identifier (matches DynamicParameters.filter_id)
        name: Display name
        methods: Available methods, first is the default
        parameters: Parameter definitions keyed by name, in display order
        version: Schema version string
        description: Help text
        order: Position of the filter in the processing chain
        source: Where the schema came from ("builtin" or a file path)
    """

    id: str
    name: str
    methods: List[MethodDefinition]
    parameters: Dict[str, ParameterDefinition]
    version: str = "1.0"
    description: str = ""
    order: int = 0
    source: str = "builtin"

    @property
    def default_method(self) -> MethodDefinition:
        return self.methods[0]

    def get_method(self, method_id: str) -> Optional[MethodDefinition]:
        for method in self.methods:
            if method.id == method_id:
                return method
        return None

    def get_defaults(self) -> Dict[str, Any]:
        """Default value bag: every parameter that has a default.

        Optional parameters without a default are left absent.
        """
        return {
            name: param.default
            for name, param in self.parameters.items()
            if not (param.optional and param.default is None)
        }

    def validate(self, values: Mapping[str, Any], method: Optional[str] = None) -> List[str]:
        """List every problem with ``values``; an empty list means valid."""
        errors: List[str] = []
        if method is not None and self.get_method(method) is None:
            errors.append(f"Unknown method: {method}")
        for name, value in values.items():
            param = self.parameters.get(name)
            if param is None:
                errors.append(f"Unknown parameter: {name}")
                continue
            problem = param.check_value(value)
            if problem:
                errors.append(problem)
        return errors

    def is_visible(self, name: str, values: Mapping[str, Any]) -> bool:
        param = self.parameters.get(name)
        return param is not None and param.is_visible(values)

    def visible_parameters(
        self,
        values: Mapping[str, Any],
        method: Optional[str] = None,
    ) -> List[str]:
        """Names of parameters to show for the given values and method."""
        selected = self.get_method(method) if method else None
        names: Iterable[str] = selected.parameters if selected else self.parameters.keys()
        # conditions may refer to the selected method by name
        scope = dict(values)
        if method is not None:
            scope.setdefault("method", method)
        return [n for n in names if n in self.parameters and self.parameters[n].is_visible(scope)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "name": self.name,
            "description": self.description,
            "order": self.order,
            "methods": [m.to_dict() for m in self.methods],
            "parameters": {n: p.to_dict() for n, p in self.parameters.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], source: str = "builtin") -> "FilterSchema":
        methods = [MethodDefinition.from_dict(m) for m in data.get("methods") or []]
        if not methods:
            raise ValueError(f"Filter schema '{data.get('id')}' declares no methods")
        parameters = {
            name: ParameterDefinition.from_dict(name, spec)
            for name, spec in (data.get("parameters") or {}).items()
        }
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            methods=methods,
            parameters=parameters,
            version=str(data.get("version", "1.0")),
            description=data.get("description", ""),
            order=int(data.get("order", 0)),
            source=source,
        )


@dataclass
class DynamicParameters:
    """Generic runtime values for one pass.

    Attributes:
        filter_id: Identifier of the filter these values belong to
        method: Selected method id
        enabled: Whether the pass runs
        values: Parameter name to value, in schema order. Absent keys
            are unset optional parameters.
    """

    filter_id: str
    method: str
    enabled: bool = False
    values: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_schema(cls, schema: FilterSchema, enabled: bool = False) -> "DynamicParameters":
        return cls(
            filter_id=schema.id,
            method=schema.default_method.id,
            enabled=enabled,
            values=schema.get_defaults(),
        )

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def has(self, name: str) -> bool:
        return name in self.values

    def with_value(self, name: str, value: Any) -> "DynamicParameters":
        """Copy with one value set; passing None removes the value."""
        values = dict(self.values)
        if value is None:
            values.pop(name, None)
        else:
            values[name] = value
        return DynamicParameters(self.filter_id, self.method, self.enabled, values)

    def with_method(self, method: str) -> "DynamicParameters":
        return DynamicParameters(self.filter_id, method, self.enabled, dict(self.values))

    def with_enabled(self, enabled: bool) -> "DynamicParameters":
        return DynamicParameters(self.filter_id, self.method, enabled, dict(self.values))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filterId": self.filter_id,
            "method": self.method,
            "enabled": self.enabled,
            "values": dict(self.values),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DynamicParameters":
        return cls(
            filter_id=data["filterId"],
            method=data.get("method", ""),
            enabled=bool(data.get("enabled", False)),
            values=dict(data.get("values") or {}),
        )
