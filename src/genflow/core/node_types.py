"""
Node Type System - Declarative node configs and the registry that serves them.

This module defines how node types are specified:
- HandleDefinition: Describes an input or output handle
- Parameter variants: One frozen dataclass per parameter kind
- CostConfig: Base cost plus variable cost coefficients
- NodeConfig: Complete declaration of a node type
- NodeRegistry: Lookup, search, validation and cost estimation

Validators are generated from the declarations with pydantic, so a node
type is described once as data and everything else is derived from it.
"""

from __future__ import annotations

import json
import keyword
import logging
import math
from dataclasses import dataclass, field, fields
from enum import Enum
from fractions import Fraction
from pathlib import Path
from typing import (
    Annotated,
    Any,
    ClassVar,
    Literal,
    Mapping,
    Optional,
    TypeAlias,
    assert_never,
)

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, create_model
from pydantic import ValidationError as PydanticValidationError

from genflow.core.data_types import HandleDataType, coerce_data_type, is_url_like


logger = logging.getLogger(__name__)


class NodeCategory(Enum):
    """Categories for organizing nodes in the library."""
    INPUT = "input"
    OUTPUT = "output"
    AI_IMAGE = "ai-image"
    AI_VIDEO = "ai-video"
    AI_AUDIO = "ai-audio"
    AI_LLM = "ai-llm"
    TRANSFORM = "transform"
    UTILITY = "utility"


# ============================================================================
# Handles
# ============================================================================

@dataclass(frozen=True)
class HandleDefinition:
    """
    Definition of an input or output handle on a node.

    Attributes:
        id: Handle identifier referenced by edges (e.g. "user-message-input")
        label: Display label in UI
        data_type: Type of data accepted or produced
        required: If True, an input must be connected or supplied
        multiple: If True, an input accepts several edges and collects a list
        key: Field in the node's input/output dict this handle maps to
        description: Tooltip text
        default_value: Value to use if not connected
    """
    id: str
    label: str
    data_type: HandleDataType
    required: bool = False
    multiple: bool = False
    key: str = ""
    description: str = ""
    default_value: Any = None

    def __post_init__(self) -> None:
        # Frozen dataclass, so normalise through object.__setattr__
        object.__setattr__(self, "data_type", coerce_data_type(self.data_type))
        if not self.key:
            object.__setattr__(self, "key", self.id)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HandleDefinition:
        return cls(
            id=data["id"],
            label=data.get("label", data["id"]),
            data_type=coerce_data_type(data["data_type"]),
            required=data.get("required", False),
            multiple=data.get("multiple", False),
            key=data.get("key", ""),
            description=data.get("description", ""),
            default_value=data.get("default_value"),
        )


# ============================================================================
# Parameters (tagged variants)
# ============================================================================

@dataclass(frozen=True, kw_only=True)
class _ParameterBase:
    id: str
    label: str
    description: str = ""
    required: bool = False
    advanced: bool = False  # Collapsed under "advanced" in the editor
    has_connector: bool = False  # Also exposed as a connectable handle
    group: str | None = None


@dataclass(frozen=True, kw_only=True)
class TextParameter(_ParameterBase):
    kind: ClassVar[str] = "text"
    default_value: str | None = None
    placeholder: str = ""
    min_length: int | None = None
    max_length: int | None = None
    multiline: bool = False


@dataclass(frozen=True, kw_only=True)
class NumberParameter(_ParameterBase):
    kind: ClassVar[str] = "number"
    default_value: int | float | None = None
    min: int | float | None = None
    max: int | float | None = None
    step: int | float | None = None
    unit: str = ""


@dataclass(frozen=True)
class SelectOption:
    value: str
    label: str
    description: str = ""


@dataclass(frozen=True, kw_only=True)
class SelectParameter(_ParameterBase):
    kind: ClassVar[str] = "select"
    options: tuple[SelectOption, ...] = ()
    default_value: str | None = None

    @property
    def values(self) -> list[str]:
        return [option.value for option in self.options]


@dataclass(frozen=True, kw_only=True)
class BooleanParameter(_ParameterBase):
    kind: ClassVar[str] = "boolean"
    default_value: bool | None = None


@dataclass(frozen=True, kw_only=True)
class SliderParameter(_ParameterBase):
    kind: ClassVar[str] = "slider"
    min: int | float
    max: int | float
    step: int | float | None = None
    default_value: int | float | None = None


@dataclass(frozen=True, kw_only=True)
class ImageParameter(_ParameterBase):
    kind: ClassVar[str] = "image"
    accepted_formats: tuple[str, ...] = ()
    max_size_mb: float | None = None


@dataclass(frozen=True, kw_only=True)
class FileParameter(_ParameterBase):
    kind: ClassVar[str] = "file"
    accepted_formats: tuple[str, ...] = ()
    max_size_mb: float | None = None
    multiple: bool = False


Parameter: TypeAlias = (
    TextParameter
    | NumberParameter
    | SelectParameter
    | BooleanParameter
    | SliderParameter
    | ImageParameter
    | FileParameter
)

_PARAMETER_KINDS: dict[str, type] = {
    cls.kind: cls
    for cls in (
        TextParameter,
        NumberParameter,
        SelectParameter,
        BooleanParameter,
        SliderParameter,
        ImageParameter,
        FileParameter,
    )
}


def parameter_from_dict(data: Mapping[str, Any]) -> Parameter:
    """
    Build a parameter variant from its catalog representation.

    The ``type`` key selects the variant; remaining keys map onto the
    variant's fields. Unknown keys are ignored.

    Raises:
        ValueError: If ``type`` is not a known parameter kind.
    """
    kind = data.get("type")
    cls = _PARAMETER_KINDS.get(kind)  # type: ignore[arg-type]
    if cls is None:
        raise ValueError(f"Unknown parameter type: {kind!r}")

    allowed = {f.name for f in fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in allowed}

    if cls is SelectParameter:
        kwargs["options"] = tuple(
            SelectOption(**o) if isinstance(o, Mapping) else SelectOption(str(o), str(o))
            for o in data.get("options", [])
        )
    if "accepted_formats" in kwargs:
        kwargs["accepted_formats"] = tuple(kwargs["accepted_formats"])

    return cls(**kwargs)


def parameter_default(param: Parameter) -> Any:
    """Declared default of a parameter, or None for kinds without one."""
    match param:
        case TextParameter() | NumberParameter() | SelectParameter():
            return param.default_value
        case BooleanParameter() | SliderParameter():
            return param.default_value
        case ImageParameter() | FileParameter():
            return None
        case _:
            assert_never(param)


# ============================================================================
# Cost configuration
# ============================================================================

@dataclass(frozen=True)
class CostConfig:
    """
    Cost of one execution, in credits (1,000,000 credits = 1 USD).

    Variable coefficients are optional; zero means "not charged".
    """
    base_cost: int = 0
    per_input_token: int = 0
    per_output_token: int = 0
    per_second: int = 0
    per_megapixel: int = 0

    @property
    def is_free(self) -> bool:
        return not any((
            self.base_cost,
            self.per_input_token,
            self.per_output_token,
            self.per_second,
            self.per_megapixel,
        ))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CostConfig:
        variable = data.get("variable_costs", {})
        values = {**variable, **{k: v for k, v in data.items() if k != "variable_costs"}}
        allowed = {f.name for f in fields(cls)}
        kwargs = {k: int(v) for k, v in values.items() if k in allowed}
        return cls(**kwargs)


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


def _exact(value: Any) -> Fraction | None:
    """Convert a numeric input to an exact fraction, or None if not numeric."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Fraction)):
        return None
    if isinstance(value, float):
        # Decimal representation, so 2.5 seconds is exactly 5/2
        return Fraction(str(value))
    return Fraction(value)


def prompt_text(input: Mapping[str, Any]) -> str | None:
    """Text whose length drives token-based cost estimates."""
    for key in ("prompt", "user_message"):
        value = input.get(key)
        if isinstance(value, str):
            return value
    return None


def estimate_cost_from_config(cost: CostConfig, input: Mapping[str, Any]) -> int:
    """
    Estimate the credits one execution will cost.

    Sums the base cost and every configured variable contribution using
    exact rational arithmetic, then rounds up to a whole credit:

    - per_input_token * ceil(len(prompt) / 4)
    - per_second * duration
    - per_megapixel * width * height / 1,000,000
    """
    total = Fraction(cost.base_cost)

    if cost.per_input_token:
        text = prompt_text(input)
        if text is not None:
            total += cost.per_input_token * estimate_tokens(text)

    if cost.per_second:
        duration = _exact(input.get("duration"))
        if duration is not None:
            total += cost.per_second * duration

    if cost.per_megapixel:
        width = _exact(input.get("width"))
        height = _exact(input.get("height"))
        if width and height:
            total += cost.per_megapixel * width * height / 1_000_000

    return math.ceil(total)


# ============================================================================
# NodeConfig
# ============================================================================

@dataclass
class NodeConfig:
    """
    Complete declaration of a node type.

    NodeConfigs are templates that define a node's handles, parameters,
    defaults and cost. Nodes in a graph reference a NodeConfig by ``type``.
    Local nodes (no ``provider_id``) are evaluated by the engine itself.
    """
    type: str
    name: str
    category: NodeCategory
    description: str = ""

    inputs: list[HandleDefinition] = field(default_factory=list)
    outputs: list[HandleDefinition] = field(default_factory=list)
    parameters: list[Parameter] = field(default_factory=list)
    default_values: dict[str, Any] = field(default_factory=dict)
    cost_config: CostConfig = field(default_factory=CostConfig)

    provider_id: str | None = None
    fallback_providers: list[str] = field(default_factory=list)

    # UI hints
    icon: str = ""
    color: str = "#78716C"
    version: str = "1.0.0"
    docs_url: str | None = None
    tags: list[str] = field(default_factory=list)

    @property
    def is_local(self) -> bool:
        return self.provider_id is None

    @property
    def provider_chain(self) -> list[str]:
        if self.provider_id is None:
            return []
        return [self.provider_id, *self.fallback_providers]

    def get_default_parameters(self) -> dict[str, Any]:
        """Declared parameter defaults overlaid with ``default_values``."""
        defaults: dict[str, Any] = {}
        for param in self.parameters:
            value = parameter_default(param)
            if value is not None:
                defaults[param.id] = value
        defaults.update(self.default_values)
        return defaults

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NodeConfig:
        """Build a config from catalog JSON (snake_case keys)."""
        return cls(
            type=data["type"],
            name=data.get("name", data["type"]),
            category=NodeCategory(data.get("category", NodeCategory.UTILITY.value)),
            description=data.get("description", ""),
            inputs=[HandleDefinition.from_dict(h) for h in data.get("inputs", [])],
            outputs=[HandleDefinition.from_dict(h) for h in data.get("outputs", [])],
            parameters=[parameter_from_dict(p) for p in data.get("parameters", [])],
            default_values=dict(data.get("default_values", {})),
            cost_config=CostConfig.from_dict(data.get("cost_config", {})),
            provider_id=data.get("provider_id"),
            fallback_providers=list(data.get("fallback_providers", [])),
            icon=data.get("icon", ""),
            color=data.get("color", "#78716C"),
            version=data.get("version", "1.0.0"),
            docs_url=data.get("docs_url"),
            tags=list(data.get("tags", [])),
        )


# ============================================================================
# Schema generation
# ============================================================================

def _check_url(value: str) -> str:
    if not is_url_like(value):
        raise ValueError("must be an http(s) or data URL")
    return value


UrlStr = Annotated[str, AfterValidator(_check_url)]
Number: TypeAlias = int | float


def _bounded(minimum: int | float | None, maximum: int | float | None) -> Any:
    """Number type with inclusive bounds; ints stay ints."""
    def check(value: int | float) -> int | float:
        if minimum is not None and value < minimum:
            raise ValueError(f"must be greater than or equal to {minimum}")
        if maximum is not None and value > maximum:
            raise ValueError(f"must be less than or equal to {maximum}")
        return value

    if minimum is None and maximum is None:
        return Number
    return Annotated[Number, AfterValidator(check)]

_SCHEMA_CONFIG = ConfigDict(extra="allow", protected_namespaces=())


def _field_name(key: str) -> tuple[str, str | None]:
    """Python-safe field name for ``key`` plus the alias to use, if any."""
    if (
        key.isidentifier()
        and not keyword.iskeyword(key)
        and not key.startswith("_")
        and not hasattr(BaseModel, key)
    ):
        return key, None
    safe = "f_" + "".join(c if c.isalnum() else "_" for c in key)
    return safe, key


def _parameter_field(param: Parameter) -> tuple[Any, dict[str, Any]]:
    """Annotation and Field() constraints for one parameter."""
    match param:
        case TextParameter():
            return str, {"min_length": param.min_length, "max_length": param.max_length}
        case NumberParameter():
            return _bounded(param.min, param.max), {}
        case SelectParameter():
            if not param.options:
                return str, {}
            return Literal[tuple(param.values)], {}
        case BooleanParameter():
            return bool, {}
        case SliderParameter():
            return _bounded(param.min, param.max), {}
        case ImageParameter():
            return UrlStr, {}
        case FileParameter():
            return (list[UrlStr] if param.multiple else UrlStr), {}
        case _:
            assert_never(param)


def _build_field(
    annotation: Any,
    constraints: dict[str, Any],
    required: bool,
    default: Any,
    description: str,
    alias: str | None,
) -> tuple[Any, Any]:
    kwargs = {k: v for k, v in constraints.items() if v is not None}
    if description:
        kwargs["description"] = description
    if alias:
        kwargs["alias"] = alias

    if default is not None:
        return annotation, Field(default, **kwargs)
    if required:
        return annotation, Field(..., **kwargs)
    return Optional[annotation], Field(None, **kwargs)


def _handle_annotation(handle: HandleDefinition) -> tuple[Any, dict[str, Any]]:
    constraints: dict[str, Any] = {}
    match handle.data_type:
        case HandleDataType.TEXT:
            annotation: Any = str
            if handle.required and not handle.multiple:
                constraints["min_length"] = 1
        case HandleDataType.IMAGE | HandleDataType.VIDEO | HandleDataType.AUDIO | HandleDataType.FILE:
            annotation = UrlStr
        case HandleDataType.NUMBER:
            annotation = Number
        case HandleDataType.BOOLEAN:
            annotation = bool
        case HandleDataType.JSON:
            annotation = dict[str, Any]
        case _:
            assert_never(handle.data_type)

    if handle.multiple:
        annotation = list[annotation]
        if handle.required:
            constraints["min_length"] = 1
    return annotation, constraints


def _parameter_fields(parameters: list[Parameter]) -> dict[str, Any]:
    field_defs: dict[str, Any] = {}
    for param in parameters:
        annotation, constraints = _parameter_field(param)
        name, alias = _field_name(param.id)
        field_defs[name] = _build_field(
            annotation,
            constraints,
            param.required,
            parameter_default(param),
            param.description,
            alias,
        )
    return field_defs


def _handle_fields(handles: list[HandleDefinition], skip: set[str]) -> dict[str, Any]:
    field_defs: dict[str, Any] = {}
    for handle in handles:
        if handle.key in skip:
            continue
        annotation, constraints = _handle_annotation(handle)
        name, alias = _field_name(handle.key)
        field_defs[name] = _build_field(
            annotation,
            constraints,
            handle.required,
            handle.default_value,
            handle.description,
            alias,
        )
    return field_defs


def generate_input_schema(
    parameters: list[Parameter],
    model_name: str = "NodeInput",
) -> type[BaseModel]:
    """
    Generate a pydantic model from parameter declarations.

    Per parameter kind:
    - text: str, optional min/max length
    - number: int or float, optional min/max
    - select: one of the declared option values
    - boolean: bool
    - slider: int or float bounded by min/max
    - image: URL-shaped string
    - file: URL-shaped string, or a list of them when ``multiple``

    Declared defaults apply to missing keys. Parameters that are not
    required and have no default may be omitted. Unknown keys pass through.
    """
    return create_model(model_name, __config__=_SCHEMA_CONFIG, **_parameter_fields(parameters))


def generate_handle_schema(
    handles: list[HandleDefinition],
    model_name: str = "NodeHandles",
) -> type[BaseModel]:
    """
    Generate a pydantic model for values arriving through handles.

    Keyed by each handle's ``key``. Media types must be URL-shaped,
    ``multiple`` handles take a list, required text handles must be
    non-empty.
    """
    return create_model(model_name, __config__=_SCHEMA_CONFIG, **_handle_fields(handles, set()))


def generate_node_schema(config: NodeConfig) -> type[BaseModel]:
    """Combined validator for a node's parameters and input handles."""
    field_defs = _parameter_fields(config.parameters)
    # A parameter exposed as a connector keeps its parameter rules
    field_defs.update(_handle_fields(config.inputs, skip={p.id for p in config.parameters}))
    model_name = "".join(part.capitalize() for part in config.type.replace("-", " ").split())
    return create_model(f"{model_name}Input", __config__=_SCHEMA_CONFIG, **field_defs)


def format_validation_error(error: PydanticValidationError) -> str:
    """Flatten pydantic errors to "path: message; path: message"."""
    return "; ".join(
        f"{'.'.join(str(part) for part in issue['loc'])}: {issue['msg']}"
        for issue in error.errors()
    )


# ============================================================================
# NodeRegistry
# ============================================================================

@dataclass
class InputValidation:
    """Outcome of validating a node input."""
    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None


class NodeRegistry:
    """
    Registry of available node types.

    Construct one per process (or per test) and pass it to the components
    that need it. Maintains a category index and a prefix search index
    alongside the configs.
    """

    def __init__(self, configs: list[NodeConfig] | None = None):
        self._types: dict[str, NodeConfig] = {}
        self._category_index: dict[NodeCategory, list[str]] = {}
        self._search_index: dict[str, set[str]] = {}
        self._schemas: dict[str, type[BaseModel]] = {}
        for config in configs or []:
            self.register(config)

    # --- Registration ---

    def register(self, config: NodeConfig) -> None:
        """Register a node type. Re-registering overwrites (last writer wins)."""
        if config.type in self._types:
            logger.warning(f'Node type "{config.type}" is already registered. Overwriting.')
            self._drop_from_indexes(config.type)

        self._types[config.type] = config
        self._category_index.setdefault(config.category, []).append(config.type)
        self._index_for_search(config.type, [
            config.name.lower(),
            config.description.lower(),
            config.category.value,
            *(tag.lower() for tag in config.tags),
        ])

    def register_from_dict(self, data: Mapping[str, Any]) -> NodeConfig:
        config = NodeConfig.from_dict(data)
        self.register(config)
        return config

    def load_catalog(self, path: Path) -> list[NodeConfig]:
        """
        Register node types from a JSON catalog.

        The file holds either a list of configs or ``{"nodes": [...]}``.

        Raises:
            FileNotFoundError: If the catalog doesn't exist
            ValueError: If an entry is malformed
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        entries = data.get("nodes", []) if isinstance(data, dict) else data
        loaded = []
        for entry in entries:
            try:
                loaded.append(self.register_from_dict(entry))
            except (KeyError, TypeError) as e:
                raise ValueError(f"Invalid node config in {path}: {e}") from e

        logger.info("Loaded %d node types from %s", len(loaded), path)
        return loaded

    def unregister(self, type: str) -> NodeConfig | None:
        """Unregister a node type."""
        if type not in self._types:
            return None
        self._drop_from_indexes(type)
        return self._types.pop(type)

    def clear(self) -> None:
        """Remove all registered types."""
        self._types.clear()
        self._category_index.clear()
        self._search_index.clear()
        self._schemas.clear()

    def _index_for_search(self, node_type: str, terms: list[str]) -> None:
        for term in terms:
            for word in term.split():
                if len(word) < 2:
                    continue
                self._search_index.setdefault(word, set()).add(node_type)

    def _drop_from_indexes(self, node_type: str) -> None:
        config = self._types[node_type]
        members = self._category_index.get(config.category, [])
        if node_type in members:
            members.remove(node_type)
        if not members:
            self._category_index.pop(config.category, None)

        for term in list(self._search_index):
            types = self._search_index[term]
            types.discard(node_type)
            if not types:
                del self._search_index[term]

        self._schemas.pop(node_type, None)

    # --- Lookup ---

    def get(self, type: str) -> NodeConfig | None:
        """Get a node config by type."""
        return self._types.get(type)

    def get_all(self) -> list[NodeConfig]:
        """Get all registered node configs."""
        return list(self._types.values())

    def get_by_category(self, category: NodeCategory | str) -> list[NodeConfig]:
        """Get all node configs in a category."""
        category = NodeCategory(category)
        return [self._types[t] for t in self._category_index.get(category, [])]

    def get_category_counts(self) -> dict[NodeCategory, int]:
        return {
            category: len(types)
            for category, types in self._category_index.items()
            if types
        }

    def search(self, query: str) -> list[NodeConfig]:
        """
        Search node types by prefix.

        A node matches when any of its indexed words starts with any query
        word (words shorter than two characters are ignored). An empty
        query returns every node.
        """
        if not query.strip():
            return self.get_all()

        query_words = [w for w in query.lower().split() if len(w) >= 2]
        matched: set[str] = set()
        for word in query_words:
            for term, types in self._search_index.items():
                if term.startswith(word):
                    matched.update(types)

        return [config for t, config in self._types.items() if t in matched]

    def has(self, type: str) -> bool:
        return type in self._types

    def get_default_values(self, type: str) -> dict[str, Any] | None:
        """Copy of the type's default values, or None if not registered."""
        config = self._types.get(type)
        if config is None:
            return None
        return config.get_default_parameters()

    # --- Validation ---

    def get_input_schema(self, type: str) -> type[BaseModel] | None:
        """Generated validator for a node type's parameters and input handles."""
        config = self._types.get(type)
        if config is None:
            return None
        schema = self._schemas.get(type)
        if schema is None:
            schema = generate_node_schema(config)
            self._schemas[type] = schema
        return schema

    def validate_input(self, type: str, input: Mapping[str, Any]) -> InputValidation:
        """
        Validate input against a node type's generated schema.

        Unknown types produce a failed result rather than an exception.
        """
        schema = self.get_input_schema(type)
        if schema is None:
            return InputValidation(success=False, error=f'Node type "{type}" not found')

        try:
            model = schema.model_validate(dict(input))
        except PydanticValidationError as e:
            return InputValidation(success=False, error=format_validation_error(e))

        return InputValidation(success=True, data=model.model_dump(by_alias=True))

    # --- Cost ---

    def estimate_cost(self, type: str, input: Mapping[str, Any]) -> int | None:
        """
        Estimate the credits one execution of ``type`` will cost.

        Returns None if the type is not registered.
        """
        config = self._types.get(type)
        if config is None:
            return None
        return estimate_cost_from_config(config.cost_config, input)

    def __len__(self) -> int:
        return len(self._types)

    def __contains__(self, type: str) -> bool:
        return type in self._types
