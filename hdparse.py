"""HeaderDoc front-end for C/C++ binding generators.

Turns the XML emitted by headerdoc2html into a validated, typed IR of each
header: functions, typedefs, structs, enums and defines, with type, array and
generic-parameter details recovered from the declaration markup.

Usage:
    python hdparse.py path/to/headers --json ir.json
"""

import argparse
import json
import re
import shutil
import subprocess
import sys
import xml.etree.ElementTree as ET
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from pathlib import Path


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class ParseConfig:
    sources: tuple[Path, ...]
    headerdoc_config: Path | None
    keep_going: bool
    json_output: Path | None


VALID_ERROR_CODES = {
    "PATH_NOT_FOUND",
    "NO_HEADERS",
    "HEADERDOC_NOT_INSTALLED",
    "DUPLICATE_HEADER",
}
HEADERDOC_COMMAND = "headerdoc2html"
HEADERDOC_FLAGS = "-XPOLltjbq"
SOURCE_SUFFIXES = (".h", ".xml")


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Parse headerdoc2html output into a typed header IR"
    )

    parser.add_argument("sources", type=Path, nargs="+")
    parser.add_argument("--headerdoc-config", type=Path, default=None)
    parser.add_argument("--keep-going", action="store_true", default=False)
    parser.add_argument("--json", dest="json_output", type=Path, default=None)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> ParseConfig:
    sources = tuple(
        validate_path_exists(
            path,
            "sources",
            "Pass a header (.h), a headerdoc2html XML file, or a directory of them.",
        )
        for path in args.sources
    )
    headerdoc_config = None
    if args.headerdoc_config is not None:
        headerdoc_config = validate_path_exists(
            args.headerdoc_config, "--headerdoc-config"
        )
    return ParseConfig(
        sources=sources,
        headerdoc_config=headerdoc_config,
        keep_going=bool(args.keep_going),
        json_output=args.json_output,
    )


def build_config(argv: list[str] | None = None) -> ParseConfig:
    return validate_config(parse_args(argv))


# ===--- Errors ---=== #

RULE_DOCS_URL = "https://github.com/splashkit/splashkit-translator#rule-{number}"


class ParseError(Exception):
    """A declaration could not be turned into IR.

    `signature` is attached by the declaration extractor once the failing
    declaration is known, so the rendered message points at the source.
    """

    def __init__(self, message: str, signature: str | None = None):
        if not message.endswith((".", "?")):
            message += "."
        super().__init__(message)
        self.message = message
        self.signature = signature

    def __str__(self) -> str:
        if self.signature:
            return (
                f"HeaderDoc parser violation on `{self.signature}`:\n\t{self.message}"
            )
        return self.message


class RuleViolationError(ParseError):
    def __init__(self, message: str, rule_no: int):
        if not message.endswith((".", "?")):
            message += "."
        message += (
            f"\n\tSee {RULE_DOCS_URL.format(number=rule_no)} for more information."
        )
        super().__init__(message)
        self.rule_no = rule_no


# ===--- IR data classes ---=== #


@dataclass(frozen=True)
class TypeDescriptor:
    type_name: str
    is_const: bool = False
    is_pointer: bool = False
    is_reference: bool = False
    is_array: bool = False
    array_dimension_sizes: tuple[int, ...] = ()
    is_vector: bool = False
    type_parameter: str | None = None

    @property
    def is_void(self) -> bool:
        return (
            self.type_name == "void" and not self.is_pointer and not self.is_reference
        )


@dataclass(frozen=True)
class ParameterInfo:
    name: str
    type: TypeDescriptor
    description: str = ""


@dataclass(frozen=True)
class ReturnInfo:
    type: TypeDescriptor
    description: str = ""


@dataclass(frozen=True)
class FunctionDecl:
    signature: str
    name: str
    description: str
    brief: str
    returns: ReturnInfo | None
    parameters: dict[str, ParameterInfo]
    attributes: dict[str, str]
    method_name: str | None = None
    unique_global_name: str | None = None
    unique_method_name: str | None = None


@dataclass(frozen=True)
class AliasTypedef:
    signature: str
    name: str
    description: str
    brief: str
    attributes: dict[str, str]
    aliased_type: str | None
    aliased_identifier: str
    is_pointer: bool
    new_identifier: str
    is_function_pointer: bool = field(default=False, init=False)


@dataclass(frozen=True)
class FunctionPointerTypedef:
    signature: str
    name: str
    description: str
    brief: str
    attributes: dict[str, str]
    returns: ReturnInfo
    parameters: dict[str, ParameterInfo]
    is_function_pointer: bool = field(default=True, init=False)


TypedefDecl = AliasTypedef | FunctionPointerTypedef


@dataclass(frozen=True)
class StructDecl:
    signature: str
    name: str
    description: str
    brief: str
    fields: dict[str, ParameterInfo]
    attributes: dict[str, str]


@dataclass(frozen=True)
class EnumConstant:
    name: str
    description: str = ""
    number: int | None = None


@dataclass(frozen=True)
class EnumDecl:
    signature: str
    name: str
    description: str
    brief: str
    constants: dict[str, EnumConstant]
    attributes: dict[str, str]


@dataclass(frozen=True)
class DefineDecl:
    name: str
    description: str
    brief: str
    definition: str


@dataclass(frozen=True)
class HeaderDocument:
    """IR for one header file.

    Built once by parse_header_document and handed to the code generators
    unchanged. Declarations keep the order of the HeaderDoc output.

    Attributes:
        name: Header file name without the `.h` extension.
        brief: Text of the header's `@abstract`.
        description: Text of the header's discussion block.
        attributes: Header-level `@attribute` values (minus `Author`), already
            merged into every declaration's attributes.
    """

    name: str
    brief: str
    description: str
    attributes: dict[str, str] = field(default_factory=dict)
    functions: tuple[FunctionDecl, ...] = ()
    typedefs: tuple[TypedefDecl, ...] = ()
    structs: tuple[StructDecl, ...] = ()
    enums: tuple[EnumDecl, ...] = ()
    defines: tuple[DefineDecl, ...] = ()


# ===--- Markup helpers ---=== #


def node_text(xml: ET.Element, path: str) -> str:
    """Concatenated text of every node matching path, descendants included."""
    return "".join("".join(node.itertext()) for node in xml.findall(path)).strip()


def declaration_nodes(xml: ET.Element) -> list[ET.Element]:
    declaration = xml.find("declaration")
    if declaration is None:
        return []
    return list(declaration)


def parse_signature(xml: ET.Element) -> str:
    declaration = xml.find("declaration")
    if declaration is None:
        return ""
    raw = "".join(declaration.itertext())
    return "".join(line.strip() for line in raw.split("\n"))


def parse_ppl(xml: ET.Element) -> dict[str, str]:
    """Read the parsed parameter list: parameter name -> raw type string."""
    ppl = {}
    for p in xml.findall("parsedparameterlist/parsedparameter"):
        ppl[node_text(p, "name")] = node_text(p, "type")
    return ppl


_INT_RE = re.compile(r"^-?(?:0[xX][0-9a-fA-F]+|\d+)$")


def _is_c_int(s: str) -> bool:
    return bool(_INT_RE.match(s.strip()))


def _parse_c_int(s: str) -> int:
    s = s.strip()
    if s.startswith("0x") or s.startswith("0X"):
        return int(s, 16)
    if s.startswith("-"):
        return -_parse_c_int(s[1:])
    return int(s)


# ===--- Array dimensions ---=== #

MAX_ARRAY_DIMENSIONS = 2
DECLARATOR_TAGS = ("declaration_type", "declaration_param", "declaration_var")


def _dimension_limit_check(dims: tuple[int, ...], name: str) -> tuple[int, ...]:
    if len(dims) > MAX_ARRAY_DIMENSIONS:
        raise ParseError(
            "Only 1 and 2 dimensional arrays are supported at this time "
            f"(got a {len(dims)}D array for `{name}')."
        )
    return dims


def _declarator_index(nodes: list[ET.Element], name: str) -> int | None:
    for i, node in enumerate(nodes):
        if node.tag in DECLARATOR_TAGS and (node.text or "").strip() == name:
            return i
    return None


def parse_array_dimensions(xml: ET.Element, name: str) -> tuple[int, ...]:
    """Sizes of each array dimension of `name`, outermost first.

    HeaderDoc renders `float m[3][2]` as sibling nodes after the declarator,
    so the sizes are the integer siblings that directly follow it.
    """
    nodes = declaration_nodes(xml)
    start = _declarator_index(nodes, name)
    if start is None:
        return ()
    dims = []
    for node in nodes[start + 1 :]:
        text = node.text or ""
        if not _is_c_int(text):
            break
        dims.append(_parse_c_int(text))
    return _dimension_limit_check(tuple(dims), name)


# ===--- Type descriptors ---=== #

VECTOR_TYPE = "vector"

_TYPE_RE = re.compile(
    r"(?:(const)\s+)?((?:unsigned\s+)?\w+)\s*(?:(&)|(\*)|((?:\s*\[\s*\d+\s*\])+))?"
)
_ARRAY_SIZE_RE = re.compile(r"\[\s*(\d+)\s*\]")


def _match_type(raw_type: str) -> re.Match:
    match = _TYPE_RE.match(raw_type.strip())
    if match is None:
        raise ParseError(f"Unable to parse type `{raw_type}`")
    return match


def _template_token(xml: ET.Element, name: str | None) -> str:
    nodes = declaration_nodes(xml)
    templates = [
        i for i, node in enumerate(nodes) if node.tag == "declaration_template"
    ]
    if not templates:
        return ""
    chosen = templates[0]
    if name is not None:
        anchor = _declarator_index(nodes, name)
        if anchor is not None:
            before = [i for i in templates if i < anchor]
            if before:
                chosen = before[-1]
    return "".join(nodes[chosen].itertext()).strip()


def parse_vector(xml: ET.Element, type_name: str, name: str | None = None):
    """Return (type_parameter, is_vector) for a possibly generic type."""
    if type_name != VECTOR_TYPE:
        return None, False
    token = _template_token(xml, name)
    if not token:
        raise ParseError(f"Missing template parameter for `{VECTOR_TYPE}`")
    type_parameter = _match_type(token).group(2)
    if type_parameter == VECTOR_TYPE:
        raise ParseError("Vectors of vectors not yet supported!")
    return type_parameter, True


def parse_parameter_type(xml: ET.Element, name: str, raw_type: str) -> TypeDescriptor:
    match = _match_type(raw_type)
    const, type_name, ref, ptr, brackets = match.groups()
    type_parameter, is_vector = parse_vector(xml, type_name, name)

    dims = parse_array_dimensions(xml, name)
    if not dims and brackets:
        dims = _dimension_limit_check(
            tuple(int(size) for size in _ARRAY_SIZE_RE.findall(brackets)), name
        )
    return TypeDescriptor(
        type_name=type_name,
        is_const=const is not None,
        is_pointer=ptr is not None,
        is_reference=ref is not None,
        is_array=bool(dims),
        array_dimension_sizes=dims,
        is_vector=is_vector,
        type_parameter=type_parameter,
    )


def parse_return_type(
    xml: ET.Element, raw_return_type: str | None = None
) -> ReturnInfo | None:
    """Parse a function (pointer) return type.

    Functions read it from `returntype`; function-pointer typedefs pass the
    raw text in. Returns None when there is nothing to parse.
    """
    from_returntype = raw_return_type is None
    if from_returntype:
        if xml.find("returntype") is None:
            return None
        raw_return_type = node_text(xml, "returntype")
    match = _match_type(raw_return_type)
    const, type_name, ref, ptr, _ = match.groups()
    type_parameter, is_vector = parse_vector(xml, type_name)
    descriptor = TypeDescriptor(
        type_name=type_name,
        is_const=const is not None,
        is_pointer=ptr is not None,
        is_reference=ref is not None,
        is_vector=is_vector,
        type_parameter=type_parameter,
    )
    description = node_text(xml, "result")
    if from_returntype and descriptor.is_void and description:
        raise ParseError("Pure procedures should not have an `@returns` labelled.")
    return ReturnInfo(type=descriptor, description=description)


# ===--- Unique names ---=== #


class UniqueNameRegistry:
    """Suffix-generated names already handed out within one header."""

    def __init__(self):
        self.global_names: set[str] = set()
        self.method_names: set[str] = set()

    def register(
        self,
        sanitized_name: str,
        method_name: str | None = None,
        suffix: str | None = None,
    ) -> tuple[str | None, str | None]:
        if suffix is None:
            return None, None

        unique_global_name = f"{sanitized_name}_{suffix}"
        if unique_global_name in self.global_names:
            raise RuleViolationError(
                "Generated unique name (function name + suffix) is not unique: "
                f"`{sanitized_name}` + `{suffix}` = `{unique_global_name}`",
                14,
            )

        unique_method_name = None
        if method_name is not None:
            unique_method_name = f"{method_name}_{suffix}"
            if unique_method_name in self.method_names:
                raise RuleViolationError(
                    "Generated unique method name (method + suffix) is not unique: "
                    f"`{method_name}` + `{suffix}` = `{unique_method_name}`",
                    15,
                )

        # Nothing is recorded for a declaration that fails either check.
        self.global_names.add(unique_global_name)
        if unique_method_name is not None:
            self.method_names.add(unique_method_name)

        return unique_global_name, unique_method_name


# ===--- Attribute rules ---=== #


@dataclass(frozen=True)
class RuleContext:
    """Everything the attribute rules may look at for one declaration.

    `parameters` and `returns` are None for declarations that have no
    parameter list or return type; rules needing them are then skipped.
    """

    attributes: dict[str, str]
    parameters: dict[str, str] | None = None
    returns: TypeDescriptor | None = None
    is_pointer_alias: bool = False


def _found(attrs: dict[str, str], keys: tuple[str, ...]) -> list[str]:
    return [key for key in keys if key in attrs]


def _quoted(keys: list[str]) -> str:
    return "`" + "', `".join(keys) + "'"


def _rule_class_required(ctx: RuleContext) -> str | None:
    found = _found(ctx.attributes, ("self", "destructor", "constructor"))
    if found and "class" not in ctx.attributes:
        return f"Attribute(s) {_quoted(found)} found, but `class' attribute is missing?"
    return None


def _rule_class_or_static_required(ctx: RuleContext) -> str | None:
    found = _found(ctx.attributes, ("method", "getter", "setter"))
    if found and not _found(ctx.attributes, ("class", "static")):
        return (
            f"Attribute(s) {_quoted(found)} must also specify either "
            "`class` or `static` attributes (or both)."
        )
    return None


def _rule_constructor_destructor_conflict(ctx: RuleContext) -> str | None:
    if "destructor" in ctx.attributes and "constructor" in ctx.attributes:
        return "Attributes `destructor` and `constructor` conflict."
    return None


def _rule_lifecycle_vs_accessor(ctx: RuleContext) -> str | None:
    lifecycle = _found(ctx.attributes, ("constructor", "destructor"))
    accessors = _found(ctx.attributes, ("getter", "setter"))
    if lifecycle and accessors and "static" not in ctx.attributes:
        return (
            f"Attribute(s) {_quoted(lifecycle)} violate {_quoted(accessors)}. "
            "Choose one or the other."
        )
    return None


def _rule_lifecycle_vs_method(ctx: RuleContext) -> str | None:
    lifecycle = _found(ctx.attributes, ("constructor", "destructor"))
    if lifecycle and "method" in ctx.attributes and "static" not in ctx.attributes:
        return (
            f"Attribute(s) {_quoted(lifecycle)} violate `method`. Choose one or "
            "the other or mark with `static` to indicate that this is a static "
            "method."
        )
    return None


def _rule_accessor_vs_method(ctx: RuleContext) -> str | None:
    accessors = _found(ctx.attributes, ("getter", "setter"))
    if accessors and "method" in ctx.attributes and "static" not in ctx.attributes:
        return (
            f"Attribute(s) {_quoted(accessors)} violate `method`. Choose one or "
            "the other or mark with `static` to indicate that this is a static "
            "method."
        )
    return None


def _rule_self_is_parameter(ctx: RuleContext) -> str | None:
    self_value = ctx.attributes.get("self")
    if self_value is None or ctx.parameters is None:
        return None
    if self_value not in ctx.parameters:
        return "Attribute `self` must be set to the name of a parameter."
    return None


def _rule_self_matches_class(ctx: RuleContext) -> str | None:
    self_value = ctx.attributes.get("self")
    if self_value is None or ctx.parameters is None:
        return None
    class_type = ctx.attributes.get("class")
    self_type = ctx.parameters.get(self_value)
    if class_type != self_type:
        return (
            "Attribute `self` must list a parameter whose type matches the "
            f"`class` value (`class` is `{class_type}` but `self` is set to "
            f"parameter (`{self_value}`) with type `{self_type}`)."
        )
    return None


def _rule_getter_returns_value(ctx: RuleContext) -> str | None:
    if "getter" in ctx.attributes and ctx.returns is not None and ctx.returns.is_void:
        return (
            "Function marked with `getter` must return something (i.e., it "
            "should not return `void`)."
        )
    return None


def _rule_class_getters_take_self(ctx: RuleContext) -> str | None:
    attrs = ctx.attributes
    if "class" not in attrs or "getters" not in attrs or ctx.parameters is None:
        return None
    if "self" in attrs and len(ctx.parameters) != 1:
        return (
            "A `getter` specified with `class` must have exactly one parameter "
            "that is the parameter specified by the attribute `self`."
        )
    return None


def _rule_class_setters_take_self(ctx: RuleContext) -> str | None:
    attrs = ctx.attributes
    if "class" not in attrs or "setters" not in attrs or ctx.parameters is None:
        return None
    first = next(iter(ctx.parameters), None)
    if len(ctx.parameters) != 2 or attrs.get("self") != first:
        return (
            "A `setter` specified with `class` must have exactly two parameters "
            "of which the first parameter is the parameter specified by the "
            "attribute `self`."
        )
    return None


def _rule_getters_take_parameters(ctx: RuleContext) -> str | None:
    attrs = ctx.attributes
    if "class" not in attrs or "getters" not in attrs or ctx.parameters is None:
        return None
    if ctx.parameters:
        return "A `getter` specified with `class` must have no parameters."
    return None


def _rule_setters_take_two(ctx: RuleContext) -> str | None:
    attrs = ctx.attributes
    if "class" not in attrs or "setters" not in attrs or ctx.parameters is None:
        return None
    if len(ctx.parameters) != 2:
        return "A `setter` specified with `class` must have exactly two parameters."
    return None


def _rule_pointer_alias_has_class(ctx: RuleContext) -> str | None:
    if ctx.is_pointer_alias and "class" not in ctx.attributes:
        return "Typealiases to pointers must have a class attribute set."
    return None


# Rule numbers are referenced by the published documentation; 14 and 15 are
# raised by UniqueNameRegistry.
ATTRIBUTE_RULES: tuple[tuple[int, Callable[[RuleContext], str | None]], ...] = (
    (1, _rule_class_required),
    (2, _rule_class_or_static_required),
    (3, _rule_constructor_destructor_conflict),
    (4, _rule_lifecycle_vs_accessor),
    (5, _rule_lifecycle_vs_method),
    (6, _rule_accessor_vs_method),
    (7, _rule_self_is_parameter),
    (8, _rule_self_matches_class),
    (9, _rule_getter_returns_value),
    (10, _rule_class_getters_take_self),
    (11, _rule_class_setters_take_self),
    (12, _rule_getters_take_parameters),
    (13, _rule_setters_take_two),
    (16, _rule_pointer_alias_has_class),
)


def first_rule_violation(ctx: RuleContext) -> RuleViolationError | None:
    for rule_no, check in ATTRIBUTE_RULES:
        message = check(ctx)
        if message is not None:
            return RuleViolationError(message, rule_no)
    return None


def validate_attributes(ctx: RuleContext) -> dict[str, str]:
    violation = first_rule_violation(ctx)
    if violation is not None:
        raise violation
    return ctx.attributes


def parse_attributes(xml: ET.Element, header_attrs: dict[str, str]) -> dict[str, str]:
    """Merge header-level attributes with the declaration's own `@attribute`s."""
    attrs = dict(header_attrs)
    for a in xml.findall("attributes/attribute"):
        attrs[node_text(a, "name")] = node_text(a, "value")
    return attrs


# ===--- Declaration extractors ---=== #


def _described_entries(
    xml: ET.Element, path: str, ppl: dict[str, str], kind: str, where: str
) -> dict[str, str]:
    """Map documented entry names to their descriptions, checked against the ppl."""
    documented = {}
    for entry in xml.findall(path):
        name = node_text(entry, "name")
        if name not in ppl:
            raise ParseError(
                f"Mismatched headerdoc {kind} '{name}'. Check it exists in {where}."
            )
        documented[name] = node_text(entry, "desc")
    return documented


def parse_parameters(
    xml: ET.Element, ppl: dict[str, str], path: str = "parameters/parameter"
) -> dict[str, ParameterInfo]:
    """Resolve every parsed parameter, with docs where `@param` provides them."""
    documented = _described_entries(xml, path, ppl, "@param", "the signature")
    return {
        name: ParameterInfo(
            name=name,
            type=parse_parameter_type(xml, name, raw_type),
            description=documented.get(name, ""),
        )
        for name, raw_type in ppl.items()
    }


_OVERLOAD_MARKER_RE = re.compile(r"\bconst\b|\(|,\s|\)|&|\*")


def sanitize_function_name(raw_name: str) -> str:
    """Strip HeaderDoc's overload disambiguation, e.g. `draw(int, const float)`."""
    match = _OVERLOAD_MARKER_RE.search(raw_name)
    if match is None:
        return raw_name.strip()
    return raw_name[: match.start()].strip()


def _with_signature(signature: str, err: ParseError) -> ParseError:
    err.signature = signature
    return err


def parse_function(
    xml: ET.Element, header_attrs: dict[str, str], registry: UniqueNameRegistry
) -> FunctionDecl:
    signature = parse_signature(xml)
    try:
        ppl = parse_ppl(xml)
        returns = parse_return_type(xml)
        attributes = validate_attributes(
            RuleContext(
                attributes=parse_attributes(xml, header_attrs),
                parameters=ppl,
                returns=returns.type if returns is not None else None,
            )
        )
        parameters = parse_parameters(xml, ppl)
        name = sanitize_function_name(node_text(xml, "name"))
        method_name = attributes.get("method")
        unique_global_name, unique_method_name = registry.register(
            name, method_name, attributes.get("suffix")
        )
    except ParseError as err:
        raise _with_signature(signature, err)
    return FunctionDecl(
        signature=signature,
        name=name,
        description=node_text(xml, "desc"),
        brief=node_text(xml, "abstract"),
        returns=returns,
        parameters=parameters,
        attributes=attributes,
        method_name=method_name,
        unique_global_name=unique_global_name,
        unique_method_name=unique_method_name,
    )


def typedef_is_function_pointer(xml: ET.Element) -> bool:
    return xml.get("type") == "funcPtr"


_SIMPLE_TYPEDEF_RE = re.compile(
    r"typedef\s+(?:(\w+)\s+)?(\w+)\s*(\*)?\s*\b(\w+)\s*;$"
)


def parse_simple_typedef(signature: str) -> tuple[str | None, str, bool, str]:
    """Split `typedef [aliased_type] aliased_identifier [*]new_identifier;`."""
    match = _SIMPLE_TYPEDEF_RE.search(signature)
    if match is None:
        raise ParseError(f"Unable to parse typedef `{signature}`")
    aliased_type, aliased_identifier, ptr, new_identifier = match.groups()
    return aliased_type, aliased_identifier, ptr is not None, new_identifier


def parse_typedef(xml: ET.Element, header_attrs: dict[str, str]) -> TypedefDecl:
    signature = parse_signature(xml)
    name = node_text(xml, "name")
    description = node_text(xml, "desc")
    brief = node_text(xml, "abstract")
    try:
        attributes = parse_attributes(xml, header_attrs)
        if typedef_is_function_pointer(xml):
            ppl = parse_ppl(xml)
            returns = parse_return_type(
                xml, node_text(xml, "declaration/declaration_type[1]")
            )
            validate_attributes(
                RuleContext(attributes=attributes, returns=returns.type)
            )
            return FunctionPointerTypedef(
                signature=signature,
                name=name,
                description=description,
                brief=brief,
                attributes=attributes,
                returns=returns,
                parameters=parse_parameters(xml, ppl),
            )
        aliased_type, aliased_identifier, is_pointer, new_identifier = (
            parse_simple_typedef(signature)
        )
        validate_attributes(
            RuleContext(attributes=attributes, is_pointer_alias=is_pointer)
        )
    except ParseError as err:
        raise _with_signature(signature, err)
    return AliasTypedef(
        signature=signature,
        name=name,
        description=description,
        brief=brief,
        attributes=attributes,
        aliased_type=aliased_type,
        aliased_identifier=aliased_identifier,
        is_pointer=is_pointer,
        new_identifier=new_identifier,
    )


def parse_struct(xml: ET.Element, header_attrs: dict[str, str]) -> StructDecl:
    signature = parse_signature(xml)
    try:
        ppl = parse_ppl(xml)
        fields = parse_parameters(xml, ppl, "fields/field")
        attributes = validate_attributes(
            RuleContext(attributes=parse_attributes(xml, header_attrs))
        )
    except ParseError as err:
        raise _with_signature(signature, err)
    return StructDecl(
        signature=signature,
        name=node_text(xml, "name"),
        description=node_text(xml, "desc"),
        brief=node_text(xml, "abstract"),
        fields=fields,
        attributes=attributes,
    )


def parse_enum_constant_numbers(xml: ET.Element, names: set[str]) -> dict[str, int]:
    """Explicit values from `NAME = 1` pairs in the enum declaration."""
    nodes = [
        node
        for node in declaration_nodes(xml)
        if node.tag in ("declaration_var", "declaration_number")
    ]
    numbers = {}
    for node, next_node in zip(nodes, nodes[1:]):
        if node.tag != "declaration_var" or next_node.tag != "declaration_number":
            continue
        constant_name = (node.text or "").strip()
        number_text = next_node.text or ""
        if constant_name in names and _is_c_int(number_text):
            numbers[constant_name] = _parse_c_int(number_text)
    return numbers


def parse_enum_constants(
    xml: ET.Element, ppl: dict[str, str]
) -> dict[str, EnumConstant]:
    # Enum ppl entries carry no types; only the names are checked.
    documented = _described_entries(
        xml, "constants/constant", ppl, "@constant", "the enum definition"
    )
    numbers = parse_enum_constant_numbers(xml, set(ppl))
    return {
        name: EnumConstant(
            name=name,
            description=documented.get(name, ""),
            number=numbers.get(name),
        )
        for name in ppl
    }


def parse_enum(xml: ET.Element, header_attrs: dict[str, str]) -> EnumDecl:
    signature = parse_signature(xml)
    try:
        ppl = parse_ppl(xml)
        constants = parse_enum_constants(xml, ppl)
        attributes = validate_attributes(
            RuleContext(attributes=parse_attributes(xml, header_attrs))
        )
    except ParseError as err:
        raise _with_signature(signature, err)
    return EnumDecl(
        signature=signature,
        name=node_text(xml, "name"),
        description=node_text(xml, "desc"),
        brief=node_text(xml, "abstract"),
        constants=constants,
        attributes=attributes,
    )


def parse_define(xml: ET.Element) -> DefineDecl:
    # The first two preprocessor tokens are `#define` and the macro name.
    tokens = [
        node
        for node in declaration_nodes(xml)
        if node.tag == "declaration_preprocessor"
    ][2:]
    definition = "".join((node.text or "") + (node.tail or "") for node in tokens)
    return DefineDecl(
        name=node_text(xml, "name"),
        description=node_text(xml, "desc"),
        brief=node_text(xml, "abstract"),
        definition=definition.strip(),
    )


# ===--- Header documents ---=== #

HEADER_ATTRIBUTE_EXCLUDES = {"Author"}


def _collect(
    nodes: list[ET.Element],
    parse: Callable[[ET.Element], object],
    failures: list[ParseError] | None,
) -> tuple:
    parsed = []
    for node in nodes:
        try:
            parsed.append(parse(node))
        except ParseError as err:
            if failures is None:
                raise
            failures.append(err)
            print(f"Skipping declaration: {err}", file=sys.stderr)
    return tuple(parsed)


def parse_header_document(
    name: str,
    root: ET.Element,
    failures: list[ParseError] | None = None,
) -> HeaderDocument:
    """Build the IR for one header from its headerdoc2html XML.

    Args:
        name: Header file name; a trailing `.h` is dropped.
        root: The `<header>` element (or a tree whose root contains one).
        failures: When None, the first failing declaration aborts the parse.
            When a list, failing declarations are appended to it and left out
            of the document.

    Returns:
        HeaderDocument with every declaration category populated.

    Raises:
        ParseError: A declaration or the header's own attributes are invalid.
    """
    header = root if root.tag == "header" else root.find("header")
    if header is None:
        raise ParseError(f"No <header> element in HeaderDoc output for `{name}`")
    name = name[:-2] if name.endswith(".h") else name

    header_attrs = {
        key: value
        for key, value in parse_attributes(header, {}).items()
        if key not in HEADER_ATTRIBUTE_EXCLUDES
    }
    validate_attributes(RuleContext(attributes=header_attrs))

    # Unique names only need to be unique within this header.
    registry = UniqueNameRegistry()
    return HeaderDocument(
        name=name,
        brief=node_text(header, "abstract"),
        description=node_text(header, "desc"),
        attributes=header_attrs,
        functions=_collect(
            header.findall("functions/function"),
            lambda xml: parse_function(xml, header_attrs, registry),
            failures,
        ),
        typedefs=_collect(
            header.findall("typedefs/typedef"),
            lambda xml: parse_typedef(xml, header_attrs),
            failures,
        ),
        structs=_collect(
            header.findall("structs_and_unions/struct"),
            lambda xml: parse_struct(xml, header_attrs),
            failures,
        ),
        enums=_collect(
            header.findall("enums/enum"),
            lambda xml: parse_enum(xml, header_attrs),
            failures,
        ),
        defines=_collect(header.findall("defines/pdefine"), parse_define, failures),
    )


# ===--- HeaderDoc invocation ---=== #

_BANNER_RE = re.compile(r"-{3,}(?:.|\n)+?-(?=\n)\n")


def headerdoc_installed() -> bool:
    return shutil.which(HEADERDOC_COMMAND) is not None


def find_header_sources(paths: tuple[Path, ...]) -> list[Path]:
    """Expand directories into their header sources.

    A directory holding both `foo.h` and `foo.xml` contributes only the
    pre-generated `foo.xml`.
    """
    sources = []
    for path in paths:
        if path.is_dir():
            found = sorted(p for p in path.iterdir() if p.suffix in SOURCE_SUFFIXES)
            xml_stems = {p.stem for p in found if p.suffix == ".xml"}
            sources.extend(
                p for p in found if p.suffix == ".xml" or p.stem not in xml_stems
            )
        elif path.suffix in SOURCE_SUFFIXES:
            sources.append(path)
    return sources


def run_headerdoc(header: Path, headerdoc_config: Path | None = None) -> ET.Element:
    cmd = [HEADERDOC_COMMAND, HEADERDOC_FLAGS]
    if headerdoc_config is not None:
        cmd += ["-c", str(headerdoc_config)]
    cmd.append(str(header))

    result = subprocess.run(cmd, capture_output=True, text=True)
    for line in _BANNER_RE.sub("", result.stderr).splitlines():
        if line.strip():
            print(f"Warning: {line}", file=sys.stderr)
    if result.returncode != 0:
        raise RuntimeError(f"headerdoc2html failed. Command was {' '.join(cmd)}.")
    return ET.fromstring(result.stdout)


def load_header_xml(source: Path, headerdoc_config: Path | None = None) -> ET.Element:
    if source.suffix == ".xml":
        return ET.parse(source).getroot()
    return run_headerdoc(source, headerdoc_config)


def parse_headers(
    config: ParseConfig,
    failures: list[ParseError] | None = None,
) -> dict[str, HeaderDocument]:
    """Parse every header source named by config, keyed by header name.

    Raises:
        ConfigError: No sources found, `.h` sources without headerdoc2html,
            or two sources for the same header name.
        ParseError: A declaration failed and failures is None.
        RuntimeError: headerdoc2html exited with an error.
    """
    sources = find_header_sources(config.sources)
    if not sources:
        raise ConfigError(
            "NO_HEADERS",
            "Nothing parsed! No .h or .xml files found in: "
            + ", ".join(str(p) for p in config.sources),
            "Check the source paths and that the headers carry HeaderDoc comments.",
        )
    if any(s.suffix == ".h" for s in sources) and not headerdoc_installed():
        raise ConfigError(
            "HEADERDOC_NOT_INSTALLED",
            f"{HEADERDOC_COMMAND} is not installed!",
            "Install HeaderDoc or pass pre-generated .xml files instead.",
        )

    seen: dict[str, Path] = {}
    for source in sources:
        if source.stem in seen:
            raise ConfigError(
                "DUPLICATE_HEADER",
                f"Header `{source.stem}` found twice: {seen[source.stem]} and {source}",
                "Pass only one source per header name.",
            )
        seen[source.stem] = source

    documents: dict[str, HeaderDocument] = {}
    for source in sources:
        print(f"Parsing {source}...")
        root = load_header_xml(source, config.headerdoc_config)
        document = parse_header_document(source.stem, root, failures)
        documents[document.name] = document
    return documents


# ===--- Summary report ---=== #


def format_parse_summary(
    documents: dict[str, HeaderDocument], skipped: int = 0
) -> str:
    """Render per-header declaration counts, ending in exactly one newline."""
    lines = [f"Parsed {len(documents)} header(s):", ""]
    lines.append(
        f"  {'Header':<24}{'Functions':>10}{'Typedefs':>10}"
        f"{'Structs':>9}{'Enums':>7}{'Defines':>9}"
    )
    for name, doc in documents.items():
        lines.append(
            f"  {name:<24}{len(doc.functions):>10}{len(doc.typedefs):>10}"
            f"{len(doc.structs):>9}{len(doc.enums):>7}{len(doc.defines):>9}"
        )
    if skipped:
        lines.append("")
        lines.append(f"  Skipped: {skipped} declaration(s) with errors")
    lines.append("")
    return "\n".join(lines)


def print_parse_summary(
    documents: dict[str, HeaderDocument], skipped: int = 0
) -> None:
    print(format_parse_summary(documents, skipped), end="")


def documents_to_json(documents: dict[str, HeaderDocument]) -> str:
    return json.dumps({name: asdict(doc) for name, doc in documents.items()}, indent=2)


def run_parse(config: ParseConfig) -> dict[str, HeaderDocument]:
    failures: list[ParseError] | None = [] if config.keep_going else None
    documents = parse_headers(config, failures)
    if config.json_output is not None:
        config.json_output.write_text(
            documents_to_json(documents) + "\n", encoding="utf-8"
        )
        print(f"  Written: {config.json_output}")
    print_parse_summary(documents, len(failures or []))
    return documents


# ===--- Main ---=== #


def main(argv: list[str] | None = None):
    try:
        config = build_config(argv)
        run_parse(config)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err
    except ParseError as err:
        print(err)
        raise SystemExit(1) from err
    except (OSError, ET.ParseError, RuntimeError) as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
