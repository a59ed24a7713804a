import argparse
import sys
import xml.etree.ElementTree as ET
from collections.abc import Callable
from pathlib import Path

import pytest

PARSER_DIR = Path(__file__).resolve().parent.parent
if str(PARSER_DIR) not in sys.path:
    sys.path.insert(0, str(PARSER_DIR))

import hdparse  # noqa: E402


def _attributes_xml(attributes: dict[str, str] | None) -> str:
    if not attributes:
        return ""
    items = "".join(
        f"<attribute><name>{key}</name><value>{value}</value></attribute>"
        for key, value in attributes.items()
    )
    return f"<attributes>{items}</attributes>"


def _ppl_xml(ppl: list[tuple[str, str]]) -> str:
    items = "".join(
        f"<parsedparameter><type>{type_}</type><name>{name}</name></parsedparameter>"
        for name, type_ in ppl
    )
    return f"<parsedparameterlist>{items}</parsedparameterlist>"


def _documented_xml(wrapper: str, item: str, docs: dict[str, str] | None) -> str:
    if not docs:
        return ""
    items = "".join(
        f"<{item}><name>{name}</name><desc>{desc}</desc></{item}>"
        for name, desc in docs.items()
    )
    return f"<{wrapper}>{items}</{wrapper}>"


@pytest.fixture
def existing_paths(tmp_path: Path) -> dict[str, Path]:
    header_xml = tmp_path / "audio.xml"
    header_xml.write_text("<header><name>audio.h</name></header>\n", encoding="utf-8")

    headerdoc_config = tmp_path / "headerdoc.config"
    headerdoc_config.write_text("", encoding="utf-8")

    return {
        "header_xml": header_xml,
        "headerdoc_config": headerdoc_config,
        "json_output": tmp_path / "ir.json",
    }


@pytest.fixture
def missing_path(tmp_path: Path) -> Path:
    return tmp_path / "missing"


@pytest.fixture
def make_args(existing_paths: dict[str, Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "sources": [existing_paths["header_xml"]],
            "headerdoc_config": None,
            "keep_going": False,
            "json_output": None,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def make_header_root() -> Callable[[str], ET.Element]:
    def _make_header_root(inner_xml: str) -> ET.Element:
        return ET.fromstring(f"<header>{inner_xml}</header>")

    return _make_header_root


@pytest.fixture
def make_decl() -> Callable[..., ET.Element]:
    """Build a declaration element carrying only a <declaration> body."""

    def _make_decl(
        declaration: str, tag: str = "function", **attrib: str
    ) -> ET.Element:
        element = ET.fromstring(
            f"<{tag}><declaration>{declaration}</declaration></{tag}>"
        )
        element.attrib.update(attrib)
        return element

    return _make_decl


@pytest.fixture
def function_xml() -> Callable[..., str]:
    def _function_xml(
        name: str,
        *,
        ppl: list[tuple[str, str]] | None = None,
        params: dict[str, str] | None = None,
        attributes: dict[str, str] | None = None,
        returntype: str | None = "void",
        result: str = "",
        declaration: str = "",
        brief: str = "",
        desc: str = "",
    ) -> str:
        returns = "" if returntype is None else f"<returntype>{returntype}</returntype>"
        return (
            f"<function><name>{name}</name>"
            f"<abstract>{brief}</abstract><desc>{desc}</desc>"
            f"{_attributes_xml(attributes)}"
            f"{_documented_xml('parameters', 'parameter', params)}"
            f"{_ppl_xml(ppl or [])}"
            f"{returns}<result>{result}</result>"
            f"<declaration>{declaration}</declaration>"
            "</function>"
        )

    return _function_xml


@pytest.fixture
def make_function(function_xml: Callable[..., str]) -> Callable[..., ET.Element]:
    def _make_function(name: str, **kwargs: object) -> ET.Element:
        return ET.fromstring(function_xml(name, **kwargs))

    return _make_function


@pytest.fixture
def make_enum() -> Callable[..., ET.Element]:
    def _make_enum(
        name: str,
        constants: list[str],
        *,
        docs: dict[str, str] | None = None,
        declaration: str = "",
        attributes: dict[str, str] | None = None,
    ) -> ET.Element:
        return ET.fromstring(
            f"<enum><name>{name}</name><abstract>An enum.</abstract><desc/>"
            f"{_attributes_xml(attributes)}"
            f"{_documented_xml('constants', 'constant', docs)}"
            f"{_ppl_xml([(c, '') for c in constants])}"
            f"<declaration>{declaration}</declaration>"
            "</enum>"
        )

    return _make_enum


@pytest.fixture
def make_struct() -> Callable[..., ET.Element]:
    def _make_struct(
        name: str,
        ppl: list[tuple[str, str]],
        *,
        docs: dict[str, str] | None = None,
        declaration: str = "",
        attributes: dict[str, str] | None = None,
    ) -> ET.Element:
        return ET.fromstring(
            f"<struct><name>{name}</name><abstract>A struct.</abstract><desc/>"
            f"{_attributes_xml(attributes)}"
            f"{_documented_xml('fields', 'field', docs)}"
            f"{_ppl_xml(ppl)}"
            f"<declaration>{declaration}</declaration>"
            "</struct>"
        )

    return _make_struct


@pytest.fixture
def make_typedef() -> Callable[..., ET.Element]:
    def _make_typedef(
        name: str,
        declaration: str,
        *,
        ppl: list[tuple[str, str]] | None = None,
        attributes: dict[str, str] | None = None,
        function_pointer: bool = False,
        result: str = "",
    ) -> ET.Element:
        type_attr = ' type="funcPtr"' if function_pointer else ""
        return ET.fromstring(
            f"<typedef{type_attr}><name>{name}</name>"
            f"<abstract>A typedef.</abstract><desc/>"
            f"{_attributes_xml(attributes)}"
            f"{_ppl_xml(ppl or [])}"
            f"<result>{result}</result>"
            f"<declaration>{declaration}</declaration>"
            "</typedef>"
        )

    return _make_typedef


@pytest.fixture
def registry() -> hdparse.UniqueNameRegistry:
    return hdparse.UniqueNameRegistry()
