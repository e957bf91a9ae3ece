"""
ParameterList document module.

Reads and writes the XML "ParameterList" documents used for native
calibration files.

Document Format:
    A ParameterList root holds Parameter leaves and nested, named
    ParameterList sublists. Every leaf carries a name, a type
    (bool, int, double or string) and a value attribute:

        <ParameterList>
          <Parameter name="system_type_3D" type="string" value="GENERIC_SYSTEM" />
          <ParameterList name="CAMERA 0">
            <Parameter name="CX" type="double" value="512.0" />
            <Parameter name="IMAGE_HEIGHT_WIDTH" type="string" value="{ 1024, 1280 }" />
          </ParameterList>
        </ParameterList>

    Numeric lists are stored as strings in the bracketed form "{ a, b, c }".
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union
import logging
import xml.etree.ElementTree as ET

logger = logging.getLogger(__name__)

PARAMETER_TAG = 'Parameter'
PARAMETER_LIST_TAG = 'ParameterList'

_TRUE_STRINGS = ('true', '1', 'yes')
_FALSE_STRINGS = ('false', '0', 'no')
_MISSING = object()


class ParameterListError(ValueError):
    """Raised for malformed documents, missing entries or badly typed values."""


@dataclass
class _Parameter:
    name: str
    type: str
    value: str


@dataclass
class _Comment:
    text: str


def _format_value(value) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float):
        return repr(float(value))
    return str(value)


def _infer_type(value) -> str:
    if isinstance(value, bool):
        return 'bool'
    if isinstance(value, int):
        return 'int'
    if isinstance(value, float):
        return 'double'
    return 'string'


class ParameterList:
    """
    Ordered, named collection of typed parameters and nested sublists.

    Entries keep their insertion order when written. Setting an existing
    name replaces the entry in place.
    """

    def __init__(self, name: str = ''):
        self.name = name
        self._children: List[Union[_Parameter, "ParameterList", _Comment]] = []
        self._index: Dict[str, Union[_Parameter, "ParameterList"]] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._index

    def __len__(self) -> int:
        return len(self._index)

    def names(self) -> List[str]:
        return list(self._index)

    def is_parameter(self, name: str) -> bool:
        return isinstance(self._index.get(name), _Parameter)

    def is_sublist(self, name: str) -> bool:
        return isinstance(self._index.get(name), ParameterList)

    # ------------------------------------------------------------------
    # Getters
    # ------------------------------------------------------------------

    def _get(self, name: str, default):
        entry = self._index.get(name)
        if entry is None:
            if default is _MISSING:
                raise ParameterListError(f"Missing required parameter '{name}'{self._where()}")
            return None
        if not isinstance(entry, _Parameter):
            raise ParameterListError(f"'{name}'{self._where()} is a sublist, not a parameter")
        return entry.value

    def _where(self) -> str:
        return f" in '{self.name}'" if self.name else ''

    def get_string(self, name: str, default=_MISSING) -> str:
        value = self._get(name, default)
        return default if value is None else value

    def get_double(self, name: str, default=_MISSING) -> float:
        value = self._get(name, default)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            raise ParameterListError(
                f"Parameter '{name}'{self._where()} is not a number: '{value}'"
            ) from None

    def get_int(self, name: str, default=_MISSING) -> int:
        value = self._get(name, default)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise ParameterListError(
                f"Parameter '{name}'{self._where()} is not an integer: '{value}'"
            ) from None

    def get_bool(self, name: str, default=_MISSING) -> bool:
        value = self._get(name, default)
        if value is None:
            return default
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise ParameterListError(f"Parameter '{name}'{self._where()} is not a bool: '{value}'")

    def sublist(self, name: str) -> "ParameterList":
        entry = self._index.get(name)
        if not isinstance(entry, ParameterList):
            raise ParameterListError(f"Missing required sublist '{name}'{self._where()}")
        return entry

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def _insert(self, name: str, entry: Union[_Parameter, "ParameterList"]) -> None:
        previous = self._index.get(name)
        if previous is not None:
            self._children[self._children.index(previous)] = entry
        else:
            self._children.append(entry)
        self._index[name] = entry

    def set(self, name: str, value, type: Optional[str] = None) -> None:
        """
        Add or replace a parameter.

        Args:
            name: Parameter name
            value: bool, int, float or str value
            type: Explicit type name; inferred from the value when omitted
        """
        self._insert(name, _Parameter(name, type or _infer_type(value), _format_value(value)))

    def add_sublist(self, name: str) -> "ParameterList":
        """Add (or replace with) an empty sublist and return it."""
        sublist = ParameterList(name)
        self._insert(name, sublist)
        return sublist

    def add_comment(self, text: str) -> None:
        self._children.append(_Comment(text))

    # ------------------------------------------------------------------
    # XML conversion
    # ------------------------------------------------------------------

    @classmethod
    def from_element(cls, element: ET.Element) -> "ParameterList":
        plist = cls(element.get('name', ''))
        for child in element:
            if child.tag == PARAMETER_TAG:
                name = child.get('name')
                if name is None:
                    raise ParameterListError(f"Parameter without a name{plist._where()}")
                plist._insert(name, _Parameter(name, child.get('type', 'string'), child.get('value', '')))
            elif child.tag == PARAMETER_LIST_TAG:
                sublist = cls.from_element(child)
                plist._insert(sublist.name, sublist)
            else:
                logger.debug(f"Ignoring unknown element <{child.tag}>{plist._where()}")
        return plist

    def to_element(self) -> ET.Element:
        element = ET.Element(PARAMETER_LIST_TAG)
        if self.name:
            element.set('name', self.name)
        for child in self._children:
            if isinstance(child, _Comment):
                element.append(ET.Comment(f" {child.text} "))
            elif isinstance(child, ParameterList):
                element.append(child.to_element())
            else:
                ET.SubElement(element, PARAMETER_TAG, name=child.name, type=child.type, value=child.value)
        return element


def read_parameter_list(path: Union[str, Path]) -> ParameterList:
    """
    Read a ParameterList document.

    Args:
        path: Path to the XML file

    Returns:
        Root ParameterList

    Raises:
        FileNotFoundError: If the file does not exist
        ParameterListError: If the file is not XML or its root is not a ParameterList
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Parameter file not found: {path}")

    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        raise ParameterListError(f"{path} is not a valid XML document: {e}") from e

    if root.tag != PARAMETER_LIST_TAG:
        raise ParameterListError(f"{path}: root element is <{root.tag}>, expected <{PARAMETER_LIST_TAG}>")

    return ParameterList.from_element(root)


def write_parameter_list(plist: ParameterList, path: Union[str, Path]) -> None:
    """Write a ParameterList document with two-space indentation."""
    tree = ET.ElementTree(plist.to_element())
    ET.indent(tree, space='  ')
    tree.write(path, encoding='utf-8', xml_declaration=False)
    logger.debug(f"Parameter list written to {path}")


def parse_numeric_list(text: str, expected_length: int, integer: bool = False) -> List[Union[float, int]]:
    """
    Decode a bracketed numeric list such as "{ 1.0, 2.5, -3 }".

    Args:
        text: Bracketed list
        expected_length: Required number of values
        integer: Decode the values as integers

    Returns:
        List of floats (or ints)

    Raises:
        ParameterListError: On missing brackets, non-numeric entries or a
            wrong number of values
    """
    stripped = text.strip()
    if not (stripped.startswith('{') and stripped.endswith('}')):
        raise ParameterListError(f"Numeric list must be enclosed in braces: '{text}'")

    body = stripped[1:-1].strip()
    tokens = [t.strip() for t in body.split(',')] if body else []
    if len(tokens) != expected_length:
        raise ParameterListError(
            f"Expected {expected_length} values in numeric list, got {len(tokens)}: '{text}'"
        )

    values = []
    for token in tokens:
        try:
            value = float(token)
        except ValueError:
            raise ParameterListError(f"Invalid number '{token}' in numeric list '{text}'") from None
        if integer:
            if not value.is_integer():
                raise ParameterListError(f"Expected an integer, got '{token}' in '{text}'")
            value = int(value)
        values.append(value)
    return values


def format_numeric_list(values) -> str:
    """Encode values in the bracketed list form."""
    return '{ ' + ', '.join(_format_value(v) for v in values) + ' }'
