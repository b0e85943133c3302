import re
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from dateutil import parser as date_parser

COLUMN_TYPES = ("string", "number", "boolean", "date")

TRUE_VALUES = {"true", "yes", "y", "1"}
FALSE_VALUES = {"false", "no", "n", "0"}


@dataclass(frozen=True)
class TemplateColumn:
    name: str
    display_name: str
    required: bool = False
    type: str = "string"
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    description: str = ""
    example: str = ""
    allowed_values: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        if self.type not in COLUMN_TYPES:
            raise ValueError(f"Unsupported column type '{self.type}' for {self.name}")

    def instruction(self) -> str:
        parts = ["Required" if self.required else "Optional", self.type]
        if self.max_length:
            parts.append(f"max {self.max_length}")
        if self.allowed_values:
            parts.append("one of " + "/".join(self.allowed_values))
        if self.example:
            parts.append(f"e.g. {self.example}")
        return " | ".join(parts)


def normalize_header(value: str) -> str:
    if not value:
        return ""
    raw = unicodedata.normalize("NFKD", value)
    raw = "".join(ch for ch in raw if not unicodedata.combining(ch))
    raw = raw.lower().strip()
    raw = re.sub(r"[\s\-]+", "_", raw)
    raw = re.sub(r"[^a-z0-9_]", "", raw)
    return raw


def make_header_map(columns: List[TemplateColumn]) -> Dict[str, str]:
    mapping = {}
    for col in columns:
        mapping[normalize_header(col.display_name)] = col.name
        mapping[normalize_header(col.name)] = col.name
    return mapping


def label_for_key(columns: List[TemplateColumn], key: str) -> str:
    for col in columns:
        if col.name == key:
            return col.display_name
    return key


def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


THOUSANDS_RE = re.compile(r"^-?\d{1,3}(,\d{3})+(\.\d+)?$")

# two far-apart defaults; a value that leans on either is incomplete
DATE_DEFAULTS = (datetime(2000, 1, 1), datetime(1999, 12, 31))


def to_number(value: str):
    raw = value.strip()
    if "," in raw:
        if not THOUSANDS_RE.match(raw):
            raise ValueError(f"not a number: {value}")
        raw = raw.replace(",", "")
    number = float(raw)
    if number != number or number in (float("inf"), float("-inf")):
        raise ValueError(f"not a finite number: {value}")
    if number.is_integer() and "e" not in raw.lower():
        return int(number)
    return number


def to_bool(value: str) -> bool:
    raw = value.strip().lower()
    if raw in TRUE_VALUES:
        return True
    if raw in FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {value}")


def to_date(value: str) -> date:
    raw = value.strip()
    first, second = (date_parser.parse(raw, default=default).date() for default in DATE_DEFAULTS)
    if first != second:
        raise ValueError(f"incomplete date: {value}")
    return first


COERCERS = {
    "string": lambda value: value.strip(),
    "number": to_number,
    "boolean": to_bool,
    "date": to_date,
}


def coerce(column: TemplateColumn, value: str):
    return COERCERS[column.type](value)
