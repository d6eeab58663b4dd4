import re
from datetime import UTC, datetime

KIND_NAME_PREFIX_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


def is_kind_name_prefix(value: str) -> bool:
    return bool(KIND_NAME_PREFIX_RE.fullmatch(value))


def now() -> datetime:
    return datetime.now(UTC)
