"""
Declarative column discovery for roster spreadsheets.

Rosters come from hand-made Google Forms and spreadsheets, so headers vary
("Roll No", "Register Number", "Kongu.edu mail", "Veg or Non Veg"...). The rule
table below is evaluated once against the header row and produces a fixed
column-index mapping that is reused for every data row.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

ROLL_EXCLUDE = ("veg", "food", "preference", "diet", "meal")


@dataclass(frozen=True)
class ColumnRule:
    field: str
    include: Tuple[str, ...]
    exclude: Tuple[str, ...] = ()

    def matches(self, header: str) -> bool:
        key = normalize_header(header)
        if not key:
            return False
        if any(normalize_header(term) in key for term in self.exclude):
            return False
        return any(normalize_header(term) in key for term in self.include)


# Order matters: a header claimed by an earlier rule is not offered to later ones.
COLUMN_RULES: Tuple[ColumnRule, ...] = (
    ColumnRule("email", ("email", "e-mail", "mail")),
    ColumnRule("roll_no", ("roll", "register number", "register no", "registration no", "registration number", "reg no", "regno"), ROLL_EXCLUDE),
    ColumnRule("food_preference", ("food", "veg", "diet", "preference")),
    ColumnRule("room_no", ("room",)),
    ColumnRule("phone", ("phone", "mobile", "contact", "whatsapp")),
    ColumnRule("department", ("department", "dept", "branch", "stream")),
    ColumnRule("college", ("college", "institution")),
    ColumnRule("year", ("year",)),
    ColumnRule("name", ("name", "participant"), ("team", "event", "hostel", "father", "parent")),
)

SCALAR_FIELDS = tuple(rule.field for rule in COLUMN_RULES if rule.field != "email")

ROLL_RULE = next(rule for rule in COLUMN_RULES if rule.field == "roll_no")


def normalize_header(value: Any) -> str:
    """Lowercase and drop everything but letters and digits"""
    return re.sub(r"[^a-z0-9]", "", str(value or "").lower())


def cell_text(value: Any) -> str:
    """Spreadsheet cell as trimmed text; NaN/None become empty"""
    if value is None:
        return ""
    text = str(value).strip()
    return "" if text.lower() in ("nan", "none", "nat") else text


@dataclass
class ColumnMap:
    headers: List[str]
    fields: Dict[str, int] = field(default_factory=dict)
    emails: List[int] = field(default_factory=list)

    def index(self, name: str) -> Optional[int]:
        return self.fields.get(name)


def resolve_columns(headers: Sequence[Any]) -> ColumnMap:
    """Apply ``COLUMN_RULES`` to a header row"""
    column_map = ColumnMap(headers=[str(h or "").strip() for h in headers])
    claimed = set()
    for rule in COLUMN_RULES:
        for idx, header in enumerate(column_map.headers):
            if idx in claimed or not rule.matches(header):
                continue
            claimed.add(idx)
            if rule.field == "email":
                column_map.emails.append(idx)
                continue
            column_map.fields[rule.field] = idx
            break
    return column_map


def find_roll_value(details: Mapping[str, Any]) -> Optional[str]:
    """First roll-number-like value in a header -> value mapping"""
    for key, value in details.items():
        text = cell_text(value)
        if text and ROLL_RULE.matches(key):
            return text
    return None


@dataclass
class Candidate:
    """One would-be participant pulled out of a row"""
    name: str = ""
    email: str = ""
    roll_no: str = ""
    department: str = ""
    college: str = ""
    phone: str = ""
    year: str = ""
    food_preference: str = ""
    room_no: str = ""
    details: Dict[str, str] = field(default_factory=dict)

    def is_blank(self) -> bool:
        return not (self.name or self.email or self.roll_no)


def _value(row: Sequence[Any], idx: Optional[int]) -> str:
    if idx is None or idx >= len(row):
        return ""
    return cell_text(row[idx])


def _paired_column(column_map: ColumnMap, email_idx: int, rule_field: str) -> Optional[int]:
    """Column sharing the email column's prefix, e.g. 'Member 2 Email' -> 'Member 2 Name'"""
    email_key = normalize_header(column_map.headers[email_idx])
    pos = email_key.find("mail")
    if pos <= 0:
        return None
    prefix = email_key[:pos]
    if prefix.endswith("e"):
        prefix = prefix[:-1]
    if not prefix:
        return None
    rule = next(r for r in COLUMN_RULES if r.field == rule_field)
    for idx, header in enumerate(column_map.headers):
        if idx == email_idx or idx in column_map.emails:
            continue
        key = normalize_header(header)
        if key.startswith(prefix) and rule.matches(header):
            return idx
    return None


def extract_candidates(row: Sequence[Any], column_map: ColumnMap) -> List[Candidate]:
    """Split a data row into participants (one per email column)"""
    details = {
        header: cell_text(row[idx]) if idx < len(row) else ""
        for idx, header in enumerate(column_map.headers)
        if header
    }
    shared = {name: _value(row, column_map.index(name)) for name in SCALAR_FIELDS}

    email_columns = [idx for idx in column_map.emails if "@" in _value(row, idx)]
    if not column_map.emails:
        # No email header at all: any cell holding an address is an email column
        email_columns = [idx for idx in range(len(row)) if "@" in cell_text(row[idx])]

    if len(email_columns) <= 1:
        candidate = Candidate(details=details, **shared)
        if email_columns:
            candidate.email = _value(row, email_columns[0])
        return [] if candidate.is_blank() else [candidate]

    candidates = []
    for position, email_idx in enumerate(email_columns):
        fields = dict(shared)
        for paired in ("name", "roll_no"):
            idx = _paired_column(column_map, email_idx, paired) if email_idx < len(column_map.headers) else None
            if idx is not None:
                fields[paired] = _value(row, idx)
            elif position > 0:
                # The row's own name/roll belong to its first participant only
                fields[paired] = ""
        candidates.append(Candidate(email=_value(row, email_idx), details=details, **fields))
    return candidates
