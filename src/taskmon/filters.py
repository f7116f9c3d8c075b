"""Filtering, searching and ordering of process records."""

import re
import shlex
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from taskmon.errors import InvalidCriterion
from taskmon.models import ProcessRecord, Snapshot

REGEX_FIELDS = ("name", "owner", "pid")


@dataclass(slots=True, frozen=True)
class NameMatch:
    """Substring match on the process name."""

    pattern: str
    case_sensitive: bool = False


@dataclass(slots=True, frozen=True)
class OwnerMatch:
    """Substring match on the owning user name."""

    pattern: str
    case_sensitive: bool = False


@dataclass(slots=True, frozen=True)
class PidMatch:
    """Exact PID match."""

    value: int


@dataclass(slots=True, frozen=True)
class RegexMatch:
    """Regular expression searched in one field of the record."""

    pattern: str
    field: str = "name"
    ignore_case: bool = False


FilterCriterion = NameMatch | OwnerMatch | PidMatch | RegexMatch
Predicate = Callable[[ProcessRecord], bool]


def _substring(attribute: str, pattern: str, case_sensitive: bool) -> Predicate:
    if case_sensitive:
        return lambda record: pattern in getattr(record, attribute)
    needle = pattern.casefold()
    return lambda record: needle in getattr(record, attribute).casefold()


def _compile_one(criterion: FilterCriterion) -> Predicate:
    """Turn one criterion into a predicate, validating it first."""
    if isinstance(criterion, NameMatch):
        return _substring("name", criterion.pattern, criterion.case_sensitive)

    if isinstance(criterion, OwnerMatch):
        return _substring("owner", criterion.pattern, criterion.case_sensitive)

    if isinstance(criterion, PidMatch):
        if isinstance(criterion.value, bool) or not isinstance(criterion.value, int):
            raise InvalidCriterion(f"PID must be an integer, got {criterion.value!r}")
        if criterion.value < 0:
            raise InvalidCriterion(f"PID must not be negative, got {criterion.value}")
        pid = criterion.value
        return lambda record: record.pid == pid

    if isinstance(criterion, RegexMatch):
        if criterion.field not in REGEX_FIELDS:
            raise InvalidCriterion(
                f"cannot match regex against {criterion.field!r}, expected one of {REGEX_FIELDS}"
            )
        flags = re.IGNORECASE if criterion.ignore_case else 0
        try:
            regex = re.compile(criterion.pattern, flags)
        except re.error as exc:
            raise InvalidCriterion(f"invalid regex {criterion.pattern!r}: {exc}") from exc
        field = criterion.field
        return lambda record: regex.search(str(getattr(record, field))) is not None

    raise InvalidCriterion(f"unknown criterion {criterion!r}")


def compile_criteria(criteria: Iterable[FilterCriterion]) -> Predicate:
    """
    Validate all criteria and combine them with logical AND.

    Every criterion is checked before the returned predicate can run, so an
    invalid one never produces partial results.

    Raises:
        InvalidCriterion: if any criterion is malformed.
    """
    predicates = [_compile_one(criterion) for criterion in criteria]
    return lambda record: all(predicate(record) for predicate in predicates)


def match(snapshot: Snapshot, criteria: Sequence[FilterCriterion]) -> tuple[ProcessRecord, ...]:
    """Return the records of ``snapshot`` matching every criterion, in PID order."""
    predicate = compile_criteria(criteria)
    return tuple(record for record in snapshot.records if predicate(record))


def _regex_term(value: str) -> RegexMatch:
    # A trailing "/i" asks for a case-insensitive regex
    if value.endswith("/i"):
        return RegexMatch(value[:-2], "name", ignore_case=True)
    return RegexMatch(value, "name", ignore_case=False)


def parse_query(
    text: str, regex: bool = False, case_sensitive: bool = False
) -> list[FilterCriterion]:
    """
    Parse a search box query into criteria.

    Terms are whitespace separated and may be labelled, e.g.
    ``pid:643 owner:root name:"firefox"``. Unlabelled terms match the name.
    With ``regex`` set, name terms are regular expressions.

    Raises:
        InvalidCriterion: on unbalanced quotes, unknown labels, empty values,
            non-integer PIDs or invalid regexes.
    """
    try:
        terms = shlex.split(text)
    except ValueError as exc:
        raise InvalidCriterion(f"cannot parse query {text!r}: {exc}") from exc

    criteria: list[FilterCriterion] = []
    for term in terms:
        label, sep, value = term.partition(":")
        if not sep or label.lower() not in ("pid", "owner", "name"):
            if sep and label and not regex:
                raise InvalidCriterion(f"unknown label {label!r}")
            label, value = "name", term
        label = label.lower()

        if not value:
            raise InvalidCriterion(f"empty value for label {label!r}")

        if label == "pid":
            try:
                criteria.append(PidMatch(int(value)))
            except ValueError as exc:
                raise InvalidCriterion(f"PID must be an integer, got {value!r}") from exc
        elif label == "owner":
            criteria.append(OwnerMatch(value, case_sensitive))
        elif regex:
            criteria.append(_regex_term(value))
        else:
            criteria.append(NameMatch(value, case_sensitive))

    # Fail now rather than on first use
    compile_criteria(criteria)
    return criteria


class SortKey(Enum):
    """Sort keys for process listings."""

    PID = "pid"
    NAME = "name"
    OWNER = "owner"
    CPU = "cpu"


def sort_records(
    records: Iterable[ProcessRecord],
    key: SortKey = SortKey.PID,
    descending: bool = False,
    case_sensitive: bool = False,
) -> list[ProcessRecord]:
    """Sort records by ``key``; ties keep PID order."""
    fold = (lambda s: s) if case_sensitive else str.casefold
    key_func = {
        SortKey.PID: lambda r: r.pid,
        SortKey.NAME: lambda r: fold(r.name),
        SortKey.OWNER: lambda r: fold(r.owner),
        SortKey.CPU: lambda r: r.cpu_percent,
    }
    ordered = sorted(records, key=lambda r: r.pid)
    return sorted(ordered, key=key_func[key], reverse=descending)
