from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
import logging
from pathlib import Path
import re
from typing import TextIO

from app.schemas import ClassifiedRecord, FIELD_NAMES, MalformedRecord, ParsedRecord, RecordStatus


logger = logging.getLogger(__name__)

FIELD_DELIMITER = ","
EXPECTED_FIELD_COUNT = len(FIELD_NAMES)
PHONE_DIGITS = 10
EMAIL_PATTERN = re.compile(r"[A-Za-z0-9+_.-]+@[A-Za-z0-9.-]+")
NON_DIGITS = re.compile(r"[^0-9]")


class SourceUnavailableError(RuntimeError):
    pass


def read_lines(stream: TextIO) -> Iterator[str]:
    for line in stream:
        yield line.rstrip("\r\n")


def open_line_source(input_path: Path) -> Iterator[str]:
    try:
        infile = input_path.open("r", encoding="utf-8")
    except OSError as exc:
        raise SourceUnavailableError(f"input file not readable: {input_path}") from exc

    with infile:
        try:
            yield from read_lines(infile)
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceUnavailableError(f"failed reading input file {input_path}: {exc}") from exc


def parse_line(raw_line: str) -> ParsedRecord | MalformedRecord:
    parts = raw_line.split(FIELD_DELIMITER)
    # Trailing empty fields do not count toward the field total.
    while parts and parts[-1] == "":
        parts.pop()
    if len(parts) < EXPECTED_FIELD_COUNT:
        return MalformedRecord(raw_line=raw_line)
    return ParsedRecord(*parts[:EXPECTED_FIELD_COUNT])


def parse_lines(lines: Iterable[str]) -> tuple[list[ParsedRecord], list[MalformedRecord]]:
    parsed: list[ParsedRecord] = []
    malformed: list[MalformedRecord] = []
    for raw_line in lines:
        record = parse_line(raw_line)
        if isinstance(record, MalformedRecord):
            malformed.append(record)
        else:
            parsed.append(record)
    return parsed, malformed


def validate_phone(phone: str) -> bool:
    return len(NON_DIGITS.sub("", phone)) == PHONE_DIGITS


def validate_email(email: str) -> bool:
    return bool(email.strip()) and EMAIL_PATTERN.fullmatch(email) is not None


@dataclass
class DedupState:
    """Phones and emails already accepted during one classification pass."""

    phones: dict[str, None] = field(default_factory=dict)
    emails: dict[str, None] = field(default_factory=dict)

    def duplicate_reason(self, record: ParsedRecord) -> str | None:
        if record.phone in self.phones:
            return "duplicate phone"
        if record.email in self.emails:
            return "duplicate email"
        return None

    def remember(self, record: ParsedRecord) -> None:
        self.phones[record.phone] = None
        self.emails[record.email] = None


def _rejection_reason(record: ParsedRecord, state: DedupState) -> str | None:
    if not validate_phone(record.phone):
        return f"phone must have {PHONE_DIGITS} digits"
    if not validate_email(record.email):
        return "email format is invalid"
    return state.duplicate_reason(record)


def classify_records(records: Iterable[ParsedRecord]) -> list[ClassifiedRecord]:
    """Tag every record valid or invalid in a single ordered pass.

    The first record carrying a given phone or email wins; any later record
    reusing either value is invalid.
    """
    state = DedupState()
    classified: list[ClassifiedRecord] = []

    for index, record in enumerate(records):
        reason = _rejection_reason(record, state)
        if reason is not None:
            logger.debug("record rejected", extra={"record_index": index, "reason": reason})
            classified.append(ClassifiedRecord(record, RecordStatus.INVALID, reason))
            continue

        state.remember(record)
        classified.append(ClassifiedRecord(record, RecordStatus.VALID))

    return classified


def split_by_status(classified: Iterable[ClassifiedRecord]) -> tuple[list[ParsedRecord], list[ParsedRecord]]:
    valid: list[ParsedRecord] = []
    invalid: list[ParsedRecord] = []
    for item in classified:
        if item.status is RecordStatus.VALID:
            valid.append(item.record)
        else:
            invalid.append(item.record)
    return valid, invalid
