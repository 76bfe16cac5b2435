"""Turn flat logbook form fields into a structured logbook document.

The browser posts the form as one flat object whose keys follow fixed
patterns, e.g. ``date3``, ``experiment3``, ``rubric3-2`` for the third
experiment or ``t3rubric1-5`` for the fifth rubric of the first lab exam.
"""

import math
import re
import sys
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, status

RUBRIC_COUNT = 5
FINAL_ASSESSMENT_FIELDS = (
    ('final1', 'attendance'),
    ('final2', 'labWork'),
    ('final3', 'openEndedProject'),
    ('final4', 'labExam'),
    ('final5', 'totalMarks'),
)
REQUIRED_FIELDS_MESSAGE = 'Name, Roll Number, Register Number, and Subject are required'
NUMERIC_IDS_MESSAGE = 'Roll Number and Register Number must be numbers'
ID_RANGE_MESSAGE = 'Roll Number and Register Number must be positive whole numbers'

# Largest value a 64-bit INTEGER column holds.
MAX_ID = 2**63 - 1

_INT_PATTERN = re.compile(r'\s*([+-]?\d+)')
_FLOAT_PATTERN = re.compile(r'\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)')
_CHECKED_VALUES = {'on', 'true', '1', 'yes'}
_MAX_FLOAT_INT = int(sys.float_info.max)


@dataclass(frozen=True)
class FormSection:
    """Field naming scheme of one table of the logbook form."""

    key: str
    date_field: str
    name_field: str
    name_key: str
    co_field: str
    rubric_field: str
    total_field: str
    student_field: str
    faculty_field: str
    numbered: bool = True
    default_name: str | None = None

    def field(self, base: str, row: int) -> str:
        return f'{base}{row}'

    def rubric(self, row: int, rubric: int) -> str:
        return f'{self.rubric_field}{row}-{rubric}'

    def rubric_fields(self, row: int) -> list[str]:
        return [self.rubric(row, rubric) for rubric in range(1, RUBRIC_COUNT + 1)]


EXPERIMENTS = FormSection(
    key='experiments',
    date_field='date',
    name_field='experiment',
    name_key='experimentName',
    co_field='co',
    rubric_field='rubric',
    total_field='total',
    student_field='student',
    faculty_field='faculty',
)

OPEN_ENDED_PROJECT = FormSection(
    key='openEndedProject',
    date_field='t2date',
    name_field='t2experiment',
    name_key='projectName',
    co_field='t2co',
    rubric_field='t2rubric',
    total_field='t2total',
    student_field='t2student',
    faculty_field='t2faculty',
    numbered=False,
)

LAB_EXAMS = FormSection(
    key='labExams',
    date_field='t3date',
    name_field='exam',
    name_key='examName',
    co_field='t3co',
    rubric_field='t3rubric',
    total_field='t3total',
    student_field='t3student',
    faculty_field='t3faculty',
    default_name='Lab Exam {row}',
)

SECTIONS = (EXPERIMENTS, OPEN_ENDED_PROJECT, LAB_EXAMS)


def sanitize_input(value: Any) -> Any:
    """Strip angle brackets and surrounding whitespace from every string."""
    if isinstance(value, str):
        return value.replace('<', '').replace('>', '').strip()
    if isinstance(value, dict):
        return {key: sanitize_input(item) for key, item in value.items()}
    if isinstance(value, list):
        return [sanitize_input(item) for item in value]
    return value


def is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, str) and _INT_PATTERN.match(value) is not None


def parse_int(value: Any) -> int:
    """Leading-integer parse: ``'12abc'`` -> 12, ``'3.7'`` -> 3, junk -> 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str):
        match = _INT_PATTERN.match(value)
        # Anything past 32 characters is far outside every stored range.
        return int(match.group(1)[:32]) if match else 0
    return 0


def parse_float(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, int):
        return float(value) if abs(value) <= _MAX_FLOAT_INT else 0.0
    if isinstance(value, float):
        return value if math.isfinite(value) else 0.0
    if isinstance(value, str):
        match = _FLOAT_PATTERN.match(value)
        if not match:
            return 0.0
        number = float(match.group(1))
        return number if math.isfinite(number) else 0.0
    return 0.0


def is_checked(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() in _CHECKED_VALUES


def in_id_range(value: int) -> bool:
    return 0 < value <= MAX_ID


def _text(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


def has_row(form: dict, section: FormSection, row: int) -> bool:
    return bool(_text(form.get(section.field(section.date_field, row)))
                or _text(form.get(section.field(section.name_field, row))))


def parse_entry(form: dict, section: FormSection, row: int) -> dict:
    date = _text(form.get(section.field(section.date_field, row)))
    name = _text(form.get(section.field(section.name_field, row)))
    if not name and date and section.default_name:
        name = section.default_name.format(row=row)

    entry: dict[str, Any] = {}
    if section.numbered:
        entry['slNo'] = row
    entry['date'] = date
    entry[section.name_key] = name
    entry['co'] = parse_int(form.get(section.field(section.co_field, row)))
    for rubric, field_name in enumerate(section.rubric_fields(row), start=1):
        entry[f'rubric{rubric}'] = parse_int(form.get(field_name))
    entry['total'] = parse_int(form.get(section.field(section.total_field, row)))
    entry['studentSignature'] = is_checked(form.get(section.field(section.student_field, row)))
    entry['facultySignature'] = is_checked(form.get(section.field(section.faculty_field, row)))
    return entry


def parse_entries(form: dict, section: FormSection) -> list[dict]:
    """Read rows 1, 2, ... until a row has neither a date nor a name."""
    entries = []
    row = 1
    while has_row(form, section, row):
        entries.append(parse_entry(form, section, row))
        row += 1
    return entries


def parse_final_assessment(form: dict) -> dict:
    return {key: parse_float(form.get(field_name)) for field_name, key in FINAL_ASSESSMENT_FIELDS}


def parse_logbook_form(form: dict) -> dict:
    """Validate a submitted form and build the logbook document from it."""
    data = sanitize_input(dict(form or {}))

    if not all(data.get(field_name) for field_name in ('name', 'rollno', 'rgno', 'subject')):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=REQUIRED_FIELDS_MESSAGE)

    if not (is_numeric(data['rollno']) and is_numeric(data['rgno'])):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NUMERIC_IDS_MESSAGE)

    rollno = parse_int(data['rollno'])
    rgno = parse_int(data['rgno'])
    if not (in_id_range(rollno) and in_id_range(rgno)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=ID_RANGE_MESSAGE)

    semester = data.get('semester')
    if semester and is_numeric(semester) and in_id_range(parse_int(semester)):
        semester = parse_int(semester)
    else:
        semester = None

    return {
        'name': _text(data['name']),
        'rollno': rollno,
        'rgno': rgno,
        'subject': _text(data['subject']),
        'code': _text(data.get('code')),
        'semester': semester,
        'experiments': parse_entries(data, EXPERIMENTS),
        'openEndedProject': parse_entry(data, OPEN_ENDED_PROJECT, 1),
        'labExams': parse_entries(data, LAB_EXAMS),
        'finalAssessment': parse_final_assessment(data),
    }
