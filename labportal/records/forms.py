"""Form-side logbook logic: derived totals, row checks and populating fields.

These work on the same flat field dictionaries the browser form posts, so a
client can prepare a submission exactly the way the web page does.
"""

import re

from labportal.records.form_parser import (
    EXPERIMENTS,
    FINAL_ASSESSMENT_FIELDS,
    LAB_EXAMS,
    OPEN_ENDED_PROJECT,
    SECTIONS,
    FormSection,
    parse_float,
)

FINAL_TOTAL_FIELD = 'final5'
FINAL_COMPONENT_FIELDS = ('final1', 'final2', 'final3', 'final4')


class IncompleteRowError(ValueError):
    def __init__(self, section: str, row: int, missing: list[str]):
        self.section = section
        self.row = row
        self.missing = missing
        super().__init__(f'Row {row} is incomplete. Missing fields: {", ".join(missing)}')


def _number(value: float) -> int | float:
    return int(value) if float(value).is_integer() else value


def _is_blank(value) -> bool:
    return value is None or str(value).strip() == ''


def section_rows(form: dict, section: FormSection) -> list[int]:
    """Row numbers that have at least one field present in ``form``."""
    if not section.numbered:
        return [1]
    plain_fields = '|'.join(
        re.escape(name)
        for name in (
            section.date_field,
            section.name_field,
            section.co_field,
            section.total_field,
            section.student_field,
            section.faculty_field,
        )
    )
    row_pattern = re.compile(rf'^(?:{plain_fields})(\d+)$')
    rubric_pattern = re.compile(rf'^{re.escape(section.rubric_field)}(\d+)-\d+$')

    rows = set()
    for key in form:
        match = row_pattern.match(key) or rubric_pattern.match(key)
        if match:
            rows.add(int(match.group(1)))
    return sorted(rows)


def rubric_total(form: dict, section: FormSection, row: int) -> int | float:
    return _number(sum(parse_float(form.get(name)) for name in section.rubric_fields(row)))


def final_assessment_total(form: dict) -> int | float:
    return _number(sum(parse_float(form.get(name)) for name in FINAL_COMPONENT_FIELDS))


def fill_totals(form: dict) -> dict:
    """Return a copy of ``form`` with every row total and the final total filled in."""
    filled = dict(form)
    for section in SECTIONS:
        for row in section_rows(form, section):
            filled[section.field(section.total_field, row)] = rubric_total(form, section, row)
    filled[FINAL_TOTAL_FIELD] = final_assessment_total(form)
    return filled


def required_row_fields(section: FormSection, row: int) -> list[str]:
    return [
        section.field(section.date_field, row),
        section.field(section.name_field, row),
        section.field(section.co_field, row),
        *section.rubric_fields(row),
    ]


def validate_row_completeness(form: dict) -> None:
    """A row that has any data must have its date, name, CO and all rubrics.

    Raises IncompleteRowError for the first row that does not.
    """
    for section in SECTIONS:
        for row in section_rows(form, section):
            names = required_row_fields(section, row)
            if all(_is_blank(form.get(name)) for name in names):
                continue
            missing = [name for name in names if _is_blank(form.get(name))]
            if missing:
                raise IncompleteRowError(section.key, row, missing)


def _blank_if_falsy(value):
    return value if value else ''


def _entry_fields(entry: dict, section: FormSection, row: int) -> dict:
    fields = {
        section.field(section.date_field, row): _blank_if_falsy(entry.get('date')),
        section.field(section.name_field, row): _blank_if_falsy(entry.get(section.name_key)),
        section.field(section.co_field, row): _blank_if_falsy(entry.get('co')),
        section.field(section.total_field, row): _blank_if_falsy(entry.get('total')),
    }
    for rubric, name in enumerate(section.rubric_fields(row), start=1):
        fields[name] = _blank_if_falsy(entry.get(f'rubric{rubric}'))
    # Unchecked boxes are simply absent from a submitted form.
    if entry.get('studentSignature'):
        fields[section.field(section.student_field, row)] = 'on'
    if entry.get('facultySignature'):
        fields[section.field(section.faculty_field, row)] = 'on'
    return fields


def logbook_to_form(record: dict) -> dict:
    """Render a stored logbook back into form field names."""
    form = {
        'name': record.get('name') or '',
        'rollno': record.get('rollno') or '',
        'rgno': record.get('rgno') or '',
        'subject': record.get('subject') or '',
        'code': record.get('code') or '',
        'semester': record.get('semester') or '',
    }

    for index, entry in enumerate(record.get('experiments') or []):
        form.update(_entry_fields(entry, EXPERIMENTS, entry.get('slNo') or index + 1))

    project = record.get('openEndedProject')
    if project:
        form.update(_entry_fields(project, OPEN_ENDED_PROJECT, 1))

    for index, entry in enumerate(record.get('labExams') or []):
        form.update(_entry_fields(entry, LAB_EXAMS, entry.get('slNo') or index + 1))

    final_assessment = record.get('finalAssessment') or {}
    for field_name, key in FINAL_ASSESSMENT_FIELDS:
        form[field_name] = _blank_if_falsy(final_assessment.get(key))

    return form
