"""Field-level merge of a new logbook submission into a stored logbook.

A later submission only fills in: every field is overwritten when the
incoming value is truthy and kept otherwise. Repeated partial saves converge
on a complete record, and a value, once set, cannot be cleared back to an
empty string, zero or an unchecked signature.
"""

from labportal.records.form_parser import (
    EXPERIMENTS,
    FINAL_ASSESSMENT_FIELDS,
    LAB_EXAMS,
    OPEN_ENDED_PROJECT,
    FormSection,
)

RUBRIC_KEYS = ('rubric1', 'rubric2', 'rubric3', 'rubric4', 'rubric5')
FINAL_ASSESSMENT_KEYS = tuple(key for _, key in FINAL_ASSESSMENT_FIELDS)
HEADER_KEYS = ('name', 'code', 'semester')


def entry_keys(section: FormSection) -> tuple[str, ...]:
    return ('date', section.name_key, 'co', *RUBRIC_KEYS, 'total', 'studentSignature', 'facultySignature')


def merge_entry(existing: dict | None, incoming: dict | None, keys) -> dict:
    merged = dict(existing or {})
    for key in keys:
        value = (incoming or {}).get(key)
        if value:
            merged[key] = value
    return merged


def merge_entries(existing: list[dict] | None, incoming: list[dict] | None, section: FormSection) -> list[dict]:
    """Match rows by ``slNo``; update matches, append new rows that carry a date or a name."""
    merged = [dict(entry) for entry in existing or []]
    keys = entry_keys(section)

    for new_entry in incoming or []:
        position = next(
            (index for index, entry in enumerate(merged) if entry.get('slNo') == new_entry.get('slNo')),
            None,
        )
        if position is not None:
            merged[position] = merge_entry(merged[position], new_entry, keys)
        elif new_entry.get('date') or new_entry.get(section.name_key):
            merged.append(dict(new_entry))

    return merged


def merge_logbook(existing: dict, incoming: dict) -> dict:
    """Return ``existing`` with the truthy parts of ``incoming`` laid over it.

    The identity fields (roll number, register number, subject) are never
    touched: they are what matched the two documents in the first place.
    """
    merged = dict(existing)

    for key in HEADER_KEYS:
        if incoming.get(key):
            merged[key] = incoming[key]

    merged['experiments'] = merge_entries(existing.get('experiments'), incoming.get('experiments'), EXPERIMENTS)
    merged['openEndedProject'] = merge_entry(
        existing.get('openEndedProject'),
        incoming.get('openEndedProject'),
        entry_keys(OPEN_ENDED_PROJECT),
    )
    merged['labExams'] = merge_entries(existing.get('labExams'), incoming.get('labExams'), LAB_EXAMS)
    merged['finalAssessment'] = merge_entry(
        existing.get('finalAssessment'),
        incoming.get('finalAssessment'),
        FINAL_ASSESSMENT_KEYS,
    )
    return merged
