# See https://peps.python.org/pep-0655/#usage-in-python-3-11
from __future__ import annotations

import csv
from os import PathLike
from typing import Mapping

from pyrsistent import PRecord, field as pfield

UNIVERSITY_COLUMN = 'Universidade / Instituto'
SUB_UNIT_COLUMN = 'Faculdade / Unidade Orgânica'
COURSE_COLUMN = 'Curso'

# The export uses an em dash where a university has no sub-unit.
SUB_UNIT_PLACEHOLDER = '—'

class Row(PRecord):
    university = pfield(type=str, initial='')
    sub_unit = pfield(type=str, initial='')
    course = pfield(type=str, initial='')
    line_number = pfield(type=int, initial=0)
    '''Line in the CSV file where the record ended. Only used in log messages.'''

    @classmethod
    def from_csv_record(cls, record:Mapping, line_number:int = 0) -> Row:
        return cls(
            university=record.get(UNIVERSITY_COLUMN) or '',
            sub_unit=record.get(SUB_UNIT_COLUMN) or '',
            course=record.get(COURSE_COLUMN) or '',
            line_number=line_number,
        )

    def trimmed(self) -> Row:
        return self.set(
            university=self.university.strip(),
            sub_unit=self.sub_unit.strip(),
            course=self.course.strip(),
        )

    @property
    def skippable(self) -> bool:
        return (
            not self.university
            or not self.sub_unit
            or not self.course
            or self.sub_unit == SUB_UNIT_PLACEHOLDER
        )

def read_rows(path:str | PathLike) -> list[Row]:
    '''Reads every record in the file before returning any of them.'''
    # utf-8-sig, because spreadsheet exports often start with a byte order mark.
    with open(path, mode='r', encoding='utf-8-sig', newline='') as file:
        reader = csv.DictReader(file)
        return [
            Row.from_csv_record(record, line_number=reader.line_num)
            for record in reader
        ]
