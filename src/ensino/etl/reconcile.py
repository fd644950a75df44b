'''Reconciles one CSV row against the directory API.

For each row we make sure the university exists, then the sub-unit under it,
then the course, and finally that the course is linked to the sub-unit. Missing
records are created with synthesized defaults. Nothing is ever updated or
deleted.
'''
# See https://peps.python.org/pep-0655/#usage-in-python-3-11
from __future__ import annotations

import re
from typing import Callable

from loguru import logger

from pyrsistent import PRecord, field as pfield

from returns.pipeline import is_successful
from returns.result import Result, Success, Failure

from ensino.acronym import generate_acronym, random_token
from ensino.api.directory import \
    AlreadyLinked, \
    Client, \
    InstitutionPayload, \
    LookupResult, \
    NotFound
from ensino.etl.rows import Row

# Defaults for fields the CSV export does not have:
DEFAULT_PROVINCE_ID = 3
DEFAULT_MUNICIPALITY_ID = 2607
DEFAULT_ADDRESS = 'ENDERECO GENÉRICO'
DEFAULT_PHONE = '923000000'
DEFAULT_EMAIL_DOMAIN = 'example.ao'
DEFAULT_INSTITUTION_TYPE = 1
DEFAULT_INSTITUTION_NATURE = 1

class RowOutcome(PRecord):
    row = pfield(type=Row, mandatory=True)
    sub_unit_id = pfield(type=int, mandatory=True)
    course_id = pfield(type=int, mandatory=True)
    linked = pfield(type=bool, mandatory=True)
    '''False if the course was already linked to the sub-unit before this run.'''

class RowFailure(PRecord):
    row = pfield(type=Row, mandatory=True)

    @property
    def message(self) -> str:
        return f'row {self.row.line_number} failed'

class RowSkipped(RowFailure):
    @property
    def message(self) -> str:
        return f'row {self.row.line_number} skipped: missing university, sub-unit or course'

class RowAbandoned(RowFailure):
    reason = pfield(type=str, mandatory=True)

    @property
    def message(self) -> str:
        return f'row {self.row.line_number} abandoned: {self.reason}'

class RowError(RowFailure):
    exception = pfield(type=Exception, mandatory=True)

    @property
    def message(self) -> str:
        return f'row {self.row.line_number} raised {self.exception!r}'

RowResult = Result[RowOutcome, RowFailure]

def default_email(name:str) -> str:
    return re.sub(r'\s+', '', name).lower() + '@' + DEFAULT_EMAIL_DOMAIN

def institution_payload(name:str, parent_id:int | None = None) -> InstitutionPayload:
    '''Builds a create payload for an institution the CSV knows only by name.

    The identification number is random, and the acronym may collide with that
    of another institution. Neither is checked for uniqueness.
    '''
    return InstitutionPayload(
        name=name.upper(),
        acronym=generate_acronym(name) or name[:5].upper(),
        tax_identifier=random_token(8),
        province_id=DEFAULT_PROVINCE_ID,
        municipality_id=DEFAULT_MUNICIPALITY_ID,
        address=DEFAULT_ADDRESS,
        phone=DEFAULT_PHONE,
        email=default_email(name),
        institution_type=DEFAULT_INSTITUTION_TYPE,
        nature=DEFAULT_INSTITUTION_NATURE,
        active=True,
        parent_institution_id=parent_id,
    )

def create_if_not_found(result:LookupResult, create:Callable[[], LookupResult]) -> LookupResult:
    '''Only a lookup that positively found nothing leads to a create. A lookup
    that failed for any other reason is returned as is.'''
    match result:
        case Failure(NotFound()):
            return create()
        case _:
            return result

def abandon(row:Row, reason:str) -> RowResult:
    failure = RowAbandoned(row=row, reason=reason)
    logger.error(failure.message)
    return Failure(failure)

def ensure_university(client:Client, name:str) -> LookupResult:
    return create_if_not_found(
        client.find_institution_id(name),
        lambda: client.create_institution(institution_payload(name), is_sub_unit=False),
    )

def ensure_sub_unit(client:Client, name:str, university_name:str, university_id:int) -> LookupResult:
    result = client.find_institution_id(name, university_id)
    match result:
        case Failure(NotFound()):
            pass
        case _:
            return result

    # Check again, in case the university ID changed since we resolved it:
    parent_id = client.find_institution_id(university_name).value_or(university_id)
    logger.info(f'Creating sub-unit {name} under university ID {parent_id}')
    return client.create_institution(
        institution_payload(name, parent_id=parent_id),
        is_sub_unit=True,
    ).lash(
        # One more lookup, in case the create failed only because the sub-unit
        # now exists:
        lambda _: client.find_institution_id(name, parent_id)
    )

def ensure_course(client:Client, name:str) -> LookupResult:
    return create_if_not_found(
        client.find_course_id(name),
        lambda: client.create_course(name),
    )

def _reconcile(client:Client, row:Row) -> RowResult:
    university_result = ensure_university(client, row.university)
    if not is_successful(university_result):
        return abandon(row, f'university neither found nor created: {row.university}')
    university_id = university_result.unwrap()

    sub_unit_result = ensure_sub_unit(client, row.sub_unit, row.university, university_id)
    if not is_successful(sub_unit_result):
        return abandon(row, f'sub-unit neither found nor created: {row.sub_unit}')
    sub_unit_id = sub_unit_result.unwrap()

    course_result = ensure_course(client, row.course)
    if not is_successful(course_result):
        return abandon(row, f'course neither found nor created: {row.course}')
    course_id = course_result.unwrap()

    match client.link_course(sub_unit_id, course_id):
        case Success(_):
            linked = True
        case Failure(AlreadyLinked()):
            linked = False
        case Failure(failure):
            return abandon(row, f'course could not be linked: {failure.message}')

    return Success(
        RowOutcome(
            row=row,
            sub_unit_id=sub_unit_id,
            course_id=course_id,
            linked=linked,
        )
    )

def reconcile_row(client:Client, row:Row) -> RowResult:
    '''Never raises. Whatever goes wrong, the failure is confined to this row.'''
    row = row.trimmed()
    if row.skippable:
        return Failure(RowSkipped(row=row))
    try:
        return _reconcile(client, row)
    except Exception as exception:
        logger.opt(exception=exception).error(f'Failed to process row {row.line_number}: {exception}')
        return Failure(RowError(row=row, exception=exception))
