# See https://peps.python.org/pep-0655/#usage-in-python-3-11
from __future__ import annotations

import os
from typing import Iterable, Mapping

from attrs import field, frozen, validators

import httpx

from loguru import logger

from pyrsistent import PRecord, field as pfield, thaw, m, pmap
from pyrsistent.typing import PMap

from returns.pipeline import is_successful
from returns.result import Result, Success, Failure, safe

from ensino.acronym import generate_acronym, random_token
from ensino.api.common import \
    RequestFailure, \
    ResponseBodyItem, \
    response_items, \
    send_request

INSTITUTIONS_PATH = 'getAllInstituicaoEnsino'
ADD_INSTITUTION_PATH = 'addInstituicaoEnsino'
ASSOCIATIONS_PATH = 'getAllInstituicaoEnsinoCurso'
ADD_ASSOCIATION_PATH = 'AddInstituicaoEnsinoCurso'
COURSES_PATH = 'getAllCurso'
ADD_COURSE_PATH = 'addCurso'

# Fixed classification for every course this tool creates.
DEFAULT_FIELD_OF_STUDY_ID = 1
DEFAULT_ACADEMIC_LEVEL = 3
DEFAULT_COURSE_CATEGORY_ID = 8

def names_match(a:str, b:str) -> bool:
    return a.strip().lower() == b.strip().lower()

def optional_int(value) -> int | None:
    return None if value is None else int(value)

def parsed_records(parse, items:list[ResponseBodyItem]) -> list:
    '''Parses each item with ``parse``, skipping any the API returned malformed,
    e.g. with a null ID, so that one bad record cannot sink a whole lookup.'''
    records = []
    for item in items:
        match safe(parse)(item):
            case Success(record):
                records.append(record)
            case Failure(exception):
                logger.warning(f'Skipping unreadable record {item!r}: {exception!r}')
    return records

class Institution(PRecord):
    id = pfield(type=int, mandatory=True)
    name = pfield(type=str, mandatory=True)
    parent_institution_id = pfield(type=(int, type(None)), initial=None)

    @classmethod
    def from_item(cls, item:ResponseBodyItem) -> Institution:
        return cls(
            id=int(item['id']),
            name=str(item['nome']),
            parent_institution_id=optional_int(item.get('instituicaoPaiID')),
        )

class Course(PRecord):
    id = pfield(type=int, mandatory=True)
    designation = pfield(type=str, mandatory=True)

    @classmethod
    def from_item(cls, item:ResponseBodyItem) -> Course:
        return cls(
            id=int(item['id']),
            designation=str(item['designacao']),
        )

class Association(PRecord):
    institution_id = pfield(type=int, mandatory=True)
    course_id = pfield(type=int, mandatory=True)
    monthly_fee = pfield(type=(int, float), initial=0)

    @classmethod
    def from_item(cls, item:ResponseBodyItem) -> Association:
        return cls(
            institution_id=int(item['instituicaoEnsinoID']),
            course_id=int(item['cursoID']),
            monthly_fee=item.get('valorMensalidade') or 0,
        )

    def json_body(self) -> dict:
        return {
            'instituicaoEnsinoID': self.institution_id,
            'cursoID': self.course_id,
            'valorMensalidade': self.monthly_fee,
        }

class InstitutionPayload(PRecord):
    name = pfield(type=str, mandatory=True)
    acronym = pfield(type=str, mandatory=True)
    tax_identifier = pfield(type=str, mandatory=True)
    province_id = pfield(type=int, mandatory=True)
    municipality_id = pfield(type=int, mandatory=True)
    address = pfield(type=str, mandatory=True)
    phone = pfield(type=str, mandatory=True)
    email = pfield(type=str, mandatory=True)
    institution_type = pfield(type=int, mandatory=True)
    nature = pfield(type=int, mandatory=True)
    active = pfield(type=bool, initial=True)
    parent_institution_id = pfield(type=(int, type(None)), initial=None)

    def form_fields(self) -> list[tuple[str, str]]:
        '''Multipart form fields, in the names the API expects. None values are
        omitted, and everything else is sent as a string.'''
        fields = {
            'Nome': self.name,
            'Sigla': self.acronym,
            'NumIdentificacao': self.tax_identifier,
            'ProvinciaID': self.province_id,
            'MunicipioID': self.municipality_id,
            'Endereco': self.address,
            'Telefone': self.phone,
            'Email': self.email,
            'TipoInstituicao': self.institution_type,
            'Natureza': self.nature,
            'IsActive': self.active,
            'InstituicaoPaiID': self.parent_institution_id,
            'Foto': '',
            'DescricaoEmpresa': '',
        }
        return [
            (key, form_value(value))
            for key, value in fields.items()
            if value is not None
        ]

def form_value(value) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)

class CoursePayload(PRecord):
    designation = pfield(type=str, mandatory=True)
    acronym = pfield(type=str, mandatory=True)
    code = pfield(type=str, mandatory=True)
    field_of_study_id = pfield(type=int, initial=DEFAULT_FIELD_OF_STUDY_ID)
    academic_level = pfield(type=int, initial=DEFAULT_ACADEMIC_LEVEL)
    category_id = pfield(type=int, initial=DEFAULT_COURSE_CATEGORY_ID)

    @classmethod
    def for_name(cls, name:str) -> CoursePayload:
        '''Neither the fallback acronym nor the code is guaranteed unique. Two
        courses may end up with the same values, and nothing here checks.'''
        return cls(
            designation=name.upper(),
            acronym=generate_acronym(name) or random_token(4),
            code=random_token(6),
        )

    def json_body(self) -> dict:
        return {
            'designacao': self.designation,
            'sigla': self.acronym,
            'areaFormacaoID': self.field_of_study_id,
            'nivelAcademico': self.academic_level,
            'codigo': self.code,
            'categoriaInstituicaoEnsinoID': self.category_id,
        }

class NotFound(PRecord):
    name = pfield(type=str, mandatory=True)
    parent_id = pfield(type=(int, type(None)), initial=None)

    @property
    def message(self) -> str:
        if self.parent_id is None:
            return f'not found: {self.name}'
        return f'not found: {self.name} (parent ID {self.parent_id})'

class Unresolved(NotFound):
    '''A create request succeeded, but a lookup by the same name still found nothing.'''
    @property
    def message(self) -> str:
        return f'could not resolve the ID after creating: {self.name}'

class AlreadyLinked(PRecord):
    institution_id = pfield(type=int, mandatory=True)
    course_id = pfield(type=int, mandatory=True)

    @property
    def message(self) -> str:
        return f'course ID {self.course_id} is already linked to institution ID {self.institution_id}'

class MissingInstitutionId(PRecord):
    course_id = pfield(type=int, mandatory=True)

    @property
    def message(self) -> str:
        return f'institution ID is undefined, so course ID {self.course_id} could not be linked'

LookupResult = Result[int, NotFound | RequestFailure]
LinkResult = Result[Association, AlreadyLinked | MissingInstitutionId | RequestFailure]

def default_page_size() -> int:
    return int(os.environ.get('ENSINO_PAGE_SIZE', 100))

@frozen(kw_only=True)
class Client:
    '''Lookups and creates against the institutions/courses directory API.

    Only ``base_url`` is required, and it can be set with the ``BASE_URL``
    environment variable as well as a constructor parameter.

    Client instances are immutable. To use a different configuration, construct
    a different Client.

    Every method returns a ``returns.result.Result``. Network failures and
    non-2xx responses never raise: they come back as ``Failure`` values holding
    one of the failure records above, and callers decide whether to continue.
    '''

    httpx_client: httpx.Client = field(init=False)
    '''An httpx.Client object, built from the other attributes.'''

    base_url: str = field(
        factory=lambda: os.environ.get('BASE_URL'),
        validator=validators.instance_of(str)
    )
    '''Directory API entry point URL. Required. Default: environment variable BASE_URL'''

    timeout: httpx.Timeout = httpx.Timeout(10.0, connect=3.0, read=60.0)
    '''httpx client timeouts. Default: ``httpx.Timeout(10.0, connect=3.0, read=60.0)``.'''

    page_size: int = field(
        factory=default_page_size,
        validator=validators.instance_of(int)
    )
    '''Page size for name lookups. Lookups read only the first page, so this must
    cover every record whose name contains the one requested. Default: 100'''

    headers: PMap = pmap({
        'Accept': 'application/json',
        'Accept-Charset': 'utf-8',
    })
    '''HTTP headers to be sent on every request.'''

    transport: httpx.BaseTransport | None = None
    '''Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.'''

    def __attrs_post_init__(self) -> None:
        object.__setattr__(
            self,
            'httpx_client',
            httpx.Client(
                base_url=self.base_url.rstrip('/') + '/',
                headers=thaw(self.headers),
                timeout=self.timeout,
                transport=self.transport,
            )
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, exc_tb):
        self.httpx_client.close()

    def get(self, resource_path:str, params:PMap = m()) -> Result[httpx.Response, RequestFailure]:
        prepared_request = self.httpx_client.build_request(
            'GET',
            resource_path,
            params=thaw(params),
        )
        return send_request(self.httpx_client, prepared_request, resource_path)

    def post(self, resource_path:str, json:Mapping | None = None, files:Iterable | None = None) -> Result[httpx.Response, RequestFailure]:
        prepared_request = self.httpx_client.build_request(
            'POST',
            resource_path,
            json=json,
            files=files,
        )
        return send_request(self.httpx_client, prepared_request, resource_path)

    def get_items(self, resource_path:str, params:PMap = m()) -> Result[list[ResponseBodyItem], RequestFailure]:
        return self.get(resource_path, params=params).bind(
            lambda response: response_items(response, 'GET', resource_path)
        )

    def find_institution_id(self, name:str, parent_id:int | None = None) -> LookupResult:
        params = m(Nome=name.strip(), PageNumber=1, PageSize=self.page_size)
        if parent_id is not None:
            params = params.set('InstituicaoPaiID', parent_id)

        match self.get_items(INSTITUTIONS_PATH, params=params):
            case Success(items):
                found = next(
                    (
                        institution for institution in parsed_records(Institution.from_item, items)
                        if names_match(institution.name, name)
                        # Universities are top-level, so a same-named sub-unit is not one:
                        and (parent_id is not None or institution.parent_institution_id is None)
                    ),
                    None
                )
                if found is None:
                    logger.warning(f'Institution not found: {name}')
                    return Failure(NotFound(name=name, parent_id=parent_id))
                logger.info(f'ID found for "{name}": {found.id}')
                return Success(found.id)
            case Failure(failure):
                logger.error(f'Failed to look up institution: {failure.message}')
                return Failure(failure)

    def create_institution(self, payload:InstitutionPayload, is_sub_unit:bool = False) -> LookupResult:
        match self.post(ADD_INSTITUTION_PATH, files=[
            # A (None, value) tuple makes httpx send a plain multipart form field.
            (key, (None, value)) for key, value in payload.form_fields()
        ]):
            case Success(_):
                logger.info(f'{"Sub-unit" if is_sub_unit else "University"} created: {payload.name}')
            case Failure(failure):
                logger.error(f'Failed to create institution: {failure.message}')
                return Failure(failure)

        # The create response carries no usable ID, so we look it up again:
        result = self.find_institution_id(payload.name, payload.parent_institution_id)
        if not is_successful(result):
            logger.error(f'Could not retrieve the ID for: {payload.name}')
            return Failure(Unresolved(name=payload.name, parent_id=payload.parent_institution_id))
        return result

    def course_already_linked(self, institution_id:int, course_id:int) -> Result[bool, RequestFailure]:
        match self.get_items(ASSOCIATIONS_PATH):
            case Success(items):
                return Success(any(
                    association.institution_id == institution_id and association.course_id == course_id
                    for association in parsed_records(Association.from_item, items)
                ))
            case Failure(failure):
                logger.error(f'Failed to check course association: {failure.message}')
                return Failure(failure)

    def link_course(self, institution_id:int | None, course_id:int, monthly_fee:int | float = 0) -> LinkResult:
        if not institution_id:
            failure = MissingInstitutionId(course_id=course_id)
            logger.error(failure.message)
            return Failure(failure)

        # If the check itself fails, we go ahead and try to link anyway:
        if self.course_already_linked(institution_id, course_id).value_or(False):
            failure = AlreadyLinked(institution_id=institution_id, course_id=course_id)
            logger.warning(failure.message)
            return Failure(failure)

        association = Association(
            institution_id=institution_id,
            course_id=course_id,
            monthly_fee=monthly_fee,
        )
        match self.post(ADD_ASSOCIATION_PATH, json=association.json_body()):
            case Success(_):
                logger.info(f'Course ID {course_id} linked to institution ID {institution_id}')
                return Success(association)
            case Failure(failure):
                logger.error(f'Failed to link course: {failure.message}')
                return Failure(failure)

    def find_course_id(self, name:str) -> LookupResult:
        params = m(Designacao=name.strip(), PageNumber=1, PageSize=self.page_size)

        match self.get_items(COURSES_PATH, params=params):
            case Success(items):
                found = next(
                    (
                        course for course in parsed_records(Course.from_item, items)
                        if names_match(course.designation, name)
                    ),
                    None
                )
                if found is None:
                    logger.warning(f'Course not found: {name}')
                    return Failure(NotFound(name=name))
                logger.info(f'Course found: {found.designation} (ID: {found.id})')
                return Success(found.id)
            case Failure(failure):
                logger.error(f'Failed to look up course: {failure.message}')
                return Failure(failure)

    def create_course(self, name:str) -> LookupResult:
        payload = CoursePayload.for_name(name)
        match self.post(ADD_COURSE_PATH, json=payload.json_body()):
            case Success(_):
                logger.info(f'Course created: {name}')
            case Failure(failure):
                logger.error(f'Failed to create course: {failure.message}')
                return Failure(failure)

        result = self.find_course_id(name)
        if not is_successful(result):
            return Failure(Unresolved(name=name))
        return result
