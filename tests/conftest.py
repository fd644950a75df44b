from pathlib import Path
import itertools
import json
import re
import sys

import httpx
import pytest
from loguru import logger

package_path = Path(__file__).parents[1]
sys.path.append(str(package_path / 'src'))

from ensino.api.directory import Client

def pytest_addoption(parser):
    parser.addoption(
        '--integration',
        action='store_true',
        default=False,
        help='Run integration tests. Requires BASE_URL in the environment or a .env file.'
    )

def pytest_configure(config):
    config.addinivalue_line('markers', 'integration: mark test as an integration test')

def pytest_collection_modifyitems(config, items):
    if config.getoption('--integration'):
        # --integration given in cli: do not skip integration tests
        return
    skip_integration = pytest.mark.skip(reason='need --integration option to run')
    for item in items:
        if 'integration' in item.keywords:
            item.add_marker(skip_integration)

def multipart_fields(request:httpx.Request) -> dict[str, str]:
    boundary = request.headers['content-type'].split('boundary=')[1].encode()
    fields = {}
    for part in request.content.split(b'--' + boundary):
        head, separator, body = part.partition(b'\r\n\r\n')
        name = re.search(rb'name="([^"]*)"', head)
        if separator and name:
            fields[name.group(1).decode()] = body.removesuffix(b'\r\n').decode('utf-8')
    return fields

class FakeDirectory:
    '''In-memory stand-in for the directory API, served through httpx.MockTransport.

    Like the real API, name filters are case-insensitive "contains" matches, and
    create responses carry no IDs.
    '''

    def __init__(self):
        self.institutions = []
        self.courses = []
        self.associations = []
        self.requests = []
        self.ids = itertools.count(1)
        self.bare_lists = False
        '''If True, list responses are bare JSON arrays instead of ``{"data": [...]}``.'''
        self.errors = {}
        '''Maps a resource name to an httpx.Response to return instead of the normal one.'''
        self.unreachable = set()
        '''Resource names for which the transport raises a ConnectError.'''
        self.forgetful = set()
        '''Create resource names that respond 200 but store nothing.'''

    def add_institution(self, name, parent_id=None, **extra):
        institution = {'id': next(self.ids), 'nome': name, 'instituicaoPaiID': parent_id, **extra}
        self.institutions.append(institution)
        return institution['id']

    def add_course(self, designation, **extra):
        course = {'id': next(self.ids), 'designacao': designation, **extra}
        self.courses.append(course)
        return course['id']

    def add_association(self, institution_id, course_id, monthly_fee=0):
        self.associations.append({
            'instituicaoEnsinoID': institution_id,
            'cursoID': course_id,
            'valorMensalidade': monthly_fee,
        })

    def resource(self, request):
        return request.url.path.rsplit('/', 1)[-1]

    def calls(self, method=None, resource=None):
        return [
            request for request in self.requests
            if (method is None or request.method == method)
            and (resource is None or self.resource(request) == resource)
        ]

    @property
    def creates(self):
        return self.calls(method='POST')

    def list_response(self, items):
        return httpx.Response(200, json=items if self.bare_lists else {'data': items})

    def handler(self, request:httpx.Request) -> httpx.Response:
        self.requests.append(request)
        resource = self.resource(request)
        if resource in self.unreachable:
            raise httpx.ConnectError('connection refused', request=request)
        if resource in self.errors:
            return self.errors[resource]

        params = request.url.params
        match (request.method, resource):
            case ('GET', 'getAllInstituicaoEnsino'):
                name = params.get('Nome', '').lower()
                parent_id = params.get('InstituicaoPaiID')
                return self.list_response([
                    institution for institution in self.institutions
                    if name in institution['nome'].lower()
                    and (parent_id is None or institution['instituicaoPaiID'] == int(parent_id))
                ][:int(params.get('PageSize', 10))])
            case ('POST', 'addInstituicaoEnsino'):
                fields = multipart_fields(request)
                if resource not in self.forgetful:
                    parent_id = fields.get('InstituicaoPaiID')
                    self.add_institution(
                        fields['Nome'],
                        parent_id=int(parent_id) if parent_id else None,
                        form=fields,
                    )
                return httpx.Response(200, json={'retorno': {'mensagem': 'Registo inserido'}})
            case ('GET', 'getAllInstituicaoEnsinoCurso'):
                return self.list_response(list(self.associations))
            case ('POST', 'AddInstituicaoEnsinoCurso'):
                body = json.loads(request.content)
                self.add_association(body['instituicaoEnsinoID'], body['cursoID'], body['valorMensalidade'])
                return httpx.Response(200, json={'retorno': {'mensagem': 'Registo inserido'}})
            case ('GET', 'getAllCurso'):
                designation = params.get('Designacao', '').lower()
                return self.list_response([
                    course for course in self.courses
                    if designation in course['designacao'].lower()
                ][:int(params.get('PageSize', 10))])
            case ('POST', 'addCurso'):
                body = json.loads(request.content)
                if resource not in self.forgetful:
                    self.add_course(body['designacao'], body=body)
                return httpx.Response(200, json={'retorno': {'mensagem': 'Registo inserido'}})
        return httpx.Response(404, json={'retorno': {'mensagem': f'Unknown resource: {resource}'}})

@pytest.fixture
def directory():
    return FakeDirectory()

@pytest.fixture
def client(directory):
    with Client(
        base_url='https://directory.test/api',
        page_size=100,
        transport=httpx.MockTransport(directory.handler),
    ) as client:
        yield client

@pytest.fixture
def log_messages():
    '''(level name, message) for every loguru message logged during the test.'''
    messages = []
    handler_id = logger.add(
        lambda message: messages.append((message.record['level'].name, message.record['message'])),
        level='DEBUG',
    )
    yield messages
    logger.remove(handler_id)
