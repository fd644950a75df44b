from typing import Mapping

import httpx

from pyrsistent import PRecord, field as pfield

from returns.result import Result, Success, Failure, safe

RequestResult = Result[httpx.Response, Exception]
ResponseBody = Mapping | list
ResponseBodyItem = Mapping

class ResponseBodyParser:
    '''The directory API wraps lists in one of two envelopes: either a bare
    JSON array, or an object with the array in a ``data`` field.'''
    @staticmethod
    def items(body:ResponseBody) -> list[ResponseBodyItem]:
        if isinstance(body, list):
            return body
        data = body.get('data') if isinstance(body, Mapping) else None
        return data if isinstance(data, list) else []

    @staticmethod
    def server_message(body:ResponseBody) -> str | None:
        '''Error responses may carry a message nested as ``retorno.mensagem``.'''
        if not isinstance(body, Mapping):
            return None
        retorno = body.get('retorno')
        if isinstance(retorno, Mapping) and retorno.get('mensagem'):
            return str(retorno['mensagem'])
        return None

class ResponseParser:
    @staticmethod
    def body(response:httpx.Response) -> ResponseBody:
        return response.json()

    @staticmethod
    @safe
    def items(response:httpx.Response) -> list[ResponseBodyItem]:
        return ResponseBodyParser.items(
            ResponseParser.body(response)
        )

    @staticmethod
    def server_message(response:httpx.Response) -> str | None:
        try:
            body = ResponseParser.body(response)
        except ValueError:
            # Not JSON, so there is no nested message to prefer.
            return None
        return ResponseBodyParser.server_message(body)

class RequestFailure(PRecord):
    method = pfield(type=str, mandatory=True)
    resource_path = pfield(type=str, mandatory=True)

    @property
    def message(self) -> str:
        return f'{self.method} {self.resource_path} failed'

class RequestResponseFailure(RequestFailure):
    response = pfield(type=httpx.Response, mandatory=True)

    @property
    def message(self) -> str:
        server_message = ResponseParser.server_message(self.response)
        if server_message:
            return server_message
        return f'{self.method} {self.resource_path} returned HTTP {self.response.status_code} {self.response.reason_phrase}'

class ResponseValidationError(RequestResponseFailure):
    validation_error = pfield(type=Exception, mandatory=True)

    @property
    def message(self) -> str:
        return f'{self.method} {self.resource_path} returned an unreadable body: {self.validation_error!r}'

class RequestNonresponseFailure(RequestFailure):
    exception = pfield(type=Exception, mandatory=True)

    @property
    def message(self) -> str:
        return f'{self.method} {self.resource_path} failed: {self.exception!r}'

@safe
def attempt_request(
    httpx_client: httpx.Client,
    prepared_request: httpx.Request,
) -> RequestResult:
    return httpx_client.send(prepared_request)

def send_request(
    httpx_client: httpx.Client,
    prepared_request: httpx.Request,
    resource_path: str,
) -> Result[httpx.Response, RequestFailure]:
    '''Sends the request exactly once. There are no retries: every failure is
    final for this request, and is returned rather than raised.'''
    match attempt_request(httpx_client, prepared_request):
        case Success(response) if response.is_success:
            return Success(response)
        case Success(response):
            return Failure(
                RequestResponseFailure(
                    method=prepared_request.method,
                    resource_path=resource_path,
                    response=response,
                )
            )
        case Failure(exception):
            return Failure(
                RequestNonresponseFailure(
                    method=prepared_request.method,
                    resource_path=resource_path,
                    exception=exception,
                )
            )

def response_items(
    response: httpx.Response,
    method: str,
    resource_path: str,
) -> Result[list[ResponseBodyItem], RequestFailure]:
    match ResponseParser.items(response):
        case Success(items):
            return Success(items)
        case Failure(exception):
            return Failure(
                ResponseValidationError(
                    method=method,
                    resource_path=resource_path,
                    response=response,
                    validation_error=exception,
                )
            )
