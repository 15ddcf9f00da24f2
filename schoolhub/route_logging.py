from __future__ import annotations

import uuid

from fastapi.routing import APIRoute
from starlette.requests import Request

from schoolhub.request_context import current_endpoint, current_request_id


class EndpointNameRoute(APIRoute):
    """Labels every request with its route template and a request id.

    The labels feed the slow-query logger in ``schoolhub.db`` and are echoed
    back in the ``X-Request-ID`` response header.
    """

    def get_route_handler(self):
        original_handler = super().get_route_handler()

        async def custom_handler(request: Request):
            request_id = request.headers.get('x-request-id') or uuid.uuid4().hex
            endpoint_token = current_endpoint.set(f"{request.method} {self.path}")
            request_token = current_request_id.set(request_id)
            try:
                response = await original_handler(request)
                response.headers['X-Request-ID'] = request_id
                return response
            finally:
                current_request_id.reset(request_token)
                current_endpoint.reset(endpoint_token)

        return custom_handler
