import argparse
import json
from http import HTTPStatus

import pytest
import requests


def build_response(status=200, content=b'', url='http://www.example.com/', reason=None, payload=None,
                   headers=None):
    response = requests.Response()
    response.status_code = status
    response.reason = reason or HTTPStatus(status).phrase
    if payload is not None:
        content = json.dumps(payload).encode()
    response._content = content.encode() if isinstance(content, str) else content
    response.url = url
    response.headers.update(headers or {})
    response.encoding = 'utf-8'
    return response


@pytest.fixture
def make_response():
    """Factory for requests.Response objects"""
    return build_response


@pytest.fixture
def http_args():
    """Namespace with the options added by add_http_arguments"""
    def factory(**overrides):
        values = dict(host='www.example.com', port=None, path='/status', login=None, password=None,
                      ssl=False, ip=None, insecure=False, debug=False, timeout=15, verbose=False,
                      warning=None, critical=None)
        values.update(overrides)
        return argparse.Namespace(**values)
    return factory
