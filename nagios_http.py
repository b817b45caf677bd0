#!/usr/bin/env python3
"""
HTTP helpers shared by the web service check plugins.
Builds URLs and requests sessions with optional basic auth, name based
virtual host support (connect to an IP, send the host name) and request
dumps for debugging.

Dependencies:
- requests
- urllib3
- lxml

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import time
from typing import Dict, Optional, Tuple
from urllib.parse import urlunsplit

import lxml.html
import requests
import urllib3
from requests.adapters import HTTPAdapter

from nagios_common import NAGIOS_CRITICAL, PluginExit

DEFAULT_USER_AGENT = "Nagios-Service-Checks/1.0"


class FormNotFound(LookupError):
    """The requested HTML form is not part of the page"""


class HostHeaderSSLAdapter(HTTPAdapter):
    """Use the virtual host name for SNI and certificate validation

    Needed when the connection goes to an IP address while the certificate
    is issued for the host name sent in the Host header.
    """

    def __init__(self, server_hostname: str, **kwargs):
        self.server_hostname = server_hostname
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs):
        kwargs['server_hostname'] = self.server_hostname
        kwargs['assert_hostname'] = self.server_hostname
        super().init_poolmanager(*args, **kwargs)


def build_url(host: str, path: str = '', ssl: bool = False, port: Optional[int] = None,
              ip: Optional[str] = None, query: Optional[str] = None) -> str:
    """Build the URL to connect to

    If ip is given the connection goes there; the host name then has to be
    sent in the Host header (see create_session).
    """
    scheme = 'https' if ssl else 'http'
    netloc = ip or host
    if ':' in netloc and not netloc.startswith('['):
        netloc = f"[{netloc}]"
    if port:
        netloc = f"{netloc}:{port}"
    if path and not path.startswith('/'):
        path = '/' + path
    return urlunsplit((scheme, netloc, path, query or '', ''))


def dump_exchange(response: requests.Response, *args, **kwargs):
    """Response hook printing the request and response"""
    request = response.request
    print(f"DEBUG: > {request.method} {request.url}")
    for name, value in request.headers.items():
        if name.lower() == 'authorization':
            value = '[hidden]'
        print(f"DEBUG: > {name}: {value}")
    print(f"DEBUG: < {response.status_code} {response.reason}")
    for name, value in response.headers.items():
        print(f"DEBUG: < {name}: {value}")
    print(f"DEBUG: < {response.text}")


def create_session(host: Optional[str] = None, ip: Optional[str] = None,
                   login: Optional[str] = None, password: Optional[str] = None,
                   user_agent: str = DEFAULT_USER_AGENT, verify: bool = True,
                   debug: bool = False, port: Optional[int] = None, ssl: bool = False) -> requests.Session:
    """Create a requests session configured from the plugin arguments

    When connecting to an IP, the Host header carries the host name and, for a
    port other than the scheme's default, the port.
    """
    session = requests.Session()
    session.headers.update({'User-Agent': user_agent})

    # Basic auth only if both login and password are set
    if login and password:
        session.auth = (login, password)

    if ip and host:
        default_port = 443 if ssl else 80
        session.headers['Host'] = host if port in (None, default_port) else f"{host}:{port}"
        session.mount('https://', HostHeaderSSLAdapter(host))

    if not verify:
        session.verify = False
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    if debug:
        session.hooks['response'].append(dump_exchange)

    return session


def session_from_args(args, user_agent: str = DEFAULT_USER_AGENT) -> requests.Session:
    return create_session(
        host=args.host,
        ip=getattr(args, 'ip', None),
        login=getattr(args, 'login', None),
        password=getattr(args, 'password', None),
        user_agent=user_agent,
        verify=not getattr(args, 'insecure', False),
        debug=getattr(args, 'debug', False),
        port=getattr(args, 'port', None),
        ssl=getattr(args, 'ssl', False),
    )


def timed_request(session: requests.Session, method: str, url: str, timeout: float,
                  **kwargs) -> Tuple[requests.Response, float]:
    """Perform a request and return (response, elapsed milliseconds)"""
    start = time.perf_counter()
    response = session.request(method, url, timeout=timeout, **kwargs)
    return response, (time.perf_counter() - start) * 1000


def describe_status(response: requests.Response) -> str:
    return f"{response.status_code} {response.reason}".strip()


def check_response(response: requests.Response) -> requests.Response:
    """End the check as CRITICAL unless the page was fetched successfully"""
    if not response.ok:
        raise PluginExit(NAGIOS_CRITICAL, f"Could not fetch {response.url}: {describe_status(response)}")
    return response


def fetch_page(session: requests.Session, url: str, timeout: float, verbose: bool = False,
               **kwargs) -> requests.Response:
    if verbose:
        print(f"DEBUG: Fetching {url}")
    try:
        response = session.get(url, timeout=timeout, **kwargs)
    except requests.exceptions.RequestException as e:
        raise PluginExit(NAGIOS_CRITICAL, f"Could not fetch {url}: {e}")
    return check_response(response)


def submit_form(session: requests.Session, response: requests.Response, form_name: str,
                fields: Dict[str, str], timeout: float) -> requests.Response:
    """Fill in and submit the named form of an HTML page

    Default values of the form's controls are kept unless overridden
    by fields.
    """
    document = lxml.html.fromstring(response.content, base_url=response.url)
    forms = document.xpath('//form[@name=$name]', name=form_name)
    if not forms:
        raise FormNotFound(f"Form '{form_name}' not found on {response.url}")

    form = forms[0]
    values = dict(form.form_values())
    values.update(fields)
    action = form.action or response.url

    if form.method == 'POST':
        return session.post(action, data=values, timeout=timeout)
    return session.get(action, params=values, timeout=timeout)


def add_http_arguments(parser: argparse.ArgumentParser, path_required: bool = True,
                       default_path: Optional[str] = None, service: str = 'service',
                       path_flags: Tuple[str, ...] = ("--path",)):
    """Add the connection options shared by the HTTP status page checks"""
    parser.add_argument(
        "-H", "--host",
        required=True,
        help="The host to connect to"
    )
    parser.add_argument(
        "-P", "--port",
        type=int,
        help="The port to connect to"
    )
    parser.add_argument(
        *path_flags,
        dest="path",
        required=path_required,
        default=default_path,
        help=f"Path to the {service} status page"
    )
    parser.add_argument(
        "-l", "--login",
        help="Username for HTTP basic authentication"
    )
    parser.add_argument(
        "-p", "--password",
        help="Password for HTTP basic authentication"
    )
    parser.add_argument(
        "-s", "--ssl",
        action="store_true",
        help="Use SSL (HTTPS) when connecting"
    )
    parser.add_argument(
        "-I", "--ip",
        help=f"IPv4/6 address of the {service} instance. If used, the host (-H) "
             "is sent in the Host header of the request"
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Disable SSL certificate verification"
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Print HTTP requests and responses"
    )
