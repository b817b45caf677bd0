#!/usr/bin/env python3
"""
Nagios Plugin for GroupWise 8 Agents
Reads a value from the HTTP status page of a GroupWise 8 agent (MTA, GWIA,
WebAccess or POA) and checks it against the thresholds.

Status pages list their values in table cells; a field is located by the
label cell (anchor) and the value is read a fixed number of cells after it.
Use --list to show the agents and fields that can be checked.

Dependencies:
- requests
- lxml

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import re
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import lxml.html
import requests

from nagios_common import (
    NAGIOS_OK, NAGIOS_UNKNOWN, CheckResult, NagiosArgumentParser, Perfdata, PluginExit,
    Threshold, add_common_arguments, add_threshold_arguments, run_plugin,
)
from nagios_http import build_url, create_session, describe_status

SHORTNAME = "Groupwise-8"
VERSION = "1.0"

CELL_XPATH = ('//td[translate(@align, "ABCDEFGHIJKLMNOPQRSTUVWXYZ", "abcdefghijklmnopqrstuvwxyz")="center"]'
              '/..//font[@size="-1"]')
TRAFFIC_PATTERN = re.compile(r'^\s*([\d.,]+)\s*([KMG]?B)?\s*$', re.IGNORECASE)
TRAFFIC_UNITS = {'B': 1, 'KB': 1024, 'MB': 1024 ** 2, 'GB': 1024 ** 3}


@dataclass
class FieldValue:
    """A value found `index` cells after the anchor cell"""
    name: str
    index: int
    traffic: bool = False


@dataclass
class AgentField:
    anchor: str
    main: FieldValue
    extra: List[FieldValue] = field(default_factory=list)


def _closed(anchor):
    return AgentField(anchor, FieldValue('closed', 2), [FieldValue('total', 1)])


def _recent(anchor, index=2):
    return AgentField(anchor, FieldValue('10m', index), [FieldValue('total', index - 1)])


def _threads(anchor):
    return AgentField(anchor, FieldValue('busy', 1), [FieldValue('idle', 2)])


def _busy(anchor):
    return AgentField(anchor, FieldValue('busy', 2), [FieldValue('total', 1)])


def _single(anchor, name, index=1):
    return AgentField(anchor, FieldValue(name, index))


AGENTS: Dict[str, Dict[str, AgentField]] = {
    'mta': {
        'domains': _closed('Domains'),
        'post-offices': _closed('Post Offices'),
        'gateways': _closed('Gateways'),
        'routed': _recent('Routed'),
        'undeliverable': _recent('Undeliverable'),
        'errors': _recent('Errors'),
    },
    'ia': {
        'message-conversion-threads': _threads('Message Conversion Threads'),
        'smtp-threads': _threads('SMTP Threads'),
        'pop-threads': _threads('Standard POP Threads'),
        'pops-threads': _threads('Secure POP Threads'),
        'imap-threads': _threads('Standard IMAP Threads'),
        'imaps-threads': _threads('Secure IMAP Threads'),
        'ldap-threads': _threads('LDAP Threads'),
        'outbound-message-queues': _single('Outbound Message Queues', 'queued'),
        'inbound-message-queues': _single('Inbound Message Queues', 'queued'),
        'smtp-send-queue': _single('SMTP Send Queue', 'queued'),
        'smtp-receive-queue': _single('SMTP Receive Queue', 'queued'),
        'delayed-message-queue': _single('Delayed Message Queue', 'queued'),
        'message-normal-out': _recent('Normal'),
        'message-normal-in': _recent('Normal', 4),
        'message-status-out': _recent('Status'),
        'message-status-in': _recent('Status', 4),
        'message-passthrough-out': _recent('Passthrough'),
        'message-passthrough-in': _recent('Passthrough', 4),
        'message-conversion-errors-out': _recent('Conversion Errors'),
        'message-conversion-errors-in': _recent('Conversion Errors', 4),
        'message-communication-errors-out': _recent('Communication Errors'),
        'message-communication-errors-in': _recent('Communication Errors', 4),
        'total-bytes-out': AgentField('Total Bytes', FieldValue('bytes', 1, traffic=True)),
        'total-bytes-in': AgentField('Total Bytes', FieldValue('bytes', 2, traffic=True)),
    },
    'webacc': {
        'client/server-users': _busy('C/S Users'),
        'client/server-handler-threads': _busy('C/S Handler Threads'),
        'client/server-requests': _single('C/S Requests', 'requests'),
        'client/server-requests-failed': _single('C/S Requests Failed', 'requests'),
    },
    'poa': {
        'client/server-users': _single('C/S Users', 'users'),
        'remote/caching-users': _single('Remote/Caching Users Users', 'users'),
        'application-connections': _single('Application Connections', 'connections'),
        'physical-connections': _single('Physical Connections', 'connections'),
        'priority-queues': _single('Priority Queues', 'queues'),
        'normal-queues': _single('Normal Queues', 'queues'),
        'gwcheck-auto-queues': _single('GWCheck Auto Queues', 'queues'),
        'gwcheck-scheduled-queues': _single('GWCheck Scheduled Queues', 'queues'),
        'client/server-handler-threads': _busy('C/S Handler Threads'),
        'message-worker-threads': _busy('Message Worker Threads'),
        'gwcheck-worker-threads': _busy('GWCheck Worker Threads'),
        'calendar-publishing-threads': _busy('Calendar Publishing Threads'),
        'client/server-requests': _single('C/S Requests', 'requests'),
        'client/server-requests-pending': _single('C/S Requests Pending', 'requests', 2),
        'users-timed-out': _single('Users Timed Out', 'users'),
        'calendar-publishing-requests': _single('Calendar Publishing Requests', 'requests'),
        'rules-executed': _single('Rules Executed', 'rules'),
        'users-delivered': _single('Users Delivered', 'users'),
        'message-files-processed': _single('Message Files Processed', 'message-files'),
        'messages-undelivered': _single('Messages Undelivered', 'messages'),
        'problem-messages': _single('Problem Messages', 'messages'),
        'users-deleted': _single('Users Deleted', 'users'),
        'statuses-processed': _single('Statuses Processed', 'statuses'),
        'databases-recovered': _single('Databases Recovered', 'databases'),
        'gwcheck-messages-processed': _single('GWCheck Messages Processed', 'messages'),
        'gwcheck-problem-messages': _single('GWCheck Problem Messages', 'messages'),
        'caching-requests': _single('Caching Requests', 'requests'),
        'caching-primings': _single('Caching Primings', 'primings'),
        'rejected-caching-requests': _single('Rejected Caching Requests', 'requests'),
        'rejected-caching-primings': _single('Rejected Caching Primings', 'primings'),
        'mass-purge-jobs': _single('Number of Mass Purge Jobs', 'jobs'),
        'mass-purge-items': _single('Number of Items under Mass Purge', 'items'),
    },
}


def list_fields() -> str:
    lines = ["Agents and associated fields:"]
    for agent, fields in AGENTS.items():
        lines.append(f" - {agent.upper()}")
        for name, agent_field in fields.items():
            lines.append(f"   + {name} ({agent_field.anchor})")
    return '\n'.join(lines)


class ListFieldsAction(argparse.Action):
    def __init__(self, option_strings, dest=argparse.SUPPRESS, default=argparse.SUPPRESS, help=None):
        super().__init__(option_strings, dest=dest, default=default, nargs=0, help=help)

    def __call__(self, parser, namespace, values, option_string=None):
        print(list_fields())
        parser.exit(NAGIOS_OK)


def lookup_field(agent: str, name: str) -> AgentField:
    fields = AGENTS.get(agent.lower())
    if fields is None:
        raise PluginExit(NAGIOS_UNKNOWN, f"Unknown agent type: {agent}")
    agent_field = fields.get(name.lower())
    if agent_field is None:
        raise PluginExit(NAGIOS_UNKNOWN, f"Unknown field for agent {agent}: {name}")
    return agent_field


def status_cells(content: bytes) -> List[str]:
    document = lxml.html.fromstring(content)
    return [cell.text_content().strip() for cell in document.xpath(CELL_XPATH)]


def convert_traffic(text: str) -> int:
    """Convert "12.5 MB" style values into bytes"""
    match = TRAFFIC_PATTERN.match(text)
    if not match:
        raise ValueError(f"invalid traffic value: {text}")
    number = float(match.group(1).replace(',', ''))
    unit = (match.group(2) or 'B').upper()
    return int(number * TRAFFIC_UNITS[unit])


def convert_number(text: str):
    cleaned = text.replace(',', '').strip()
    return float(cleaned) if '.' in cleaned else int(cleaned)


def field_value(cells: List[str], anchor: str, value: FieldValue) -> Optional[float]:
    """Value `value.index` cells after the first cell reading `anchor`"""
    try:
        position = cells.index(anchor) + value.index
        text = cells[position]
    except (ValueError, IndexError):
        return None
    try:
        return convert_traffic(text) if value.traffic else convert_number(text)
    except ValueError:
        return None


def evaluate(cells: List[str], agent: str, name: str, agent_field: AgentField, threshold: Threshold) -> CheckResult:
    value = field_value(cells, agent_field.anchor, agent_field.main)
    if value is None:
        return NAGIOS_UNKNOWN, f"{agent.upper()} provides no information on field: {name.lower()}", []

    perfdata = [Perfdata(agent_field.main.name, value, threshold=threshold)]
    for extra in agent_field.extra:
        extra_value = field_value(cells, agent_field.anchor, extra)
        if extra_value is not None:
            perfdata.append(Perfdata(extra.name, extra_value))

    code = threshold.check(value)
    if code != NAGIOS_OK:
        return code, f"{agent.upper()} aspect '{name}' is out of bounds with {value}", perfdata
    return code, f"{agent.upper()} aspect '{name}' is within bounds", perfdata


def check_groupwise8(args) -> CheckResult:
    """Check a GroupWise 8 agent status page and return Nagios result"""
    agent_field = lookup_field(args.agent, args.field)
    url = build_url(args.host, '/', port=args.port)
    session = create_session(login=args.login, password=args.password, user_agent=SHORTNAME,
                             debug=args.debug)

    if args.verbose:
        print(f"DEBUG: Fetching {url}")
    try:
        response = session.get(url, timeout=args.timeout)
    except requests.exceptions.RequestException as e:
        return NAGIOS_UNKNOWN, f"Could not fetch {url}: {e}", []
    if not response.ok:
        return NAGIOS_UNKNOWN, f"Could not fetch {url}: {describe_status(response)}", []

    cells = status_cells(response.content)
    if args.verbose:
        print(f"DEBUG: Extracting primary value: anchor '{agent_field.anchor}', index {agent_field.main.index}")
    return evaluate(cells, args.agent, args.field, agent_field, Threshold.from_args(args))


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to check GroupWise 8 agents through their HTTP status pages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --list
  %(prog)s -H gw.example.com -P 7180 -l admin -p secret -a mta -f routed -w 100 -c 500
  %(prog)s -H gw.example.com -P 9850 -l admin -p secret -a ia -f smtp-threads -w 20 -c 30
        """
    )
    parser.add_argument(
        "--list",
        action=ListFieldsAction,
        help="List agents and their fields, then exit"
    )
    parser.add_argument(
        "-H", "--host",
        required=True,
        help="The host to connect to"
    )
    parser.add_argument(
        "-l", "--login",
        required=True,
        help="Username to login"
    )
    parser.add_argument(
        "-p", "--password",
        required=True,
        help="Password used for authentication"
    )
    parser.add_argument(
        "-P", "--port",
        type=int,
        default=80,
        help="Port of the agent's HTTP server (default: 80)"
    )
    parser.add_argument(
        "-a", "--agent",
        required=True,
        help="Type of agent to check (mta|ia|webacc|poa)"
    )
    parser.add_argument(
        "-f", "--field",
        required=True,
        help="Field to fetch from the status page, see --list"
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Print HTTP requests and responses"
    )
    add_threshold_arguments(parser)
    add_common_arguments(parser, VERSION)
    return parser.parse_args(argv)


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_groupwise8, args))


if __name__ == "__main__":
    main()
