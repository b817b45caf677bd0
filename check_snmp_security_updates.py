#!/usr/bin/env python3
"""
Nagios Plugin for Pending Security Updates via SNMP
Reads the number of pending security updates and the affected package names
from an SNMP agent and alerts when updates stay pending for too long.

The time a package was first seen as pending is kept in a state file per
agent, so the thresholds are ages in days rather than counts.

Dependencies:
- net-snmp command line tools (snmpget, snmpwalk)

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import os
import subprocess
import sys
import time
from typing import Dict, List, Optional

from nagios_common import (
    NAGIOS_CRITICAL, NAGIOS_OK, NAGIOS_UNKNOWN, NAGIOS_WARNING, CheckResult, NagiosArgumentParser,
    Perfdata, PluginExit, add_common_arguments, add_threshold_arguments, run_plugin,
)
from nagios_store import StateStore, remove_store

SHORTNAME = "Security Updates"
VERSION = "1.0"
DEFAULT_OID = ".1.3.6.1.4.1.36425.256.2"
DEFAULT_STORE = "/var/lib/snmp/security_updates"
SECONDS_PER_DAY = 86400


class SnmpClient:
    """Query an SNMP agent through the net-snmp command line tools"""

    def __init__(self, args, verbose: bool = False):
        self.args = args
        self.verbose = verbose

    def _auth_options(self) -> List[str]:
        args = self.args
        options = ['-v', args.snmp_version, '-t', str(max(1, args.timeout // 3)), '-r', '1']
        if args.snmp_version in ('1', '2c'):
            options += ['-c', args.community]
            return options

        options += ['-u', args.username, '-l', args.seclevel]
        if args.seclevel in ('authNoPriv', 'authPriv'):
            options += ['-a', args.authprotocol, '-A', args.authpassword]
        if args.seclevel == 'authPriv':
            options += ['-x', args.privprotocol, '-X', args.privpassword]
        return options

    def _hidden(self, cmd: List[str]) -> str:
        masked = list(cmd)
        for flag in ('-c', '-A', '-X'):
            if flag in masked[:-2]:
                masked[masked.index(flag) + 1] = '[hidden]'
        return ' '.join(masked)

    def _run(self, tool: str, output_options: str, oid: str) -> Optional[str]:
        cmd = [tool, output_options] + self._auth_options() + [f"{self.args.host}:{self.args.port}", oid]
        if self.verbose:
            print(f"DEBUG: Running: {self._hidden(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.args.timeout)
        except subprocess.TimeoutExpired:
            raise PluginExit(NAGIOS_UNKNOWN, f"{tool} timed out")
        except FileNotFoundError:
            raise PluginExit(NAGIOS_UNKNOWN, f"{tool} not found, install the net-snmp tools")

        if result.returncode != 0:
            if self.verbose:
                print(f"DEBUG: {tool} failed: {result.stderr.strip()}")
            return None
        return result.stdout

    def get(self, oid: str) -> Optional[str]:
        """Value of a single OID, None if the agent has none"""
        output = self._run('snmpget', '-Oqv', oid)
        if output is None:
            return None
        value = output.strip().strip('"')
        if not value or value.startswith('No Such') or value.startswith('No more'):
            return None
        return value

    def walk(self, oid: str) -> Dict[str, str]:
        """All OID/value pairs below an OID"""
        output = self._run('snmpwalk', '-Oqn', oid)
        data = {}
        for line in (output or '').splitlines():
            if ' ' not in line:
                continue
            name, value = line.split(' ', 1)
            if value.startswith('No Such') or value.startswith('No more'):
                continue
            data[name] = value.strip().strip('"')
        return data


def store_filename(args) -> str:
    return os.path.join(args.store, f"{args.host}-{args.port}-SNMP{args.snmp_version}.db")


def package_names(walked: Dict[str, str], oid: str) -> List[str]:
    base = '.' + oid.strip('.')
    return sorted({value for name, value in walked.items() if name != base and value})


def update_first_seen(store: StateStore, packages: List[str], now: float, verbose: bool = False) -> Dict[str, float]:
    """Forget packages no longer pending, remember new ones with the current time"""
    for name in store.keys():
        if verbose:
            print(f"DEBUG: Previously seen update: {name} ({time.ctime(float(store.get(name)))})")
        if name not in packages:
            if verbose:
                print(f"DEBUG: Forgetting update: {name}")
            store.delete(name)

    for name in packages:
        if name not in store:
            if verbose:
                print(f"DEBUG: Remembering update: {name}")
            store.set(name, now)

    return {name: float(value) for name, value in store.items().items()}


def age_status(first_seen: Dict[str, float], now: float, warning: int, critical: int) -> int:
    if any(seen < now - critical * SECONDS_PER_DAY for seen in first_seen.values()):
        return NAGIOS_CRITICAL
    if any(seen < now - warning * SECONDS_PER_DAY for seen in first_seen.values()):
        return NAGIOS_WARNING
    return NAGIOS_OK


def check_snmp_security_updates(args) -> CheckResult:
    """Check pending security updates and return Nagios result"""
    filename = store_filename(args)
    if args.verbose:
        print(f"DEBUG: Persistent store: {filename}")

    client = SnmpClient(args, args.verbose)
    value = client.get(args.oid)
    try:
        count = int(value)
    except (TypeError, ValueError):
        return NAGIOS_UNKNOWN, f"No security update information found at {args.oid}", []

    perfdata = [Perfdata('updates', count)]
    if count == 0:
        remove_store(filename)
        return NAGIOS_OK, 'No security updates pending', perfdata

    if args.verbose:
        print(f"DEBUG: Connecting to {args.host}:{args.port} with SNMP{args.snmp_version}")
    packages = package_names(client.walk(args.oid), args.oid)

    now = time.time()
    with StateStore(filename) as store:
        first_seen = update_first_seen(store, packages, now, args.verbose)

    code = age_status(first_seen, now, args.warning, args.critical)
    message = f"Pending updates: {count}\n" + ",\n".join(packages)
    return code, message, perfdata


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to check pending security updates reported over SNMP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Thresholds are the number of days an update may stay pending.

Examples:
  %(prog)s -H server.example.com -C public -w 3 -c 7
  %(prog)s -H server.example.com --snmp-version 3 -U nagios -L authPriv -a SHA -A secret -x AES -X secret -w 3 -c 7
        """
    )
    parser.add_argument(
        "-H", "--host",
        required=True,
        help="The host to query"
    )
    parser.add_argument(
        "-P", "--port",
        type=int,
        default=161,
        help="SNMP port (default: 161)"
    )
    parser.add_argument(
        "--snmp-version",
        choices=['1', '2c', '3'],
        default='2c',
        help="SNMP version (default: 2c)"
    )
    parser.add_argument(
        "-C", "--community",
        default="public",
        help="SNMP community for version 1 and 2c (default: public)"
    )
    parser.add_argument(
        "-U", "--username",
        help="SNMPv3 security name"
    )
    parser.add_argument(
        "-L", "--seclevel",
        choices=['noAuthNoPriv', 'authNoPriv', 'authPriv'],
        default='authNoPriv',
        help="SNMPv3 security level (default: authNoPriv)"
    )
    parser.add_argument(
        "-a", "--authprotocol",
        default="SHA",
        help="SNMPv3 authentication protocol (default: SHA)"
    )
    parser.add_argument(
        "-A", "--authpassword",
        help="SNMPv3 authentication password"
    )
    parser.add_argument(
        "-x", "--privprotocol",
        default="AES",
        help="SNMPv3 privacy protocol (default: AES)"
    )
    parser.add_argument(
        "-X", "--privpassword",
        help="SNMPv3 privacy password"
    )
    parser.add_argument(
        "--oid",
        default=DEFAULT_OID,
        help=f"Base OID at which package updates are found (default: {DEFAULT_OID})"
    )
    parser.add_argument(
        "-s", "--store",
        default=DEFAULT_STORE,
        help=f"Directory for the persistent store (default: {DEFAULT_STORE})"
    )
    add_threshold_arguments(parser, type_=int, unit="days")
    add_common_arguments(parser, VERSION)
    args = parser.parse_args(argv)

    if args.snmp_version == '3':
        if not args.username:
            parser.error("SNMPv3 requires a username (-U)")
        if args.seclevel in ('authNoPriv', 'authPriv') and not args.authpassword:
            parser.error("SNMPv3 authentication requires a password (-A)")
        if args.seclevel == 'authPriv' and not args.privpassword:
            parser.error("SNMPv3 privacy requires a password (-X)")
    return args


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_snmp_security_updates, args))


if __name__ == "__main__":
    main()
