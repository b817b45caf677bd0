#!/usr/bin/env python3
"""
Nagios Plugin for Network UPS Tools
Queries a UPS through the NUT daemon (upsd) and checks its state, battery
charge, load, input voltage or temperature.

On three phase UPS models the context (-n) selects the phase used for load
and voltage readings.

Dependencies:
- nut2

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import sys
from dataclasses import dataclass
from typing import Callable, Dict

import nut2

from nagios_common import (
    NAGIOS_CRITICAL, NAGIOS_OK, NAGIOS_UNKNOWN, CheckResult, NagiosArgumentParser, Perfdata,
    PluginExit, Threshold, add_common_arguments, add_threshold_arguments, format_number,
    run_plugin,
)

SHORTNAME = "NUT"
VERSION = "1.0"


def _number(variables: Dict[str, str], name: str) -> float:
    try:
        value = float(variables[name])
    except KeyError:
        raise PluginExit(NAGIOS_UNKNOWN, f"UPS provides no value for {name}")
    except ValueError:
        raise PluginExit(NAGIOS_UNKNOWN, f"Invalid value for {name}: {variables[name]}")
    return int(value) if value.is_integer() else value


def battery_charge(variables, context):
    return _number(variables, 'battery.charge')


def load_percent(variables, context):
    phase = f"output.L{context}.power.percent"
    return _number(variables, phase if phase in variables else 'ups.load')


def line_voltage(variables, context):
    phase = f"input.L{context}-N.voltage"
    return _number(variables, phase if phase in variables else 'input.voltage')


def temperature(variables, context):
    return _number(variables, 'ups.temperature')


@dataclass
class Reading:
    read: Callable[[Dict[str, str], int], float]
    label: str
    uom: str
    ok: str
    alert: str


READINGS = {
    'battery': Reading(battery_charge, 'Battery', '%',
                       "UPS {ups} is charged ({value}%).",
                       "UPS {ups} is running low on battery ({value}%)."),
    'load': Reading(load_percent, 'Load', '%',
                    "UPS {ups} is on normal load ({value}%).",
                    "UPS {ups} is on high load ({value}%)."),
    'voltage': Reading(line_voltage, 'Voltage', 'V',
                       "UPS {ups} is on normal line voltage ({value}V).",
                       "UPS {ups} is on out-of-bounds line voltage ({value}V)."),
    'temperature': Reading(temperature, 'Temperature', 'DegC',
                           "UPS {ups} is on normal temperature ({value}DegC).",
                           "UPS {ups} is on out-of-bounds temperature ({value}DegC)."),
}
QUERIES = ['state'] + sorted(READINGS)


def check_state(variables: Dict[str, str], ups: str) -> CheckResult:
    flags = variables.get('ups.status', '').split()
    if 'FSD' in flags:
        return NAGIOS_CRITICAL, f"UPS {ups} is in Forced Shutdown (FSD) state.", []
    if 'OB' in flags:
        return NAGIOS_CRITICAL, f"UPS {ups} is running on battery.", []
    return NAGIOS_OK, f"UPS {ups} is doing fine.", []


def check_reading(variables: Dict[str, str], ups: str, query: str, context: int,
                  threshold: Threshold) -> CheckResult:
    reading = READINGS[query]
    value = reading.read(variables, context)
    code = threshold.check(value)
    perfdata = [Perfdata(reading.label, value, reading.uom, threshold)]
    template = reading.ok if code == NAGIOS_OK else reading.alert
    return code, template.format(ups=ups, value=format_number(value)), perfdata


def check_nut(args) -> CheckResult:
    """Query upsd and return Nagios result"""
    if args.verbose:
        print(f"DEBUG: Connecting to NUT on {args.host}:{args.port} with user {args.login}")

    try:
        client = nut2.PyNUTClient(host=args.host, port=args.port, login=args.login,
                                  password=args.password, timeout=args.timeout)
        variables = client.list_vars(args.ups)
    except nut2.PyNUTError as e:
        return NAGIOS_UNKNOWN, f"NUT error: {e}", []
    except (OSError, EOFError) as e:
        return NAGIOS_UNKNOWN, f"Could not connect to NUT on {args.host}:{args.port}: {e}", []

    if args.verbose:
        print(f"DEBUG: Variables: {variables}")

    if args.query == 'state':
        return check_state(variables, args.ups)
    return check_reading(variables, args.ups, args.query, args.context, Threshold.from_args(args))


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to check a UPS through Network UPS Tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Queries:
  state        CRITICAL on forced shutdown or when running on battery
  battery      battery charge in %%
  load         output load in %%
  voltage      input line voltage
  temperature  UPS temperature in degrees Celsius

Examples:
  %(prog)s -H nut.example.com -u ups1 -q state
  %(prog)s -H nut.example.com -u ups1 -q battery -w 50: -c 20:
  %(prog)s -H nut.example.com -u ups1 -q voltage -n 2 -w 215:245 -c 207:253
        """
    )
    parser.add_argument(
        "-H", "--host",
        required=True,
        help="The host running upsd"
    )
    parser.add_argument(
        "-o", "--port",
        type=int,
        default=3493,
        help="Port of upsd (default: 3493)"
    )
    parser.add_argument(
        "-l", "--login",
        help="Username to login"
    )
    parser.add_argument(
        "-p", "--password",
        help="Password used for authentication"
    )
    parser.add_argument(
        "-u", "--ups",
        required=True,
        help="Name of the UPS"
    )
    parser.add_argument(
        "-q", "--query",
        required=True,
        choices=QUERIES,
        help="Query to perform"
    )
    parser.add_argument(
        "-n", "--context",
        type=int,
        default=1,
        help="Phase used for load and voltage on three phase models (default: 1)"
    )
    add_threshold_arguments(parser, required=False)
    add_common_arguments(parser, VERSION)
    args = parser.parse_args(argv)
    if args.query != 'state' and (args.warning is None or args.critical is None):
        parser.error(f"query {args.query} requires warning (-w) and critical (-c) thresholds")
    return args


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_nut, args))


if __name__ == "__main__":
    main()
