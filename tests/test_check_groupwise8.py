"""GroupWise 8 agent status check tests"""

import argparse
from unittest.mock import MagicMock, patch

import pytest
import requests

from check_groupwise8 import (
    AGENTS, check_groupwise8, convert_traffic, evaluate, field_value, list_fields, lookup_field,
    parse_args, status_cells,
)
from nagios_common import NAGIOS_CRITICAL, NAGIOS_OK, NAGIOS_UNKNOWN, PluginExit, Threshold

MTA_PAGE = b"""<html><body><table>
<tr><td align="left"><font size="-1">Uptime</font></td>
    <td align="left"><font size="-1">12 days</font></td></tr>
<tr><td align="CENTER"><font size="-1">Domains</font></td>
    <td align="center"><font size="-1">12</font></td>
    <td align="center"><font size="-1">1</font></td></tr>
<tr><td align="center"><font size="-1">Routed</font></td>
    <td align="center"><font size="-1">1,204</font></td>
    <td align="center"><font size="-1">37</font></td></tr>
</table></body></html>"""

GWIA_TRAFFIC = ['Total Bytes', '12 KB', '1.5 MB']


def make_args(**overrides):
    values = dict(host='gw.example.com', login='admin', password='secret', port=7180, agent='mta',
                  field='routed', debug=False, timeout=15, verbose=False, warning='50', critical='100')
    values.update(overrides)
    return argparse.Namespace(**values)


class TestFieldLookup:

    def test_known(self):
        agent_field = lookup_field('MTA', 'Routed')
        assert agent_field.anchor == 'Routed'
        assert agent_field.main.name == '10m'

    def test_unknown_agent(self):
        with pytest.raises(PluginExit) as excinfo:
            lookup_field('gwdva', 'x')
        assert excinfo.value.code == NAGIOS_UNKNOWN

    def test_unknown_field(self):
        with pytest.raises(PluginExit) as excinfo:
            lookup_field('poa', 'nothing')
        assert excinfo.value.message == 'Unknown field for agent poa: nothing'

    def test_list(self):
        listing = list_fields()
        assert ' - MTA' in listing
        assert '   + total-bytes-in (Total Bytes)' in listing
        assert sum(len(fields) for fields in AGENTS.values()) == listing.count('   + ')


class TestValues:

    def test_cells_use_centered_columns_only(self):
        """Rows without a centered column are skipped"""
        assert status_cells(MTA_PAGE) == ['Domains', '12', '1', 'Routed', '1,204', '37']

    def test_field_value(self):
        cells = status_cells(MTA_PAGE)
        agent_field = lookup_field('mta', 'routed')
        assert field_value(cells, agent_field.anchor, agent_field.main) == 37
        assert field_value(cells, agent_field.anchor, agent_field.extra[0]) == 1204

    def test_traffic(self):
        assert convert_traffic('12 KB') == 12 * 1024
        assert convert_traffic('1.5 MB') == 1572864
        assert convert_traffic('2GB') == 2 * 1024 ** 3
        assert convert_traffic('512') == 512

    def test_traffic_fields(self):
        agent_field = lookup_field('ia', 'total-bytes-in')
        assert field_value(GWIA_TRAFFIC, agent_field.anchor, agent_field.main) == 1572864

    def test_missing_anchor(self):
        agent_field = lookup_field('mta', 'errors')
        code, message, _ = evaluate(status_cells(MTA_PAGE), 'mta', 'errors', agent_field, Threshold('1', '2'))
        assert code == NAGIOS_UNKNOWN
        assert message == 'MTA provides no information on field: errors'


class TestEvaluate:

    def test_within_bounds(self):
        agent_field = lookup_field('mta', 'routed')
        code, message, perfdata = evaluate(status_cells(MTA_PAGE), 'mta', 'routed', agent_field, Threshold('50', '100'))
        assert code == NAGIOS_OK
        assert message == "MTA aspect 'routed' is within bounds"
        assert [str(p) for p in perfdata] == ['10m=37;50;100', 'total=1204']

    def test_out_of_bounds(self):
        agent_field = lookup_field('mta', 'routed')
        code, message, _ = evaluate(status_cells(MTA_PAGE), 'mta', 'routed', agent_field, Threshold('10', '20'))
        assert code == NAGIOS_CRITICAL
        assert message == "MTA aspect 'routed' is out of bounds with 37"


class TestCheck:

    def run(self, response=None, error=None, **overrides):
        session = MagicMock()
        if error:
            session.get.side_effect = error
        else:
            session.get.return_value = response
        with patch('check_groupwise8.create_session', return_value=session) as create:
            result = check_groupwise8(make_args(**overrides))
        return result, session, create

    def test_fetches_status_page_with_basic_auth(self, make_response):
        (code, _, _), session, create = self.run(make_response(content=MTA_PAGE))
        assert code == NAGIOS_OK
        assert session.get.call_args[0][0] == 'http://gw.example.com:7180/'
        assert create.call_args[1]['login'] == 'admin'
        assert create.call_args[1]['password'] == 'secret'

    def test_http_error_is_unknown(self, make_response):
        (code, message, _), _, _ = self.run(make_response(401))
        assert code == NAGIOS_UNKNOWN
        assert '401' in message

    def test_connection_error_is_unknown(self):
        (code, _, _), _, _ = self.run(error=requests.exceptions.ConnectionError('refused'))
        assert code == NAGIOS_UNKNOWN


class TestArguments:

    def test_list_exits_ok(self, capsys):
        """--list works without the other options"""
        with pytest.raises(SystemExit) as excinfo:
            parse_args(['--list'])
        assert excinfo.value.code == 0
        assert 'Agents and associated fields:' in capsys.readouterr().out

    def test_default_port(self):
        args = parse_args(['-H', 'h', '-l', 'u', '-p', 'p', '-a', 'mta', '-f', 'routed', '-w', '1', '-c', '2'])
        assert args.port == 80
