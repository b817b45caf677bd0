"""SSL Labs check tests"""

import argparse
from unittest.mock import MagicMock, patch

import pytest
import requests

from check_ssllabs import SSLLabsClient, check_ssllabs, evaluate, grade_threshold, parse_args
from nagios_common import NAGIOS_CRITICAL, NAGIOS_OK, NAGIOS_UNKNOWN, NAGIOS_WARNING, PluginExit


def report(*grades, status='READY'):
    endpoints = []
    for index, grade in enumerate(grades):
        endpoint = {'ipAddress': f'192.0.2.{index + 1}', 'statusMessage': 'Ready'}
        if grade is None:
            endpoint['statusMessage'] = 'Unable to connect to the server'
        else:
            endpoint['grade'] = grade
        endpoints.append(endpoint)
    return {'host': 'www.example.com', 'status': status, 'endpoints': endpoints}


def make_args(**overrides):
    values = dict(host='www.example.com', warning='A', critical='B', cache=False, max_age=48, publish=False,
                  api_url='https://api.example.com/api/v3', poll_interval=30, timeout=600, verbose=False)
    values.update(overrides)
    return argparse.Namespace(**values)


class TestGradeThreshold:

    @pytest.mark.parametrize('grade, expected', [
        ('A+', NAGIOS_OK),
        ('A', NAGIOS_OK),
        ('A-', NAGIOS_WARNING),
        ('B', NAGIOS_WARNING),
        ('C', NAGIOS_CRITICAL),
        ('T', NAGIOS_CRITICAL),
    ])
    def test_grades(self, grade, expected):
        code, _, _ = evaluate(report(grade), grade_threshold('A', 'B'))
        assert code == expected

    def test_critical_better_than_warning(self):
        with pytest.raises(PluginExit) as excinfo:
            grade_threshold('B', 'A')
        assert excinfo.value.code == NAGIOS_UNKNOWN

    def test_equal_grades(self):
        threshold = grade_threshold('B', 'B')
        assert evaluate(report('C'), threshold)[0] == NAGIOS_CRITICAL


class TestEvaluate:

    def test_worst_endpoint_wins(self):
        code, message, perfdata = evaluate(report('A+', 'A-'), grade_threshold('A', 'B'))
        assert code == NAGIOS_WARNING
        assert message == 'SSLLabs test results:\n - 192.0.2.1: A+\n - 192.0.2.2: A-'
        assert perfdata == []

    def test_endpoint_errors(self):
        code, message, _ = evaluate(report('A', None), grade_threshold('A', 'B'))
        assert code == NAGIOS_UNKNOWN
        assert message == ('One or more endpoints could not be tested:\n'
                           ' - 192.0.2.2: Unable to connect to the server')

    def test_failed_assessment(self):
        failed = {'host': 'www.example.com', 'status': 'ERROR', 'statusMessage': 'Unable to resolve domain name'}
        code, message, _ = evaluate(failed, grade_threshold('A', 'B'))
        assert code == NAGIOS_UNKNOWN
        assert message == 'www.example.com failed to test: Unable to resolve domain name'

    def test_no_endpoints(self):
        assert evaluate(report(), grade_threshold('A', 'B'))[0] == NAGIOS_UNKNOWN


class TestClient:

    def make_client(self, make_response, *payloads):
        client = SSLLabsClient('https://api.example.com/api/v3/')
        client.session = MagicMock()
        client.session.get.side_effect = [make_response(payload=payload) for payload in payloads]
        return client

    def test_assess_polls_until_ready(self, make_response):
        """Polling waits for the endpoint ETA, capped by the poll interval"""
        in_progress = {'status': 'IN_PROGRESS', 'endpoints': [{'eta': 12}, {'eta': 80}]}
        starting = {'status': 'DNS', 'endpoints': []}
        client = self.make_client(make_response, starting, in_progress, report('A'))
        with patch('check_ssllabs.time.sleep') as sleep:
            result = client.assess('www.example.com', False, False, 48, 30)
        assert result['status'] == 'READY'
        assert [call[0][0] for call in sleep.call_args_list] == [1, 30]

    def test_analyze_parameters(self, make_response):
        client = self.make_client(make_response, report('A'))
        client.analyze('www.example.com', True, True, 24)
        url = client.session.get.call_args[0][0]
        params = client.session.get.call_args[1]['params']
        assert url == 'https://api.example.com/api/v3/analyze'
        assert params == {'host': 'www.example.com', 'publish': 'on', 'all': 'done',
                          'fromCache': 'on', 'maxAge': 24}

    def test_no_cache_parameters(self, make_response):
        client = self.make_client(make_response, report('A'))
        client.analyze('www.example.com', False, False, 24)
        params = client.session.get.call_args[1]['params']
        assert 'fromCache' not in params
        assert params['publish'] == 'off'

    def test_info_unavailable(self, make_response):
        client = SSLLabsClient()
        client.session = MagicMock()
        client.session.get.return_value = make_response(503)
        with pytest.raises(PluginExit) as excinfo:
            client.info()
        assert excinfo.value.message == 'SSLLabs system not available.'

    def test_analyze_connection_error(self):
        client = SSLLabsClient()
        client.session = MagicMock()
        client.session.get.side_effect = requests.exceptions.ConnectionError('down')
        with pytest.raises(PluginExit) as excinfo:
            client.analyze('www.example.com', False, False, 48)
        assert excinfo.value.code == NAGIOS_UNKNOWN


class TestCheck:

    def test_assessment_limit(self):
        with patch('check_ssllabs.SSLLabsClient') as client:
            client.return_value.info.return_value = {'currentAssessments': 25, 'maxAssessments': 25}
            code, message, _ = check_ssllabs(make_args())
        assert code == NAGIOS_UNKNOWN
        assert message == 'Maximum concurrent assessments reached: 25.'
        client.return_value.assess.assert_not_called()

    def test_assessment(self):
        with patch('check_ssllabs.SSLLabsClient') as client:
            client.return_value.info.return_value = {'currentAssessments': 0, 'maxAssessments': 25}
            client.return_value.assess.return_value = report('A+')
            code, _, _ = check_ssllabs(make_args(cache=True, max_age=12))
        assert code == NAGIOS_OK
        client.return_value.assess.assert_called_once_with('www.example.com', False, True, 12, 30)


class TestArguments:

    def test_defaults(self):
        args = parse_args(['-H', 'www.example.com', '-w', 'A', '-c', 'B'])
        assert args.timeout == 600
        assert args.max_age == 48
        assert not args.cache

    def test_unknown_grade(self):
        with pytest.raises(SystemExit) as excinfo:
            parse_args(['-H', 'www.example.com', '-w', 'G', '-c', 'B'])
        assert excinfo.value.code == NAGIOS_UNKNOWN
