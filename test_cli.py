#!/usr/bin/env python3
"""
Command-line Interface Tests

Runs main() in-process with mocked HTTP traffic and checks output and exit codes.
"""

import os
import tempfile
import pytest
import responses
import yaml
from unittest.mock import patch

from main import main, parse_headers


class TestHeaderParsing:
    """Test -H argument parsing"""

    def test_parse_headers(self):
        """Headers split on the first colon"""
        headers = parse_headers(['Authorization: Bearer a:b', 'X-Empty:'])
        assert headers == {'Authorization': 'Bearer a:b', 'X-Empty': ''}

    def test_invalid_header(self):
        """Entries without a colon are rejected"""
        with pytest.raises(ValueError):
            parse_headers(['NoColonHere'])


class TestMainCommand:
    """End-to-end CLI runs"""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        # Keep the CLI from replacing pytest's log handlers
        self.logging_patcher = patch('main.setup_logging')
        self.logging_patcher.start()

    def teardown_method(self):
        import shutil
        self.logging_patcher.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @responses.activate
    def test_successful_get(self, capsys):
        """A 2xx answer prints the body and exits 0"""
        responses.add(responses.GET, 'https://api.example.com/ping', json={'pong': True})

        exit_code = main(['GET', 'https://api.example.com/ping', '-H', 'X-Trace: 7', '--include'])

        output = capsys.readouterr().out
        assert exit_code == 0
        assert '200' in output
        assert '"pong": true' in output
        assert responses.calls[0].request.headers['X-Trace'] == '7'

    @responses.activate
    def test_client_error_exit_code(self, capsys):
        """A 4xx answer exits 1"""
        responses.add(responses.GET, 'https://api.example.com/missing', status=404, body='nope')

        assert main(['GET', 'https://api.example.com/missing']) == 1

    @responses.activate
    def test_transport_failure_exit_code(self, capsys):
        """A transport failure exits 1 and names the phase"""
        import requests
        responses.add(responses.GET, 'https://api.example.com/down',
                      body=requests.exceptions.ConnectionError('refused'))

        assert main(['GET', 'https://api.example.com/down']) == 1
        assert 'connect' in capsys.readouterr().out

    @responses.activate
    def test_post_with_config_and_output(self, capsys):
        """Config files lock the host and --output saves the body"""
        config_path = os.path.join(self.temp_dir, 'transport.yaml')
        with open(config_path, 'w') as f:
            yaml.dump({'client': {'host': 'https://api.example.com/v2', 'crawl_delay_ms': 0}}, f)
        output_path = os.path.join(self.temp_dir, 'out.json')
        responses.add(responses.POST, 'https://api.example.com/v2/returns', status=201, json={'id': 5})

        exit_code = main(['--config', config_path, 'POST', '/returns', '--data', '{"order": 1}',
                          '-H', 'Content-Type: application/json', '--output', output_path])

        assert exit_code == 0
        with open(output_path, 'rb') as f:
            assert f.read() == b'{"id": 5}'
        assert responses.calls[0].request.body == b'{"order": 1}'

    def test_bad_method(self, capsys):
        """Unknown methods exit 2"""
        assert main(['BREW', 'https://api.example.com/']) == 2

    def test_missing_config(self, capsys):
        """A missing configuration file exits 2"""
        assert main(['--config', '/nonexistent/transport.yaml', 'GET', 'https://api.example.com/']) == 2

    def test_body_on_get(self, capsys):
        """A body on GET is an invalid request"""
        assert main(['GET', 'https://api.example.com/', '--data', 'x']) == 2

    def test_invalid_url(self, capsys):
        """Relative URLs without a locked host are rejected"""
        assert main(['GET', '/orders']) == 2


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
