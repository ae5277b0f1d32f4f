#!/usr/bin/env python3
"""
Error Handling Tests

This module contains tests for failure scenarios: the error taxonomy itself,
network failures, broken bodies and redirects, and how the client turns each
of them into a RequestResult instead of an exception.
"""

import pytest
import tempfile
import os
from unittest.mock import Mock
import requests
import responses
from pathlib import Path

# Import modules to test
from config import create_client_config
from client import HttpClient
from pool import ConnectionPool
from models import ApiResponse, HttpMethod, PostFile, RequestResult
from errors import (
    TransportError, BuildError, ConnectError, RedirectError,
    InvalidUrlError, AttachmentNotFoundError, UnsupportedEncodingError,
    PoolExhaustedError, PoolClosedError, TransportFailureError,
    MalformedRedirectError, RedirectBlockedError, ReadFailureError
)


class TestErrorTaxonomy:
    """Test the error classes and the result wrapper"""

    def test_phases(self):
        """Every error reports the phase it belongs to"""
        assert InvalidUrlError("x").phase == "build"
        assert AttachmentNotFoundError("x").phase == "build"
        assert UnsupportedEncodingError("x").phase == "build"
        assert PoolExhaustedError("x").phase == "connect"
        assert PoolClosedError("x").phase == "connect"
        assert TransportFailureError("x").phase == "connect"
        assert MalformedRedirectError("x").phase == "redirect"
        assert RedirectBlockedError("x").phase == "redirect"
        assert ReadFailureError("x").phase == "read"

    def test_hierarchy(self):
        """Errors group under their phase base classes"""
        assert issubclass(InvalidUrlError, BuildError)
        assert issubclass(PoolClosedError, ConnectError)
        assert issubclass(RedirectBlockedError, RedirectError)
        for error_class in (BuildError, ConnectError, RedirectError, ReadFailureError):
            assert issubclass(error_class, TransportError)

    def test_cause_is_chained(self):
        """The underlying cause is kept and shown"""
        cause = OSError("connection reset")
        error = ReadFailureError("Failed reading response body", cause=cause, url="https://a.example.com/x")

        assert error.cause is cause
        assert error.__cause__ is cause
        assert str(error) == "Failed reading response body (URL: https://a.example.com/x): connection reset"

    def test_result_unwrap(self):
        """unwrap() returns the response or raises the error"""
        response = ApiResponse(200)
        assert RequestResult("https://a.example.com", response=response).unwrap() is response

        failed = RequestResult("https://a.example.com", error=PoolClosedError("closed"))
        assert not failed.success
        with pytest.raises(PoolClosedError):
            failed.unwrap()


class TestNetworkErrorHandling:
    """Test handling of various network errors"""

    def setup_method(self):
        """Set up test fixtures"""
        self.temp_dir = tempfile.mkdtemp()
        self.config = create_client_config(crawl_delay_ms=0, respect_robots_txt=False)
        self.pool = ConnectionPool(max_total=4, max_per_route=2, acquire_timeout=0.2)
        self.client = HttpClient(self.config, self.pool)

    def teardown_method(self):
        """Clean up test fixtures"""
        import shutil
        self.client.close()
        self.pool.shutdown()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @responses.activate
    def test_connection_error_handling(self):
        """Connection failures become TransportFailureError results"""
        responses.add(
            responses.GET,
            'https://api.example.com/orders',
            body=requests.exceptions.ConnectionError("Connection refused")
        )

        result = self.client.execute(self.client.builder.build('GET', 'https://api.example.com/orders'))

        assert not result.success
        assert isinstance(result.error, TransportFailureError)
        assert isinstance(result.error.cause, requests.exceptions.ConnectionError)
        assert result.error.url == 'https://api.example.com/orders'
        assert self.pool.stats()['available'] == 0
        assert self.pool.stats()['leased'] == 0

    @responses.activate
    def test_read_timeout_handling(self):
        """A read timeout is a read-phase failure"""
        responses.add(
            responses.GET,
            'https://api.example.com/slow',
            body=requests.exceptions.ReadTimeout("Read timed out")
        )

        result = self.client.execute(self.client.builder.build('GET', 'https://api.example.com/slow'))

        assert isinstance(result.error, ReadFailureError)

    @responses.activate
    def test_request_raises(self):
        """request() raises what execute() would return"""
        responses.add(
            responses.GET,
            'https://api.example.com/orders',
            body=requests.exceptions.ConnectionError("Connection refused")
        )

        with pytest.raises(TransportFailureError):
            self.client.get('https://api.example.com/orders')

    @responses.activate
    def test_http_errors_are_responses(self):
        """4xx and 5xx answers are responses, not exceptions"""
        responses.add(responses.GET, 'https://api.example.com/missing', status=404, body='not found')
        responses.add(responses.GET, 'https://api.example.com/broken', status=503, body='down')

        missing = self.client.get('https://api.example.com/missing')
        broken = self.client.get('https://api.example.com/broken')

        assert missing.is_request_fail() and not missing.is_server_failure()
        assert broken.is_server_failure() and broken.is_failure()
        assert missing.text == 'not found'

    @responses.activate
    def test_redirect_without_location(self):
        """A redirect without Location is malformed"""
        responses.add(responses.GET, 'https://api.example.com/moved', status=302)

        result = self.client.execute(self.client.builder.build('GET', 'https://api.example.com/moved'))

        assert isinstance(result.error, MalformedRedirectError)
        assert len(responses.calls) == 1

    @responses.activate
    def test_redirect_to_non_http_location(self):
        """A redirect to a non-http(s) scheme is malformed"""
        responses.add(responses.GET, 'https://api.example.com/moved', status=301,
                      headers={'Location': 'ftp://files.example.com/report.csv'})

        result = self.client.execute(self.client.builder.build('GET', 'https://api.example.com/moved'))

        assert isinstance(result.error, MalformedRedirectError)

    @responses.activate
    def test_redirect_loop_hits_limit(self):
        """Redirect loops stop at max_redirects"""
        config = create_client_config(crawl_delay_ms=0, respect_robots_txt=False, max_redirects=2)
        client = HttpClient(config, self.pool)
        responses.add(responses.GET, 'https://api.example.com/loop', status=302,
                      headers={'Location': '/loop'})

        result = client.execute(client.builder.build('GET', 'https://api.example.com/loop'))

        assert isinstance(result.error, RedirectBlockedError)
        assert len(responses.calls) == 3
        client.close()

    @responses.activate
    def test_pool_exhausted(self):
        """Running out of pooled connections is a connect-phase failure"""
        pool = ConnectionPool(max_total=1, max_per_route=1, acquire_timeout=0.1)
        client = HttpClient(self.config, pool)
        held = pool.acquire(('https', 'api.example.com', 443))

        result = client.execute(client.builder.build('GET', 'https://api.example.com/orders'))

        assert isinstance(result.error, PoolExhaustedError)
        assert len(responses.calls) == 0
        pool.release(held)
        pool.shutdown()

    def test_missing_attachment_fails_before_sending(self):
        """Missing files are reported while building the request"""
        with pytest.raises(AttachmentNotFoundError):
            self.client.post('https://api.example.com/upload',
                             body=PostFile(Path(self.temp_dir) / 'missing.csv'))

    def test_attachment_removed_after_build(self):
        """A file deleted between build and send is still an attachment failure"""
        path = Path(self.temp_dir) / 'feed.csv'
        path.write_text('sku,qty\nA1,3\n')
        request = self.client.builder.build(HttpMethod.POST, 'https://api.example.com/upload',
                                            body=PostFile(path, 'text/csv'))
        os.unlink(path)

        result = self.client.execute(request)

        assert isinstance(result.error, AttachmentNotFoundError)

    def test_invalid_url(self):
        """Malformed URLs never reach the network"""
        with pytest.raises(InvalidUrlError):
            self.client.get('http://api.example.com:99999999/')


class TestReadErrorHandling:
    """Failures while streaming a body"""

    def test_broken_stream_aborts_read(self):
        """A stream failing mid-way closes the response and raises ReadFailureError"""
        import urllib3
        from reader import ResponseReader

        def broken_stream(amt, decode_content=False):
            yield b'{"partial": '
            raise urllib3.exceptions.ProtocolError("Connection broken")

        response = requests.Response()
        response.status_code = 200
        response.url = 'https://api.example.com/orders'
        response.raw = Mock()
        response.raw.stream.side_effect = broken_stream

        with pytest.raises(ReadFailureError) as exc_info:
            ResponseReader(max_download_size=1024).read(response)

        assert isinstance(exc_info.value.cause, urllib3.exceptions.ProtocolError)
        response.raw.close.assert_called()


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
