from unittest import mock

import pytest
import requests

import generate_droplist


V4_URL = 'https://www.spamhaus.org/drop/drop_v4.json'
V6_URL = 'https://www.spamhaus.org/drop/drop_v6.json'

V4_FEED = (
    '{"cidr":"203.0.113.0/24","sblid":"SBL000001","rir":"arin"}\n'
    '{"cidr":"198.51.100.0/22","sblid":"SBL000002","rir":"ripencc"}\n'
    '{"type":"metadata","timestamp":1700000000,"size":2,"records":2}\n'
)
V6_FEED = (
    '{"cidr":"2001:db8::/32","sblid":"SBL000003","rir":"apnic"}\n'
    '{"type":"metadata","timestamp":1700000000,"size":1,"records":1}\n'
)


def make_response(status_code=200, body=''):
    response = mock.Mock(spec=requests.Response)
    response.status_code = status_code
    response.content = body.encode('utf-8') if isinstance(body, str) else body
    return response


@pytest.fixture
def sleeps(monkeypatch):
    """Record time.sleep calls made by the generator instead of sleeping."""
    calls = []
    monkeypatch.setattr(generate_droplist.time, 'sleep', calls.append)
    return calls


@pytest.fixture
def make_generator(tmp_path, sleeps):
    """Build a generator writing to tmp_path with a mocked HTTP session."""
    def factory(responses=None, **kwargs):
        kwargs.setdefault('output_dir', str(tmp_path / 'build'))
        generator = generate_droplist.DropListGenerator(**kwargs)
        generator.session = mock.Mock(spec=requests.Session)
        if isinstance(responses, dict):
            def get(url, timeout=None):
                result = responses[url]
                if isinstance(result, Exception):
                    raise result
                return result
            generator.session.get.side_effect = get
        elif responses is not None:
            generator.session.get.side_effect = responses
        return generator
    return factory
