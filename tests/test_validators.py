import pytest

from generate_droplist import (
    DropListConfig,
    build_feed_sources,
    is_ipv4,
    is_ipv4_strict,
    is_ipv6,
    is_ipv6_strict,
)


@pytest.mark.parametrize('candidate', [
    '192.0.2.0/24',
    '1.2.3.4',
    '0.0.0.0/0',
    '255.255.255.255/32',
    '010.001.002.003',
    '10.0.0.0/99',
])
def test_ipv4_accepts(candidate):
    assert is_ipv4(candidate)


@pytest.mark.parametrize('candidate', [
    '',
    'bad',
    ' 1.2.3.4',
    '1.2.3.4 ',
    '1.2.3.4\n',
    '256.1.1.1',
    '1.2.3',
    '1.2.3.4.5',
    '1.2.3.4/',
    '1.2.3.4/100',
    '1.2.3.4/24x',
    '2001:db8::/32',
    None,
    42,
])
def test_ipv4_rejects(candidate):
    assert not is_ipv4(candidate)


@pytest.mark.parametrize('candidate', [
    '2001:db8::/32',
    '2001:db8::1',
    '2001:DB8::1/128',
    'fe80::/10',
    '1:2:3:4:5:6:7::',
])
def test_ipv6_accepts(candidate):
    assert is_ipv6(candidate)


@pytest.mark.parametrize('candidate', [
    '',
    '2001:db8::g',
    '2001:db8::/1234',
    ' 2001:db8::/32',
    '2001:db8::/32\n',
    '192.0.2.0/24',
    '2001::db8::/32',
    None,
])
def test_ipv6_rejects(candidate):
    assert not is_ipv6(candidate)


def test_ipv6_pattern_is_only_a_shape_check():
    # accepted although not valid addresses
    assert is_ipv6('1:2:3:4:5:6:7::8')
    assert is_ipv6('2001:db8::/999')
    # rejected although valid addresses
    assert not is_ipv6('::1')
    assert not is_ipv6('2001:db8:0:0:0:0:0:1')


@pytest.mark.parametrize('candidate, expected', [
    ('192.0.2.0/24', True),
    ('192.0.2.1/24', True),
    ('192.0.2.1', True),
    ('10.0.0.0/33', False),
    ('10.0.0.0/255.0.0.0', False),
    (' 10.0.0.0/8', False),
    ('', False),
    ('2001:db8::/32', False),
    (None, False),
])
def test_ipv4_strict(candidate, expected):
    assert is_ipv4_strict(candidate) is expected


@pytest.mark.parametrize('candidate, expected', [
    ('2001:db8::/32', True),
    ('::1', True),
    ('2001:db8:0:0:0:0:0:1', True),
    ('1:2:3:4:5:6:7::8', False),
    ('2001:db8::/129', False),
    ('2001:db8::/ 32', False),
    ('192.0.2.0/24', False),
    ('', False),
])
def test_ipv6_strict(candidate, expected):
    assert is_ipv6_strict(candidate) is expected


def test_build_feed_sources_defaults():
    v4, v6 = build_feed_sources()

    assert v4.version == 'v4'
    assert v4.url == 'https://www.spamhaus.org/drop/drop_v4.json'
    assert v4.list_name == 'spamhaus-drop-v4'
    assert v4.command_path == '/ip'
    assert v4.validator is is_ipv4

    assert v6.version == 'v6'
    assert v6.url == 'https://www.spamhaus.org/drop/drop_v6.json'
    assert v6.list_name == 'spamhaus-drop-v6'
    assert v6.command_path == '/ipv6'
    assert v6.validator is is_ipv6


def test_build_feed_sources_strict_and_order():
    sources = build_feed_sources(['v6', 'v4'], strict=True)

    assert [s.version for s in sources] == ['v6', 'v4']
    assert sources[0].validator is is_ipv6_strict
    assert sources[1].validator is is_ipv4_strict


def test_build_feed_sources_rejects_unknown_family():
    with pytest.raises(ValueError, match='v5'):
        build_feed_sources(['v4', 'v5'])


def test_feed_source_is_immutable():
    source = build_feed_sources(DropListConfig.IP_VERSIONS)[0]
    with pytest.raises(AttributeError):
        source.list_name = 'other'
