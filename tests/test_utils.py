"""Tests for IP handling, actor keys, masking and limit parsing."""

import pytest
from starlette.requests import Request

from admingate.utils import (
    actor_key_for,
    get_client_ip,
    ip_matches,
    mask_sensitive_data,
    parse_limit_string,
    secure_compare,
)


def make_request(client_ip, headers=None):
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/",
            "query_string": b"",
            "headers": [
                (key.lower().encode(), value.encode())
                for key, value in (headers or {}).items()
            ],
            "client": (client_ip, 5000),
        }
    )


class TestIpMatches:
    def test_single_address(self):
        assert ip_matches("10.0.0.1", ["10.0.0.1"])
        assert not ip_matches("10.0.0.2", ["10.0.0.1"])

    def test_cidr(self):
        assert ip_matches("192.168.1.77", ["10.0.0.0/8", "192.168.1.0/24"])
        assert not ip_matches("192.168.2.1", ["192.168.1.0/24"])

    def test_ipv6(self):
        assert ip_matches("2001:db8::1", ["2001:db8::/32"])

    def test_malformed_input_never_matches(self):
        assert not ip_matches("not-an-ip", ["10.0.0.0/8"])
        assert not ip_matches("", ["10.0.0.0/8"])
        assert not ip_matches("10.0.0.1", ["garbage", "10.0.0.0/99"])
        assert ip_matches("10.0.0.1", ["garbage", "10.0.0.1"])


class TestActorKey:
    def test_strategies(self):
        assert actor_key_for("u1", "10.0.0.1") == "user:u1"
        assert actor_key_for("u1", "10.0.0.1", "ip") == "ip:10.0.0.1"
        assert actor_key_for("u1", "10.0.0.1", "user_ip") == "user:u1|ip:10.0.0.1"

    def test_unauthenticated_is_keyed_by_ip(self):
        assert actor_key_for(None, "10.0.0.1", "user") == "ip:10.0.0.1"
        assert actor_key_for(None, "10.0.0.1", "user_ip") == "ip:10.0.0.1"

    def test_unknown_strategy(self):
        with pytest.raises(ValueError, match="Unknown actor key strategy"):
            actor_key_for("u1", "10.0.0.1", "session")


class TestGetClientIp:
    def test_direct_client(self):
        request = make_request("203.0.113.5", {"X-Forwarded-For": "1.2.3.4"})

        assert get_client_ip(request) == "203.0.113.5"

    def test_forwarded_for_from_trusted_proxy(self):
        request = make_request(
            "10.0.0.2", {"X-Forwarded-For": "198.51.100.7, 10.0.0.3"}
        )

        assert get_client_ip(request, ["10.0.0.0/8"]) == "198.51.100.7"

    def test_real_ip_fallback(self):
        request = make_request("10.0.0.2", {"X-Real-IP": "198.51.100.8"})

        assert get_client_ip(request, ["10.0.0.2"]) == "198.51.100.8"

    def test_untrusted_peer_headers_ignored(self):
        request = make_request("203.0.113.5", {"X-Real-IP": "198.51.100.8"})

        assert get_client_ip(request, ["10.0.0.0/8"]) == "203.0.113.5"

    def test_invalid_forwarded_value_falls_back_to_peer(self):
        request = make_request("10.0.0.2", {"X-Forwarded-For": "bogus"})

        assert get_client_ip(request, ["10.0.0.2"]) == "10.0.0.2"


class TestMaskSensitiveData:
    def test_masks_sensitive_keys(self):
        masked = mask_sensitive_data(
            {
                "password": "supersecret",
                "Authorization": "Bearer abc.def",
                "user_api_key": "k1",
                "email": "admin@example.com",
            }
        )

        assert masked == {
            "password": "su***et",
            "Authorization": "Be***ef",
            "user_api_key": "***",
            "email": "admin@example.com",
        }

    def test_nested_and_non_string_values(self):
        masked = mask_sensitive_data({"outer": {"token": 12345}, "count": 3})

        assert masked == {"outer": {"token": "***"}, "count": 3}

    def test_input_is_not_modified(self):
        data = {"password": "supersecret"}

        mask_sensitive_data(data)

        assert data == {"password": "supersecret"}


class TestParseLimitString:
    @pytest.mark.parametrize(
        "limit_str, expected",
        [
            ("10/min", (10, 60)),
            ("100/hour", (100, 3600)),
            ("5/sec", (5, 1)),
            ("1000/day", (1000, 86400)),
            ("3/ Minute", (3, 60)),
        ],
    )
    def test_valid(self, limit_str, expected):
        assert parse_limit_string(limit_str) == expected

    @pytest.mark.parametrize("limit_str", ["10", "ten/min", "10/fortnight", "0/min", "-1/min"])
    def test_invalid(self, limit_str):
        with pytest.raises(ValueError):
            parse_limit_string(limit_str)


def test_secure_compare():
    assert secure_compare("abc", "abc")
    assert not secure_compare("abc", "abd")
