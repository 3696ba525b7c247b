import pytest
import requests

from polyauth import RouteTemplate, fingerprint, fingerprint_request, normalize_url


def test_same_route_fingerprints_identically():
    a = fingerprint("GET", "https://API.example.com:443/users/?page=2#top")
    b = fingerprint("get", "https://api.example.com/users")
    assert a == b


def test_distinct_routes_fingerprint_differently():
    base = fingerprint("GET", "https://api.example.com/users")
    assert fingerprint("POST", "https://api.example.com/users") != base
    assert fingerprint("GET", "https://api.example.com/user") != base
    assert fingerprint("GET", "https://other.example.com/users") != base
    assert fingerprint("GET", "http://api.example.com/users") != base
    assert fingerprint("GET", "https://api.example.com:8443/users") != base


def test_normalize_url():
    assert normalize_url("HTTPS://Example.COM:443//a//b/") == "https://example.com/a/b"
    assert normalize_url("http://example.com:80") == "http://example.com/"
    assert normalize_url("http://example.com:8080/x?y=1") == "http://example.com:8080/x"
    assert normalize_url("/repos/") == "/repos"


def test_empty_inputs_are_rejected():
    with pytest.raises(ValueError):
        normalize_url("")
    with pytest.raises(ValueError):
        fingerprint("", "https://example.com")


def test_fingerprint_request_ignores_headers_and_body():
    r1 = requests.Request("POST", "https://api.example.com/items", json={"a": 1}, headers={"X-Trace": "1"}).prepare()
    r2 = requests.Request("POST", "https://api.example.com/items?debug=1", data=b"other").prepare()
    assert fingerprint_request(r1) == fingerprint_request(r2)


def test_route_template_matches_placeholders():
    route = RouteTemplate("GET", "https://api.github.com/repos/{owner}/{repo}")
    assert route.params == ("owner", "repo")
    assert route.matches("GET", "https://api.github.com/repos/octo/hello?x=1")
    assert not route.matches("GET", "https://api.github.com/repos/octo")
    assert not route.matches("GET", "https://api.github.com/repos/octo/hello/issues")
    assert not route.matches("POST", "https://api.github.com/repos/octo/hello")
    assert not route.matches("GET", "https://example.com/repos/octo/hello")
    assert route.canonical == "https://api.github.com/repos/{owner}/{repo}"


def test_path_only_template_matches_any_host():
    route = RouteTemplate("get", "/user/{id}")
    assert route.matches("GET", "https://a.example.com/user/1")
    assert route.matches("GET", "http://b.example.com/user/2")
    assert route.fingerprint == fingerprint("GET", "/user/{id}")


def test_duplicate_placeholders_are_rejected():
    with pytest.raises(ValueError):
        RouteTemplate("GET", "/a/{id}/b/{id}")
