"""Tests for the token cache and the authenticated request executor."""

import json
from unittest.mock import patch

import pytest

from mcp_zentao.client import TokenCache, ZenTaoClient
from mcp_zentao.models import AuthenticationError, ConfigurationError, RequestError, ZenTaoConfig

BASE_URL = "https://zentao.example.com"

TOKEN_URL = f"{BASE_URL}/api.php/v1/tokens"


def _login_calls(session):
    return [c for c in session.request.call_args_list if c.args[1] == TOKEN_URL]


def _api_calls(session):
    return [c for c in session.request.call_args_list if c.args[1] != TOKEN_URL]


@pytest.fixture
def client(zentao_config, fake_session):
    return ZenTaoClient(zentao_config, session=fake_session)


# ==================== TOKEN CACHE ====================


def test_two_calls_log_in_once(client, fake_session, response_factory):
    fake_session.request.side_effect = [
        response_factory(200, {"token": "tok-1"}),
        response_factory(200, {"data": []}),
        response_factory(200, {"data": []}),
    ]

    client.request("projects")
    client.request("products")

    assert len(_login_calls(fake_session)) == 1
    for call in _api_calls(fake_session):
        assert call.kwargs["headers"]["Token"] == "tok-1"


def test_login_exchange_body(client, fake_session, response_factory):
    fake_session.request.return_value = response_factory(200, {"token": "tok-1"})

    assert client.get_token() == "tok-1"

    method, url = fake_session.request.call_args.args
    assert method == "POST"
    assert url == TOKEN_URL
    assert json.loads(fake_session.request.call_args.kwargs["data"]) == {"account": "alice", "password": "secret"}
    assert fake_session.request.call_args.kwargs["headers"] == {"Content-Type": "application/json"}


def test_force_refresh_replaces_cached_token(fake_session, response_factory):
    config = ZenTaoConfig(base_url=BASE_URL, account="alice", password="secret", token="old")
    client = ZenTaoClient(config, session=fake_session)
    fake_session.request.side_effect = [
        response_factory(200, {"token": "new"}),
        response_factory(200, {"data": []}),
        response_factory(200, {"data": []}),
    ]

    client.request("projects", force_token_refresh=True)
    client.request("projects")

    assert len(_login_calls(fake_session)) == 1
    assert [c.kwargs["headers"]["Token"] for c in _api_calls(fake_session)] == ["new", "new"]
    assert client.tokens.token == "new"


def test_seeded_token_skips_login(fake_session, response_factory):
    config = ZenTaoConfig(base_url=BASE_URL, account="alice", password="secret", token="seeded")
    client = ZenTaoClient(config, session=fake_session)
    fake_session.request.return_value = response_factory(200, {"data": []})

    client.request("projects")

    assert _login_calls(fake_session) == []
    assert fake_session.request.call_args.kwargs["headers"]["Token"] == "seeded"


def test_token_caches_are_independent(zentao_config, fake_session, response_factory):
    fake_session.request.side_effect = [
        response_factory(200, {"token": "first"}),
        response_factory(200, {"token": "second"}),
    ]
    cache_a = TokenCache(zentao_config, fake_session)
    cache_b = TokenCache(zentao_config, fake_session)

    assert cache_a.get_token() == "first"
    assert cache_b.get_token() == "second"
    assert cache_a.get_token() == "first"


def test_invalidate_forces_new_login(zentao_config, fake_session, response_factory):
    fake_session.request.side_effect = [
        response_factory(200, {"token": "first"}),
        response_factory(200, {"token": "second"}),
    ]
    cache = TokenCache(zentao_config, fake_session)
    cache.get_token()
    cache.invalidate()

    assert cache.token is None
    assert cache.get_token() == "second"


def test_login_http_failure(client, fake_session, response_factory):
    fake_session.request.return_value = response_factory(401, {"error": "Unauthorized"})

    with pytest.raises(AuthenticationError, match="Token request failed: 401"):
        client.get_token()
    assert client.tokens.token is None


def test_login_non_json_response(client, fake_session, response_factory):
    fake_session.request.return_value = response_factory(200, "<html>login</html>", {"Content-Type": "text/html"})

    with pytest.raises(AuthenticationError, match="not valid JSON"):
        client.get_token()


@pytest.mark.parametrize("body", [{"error": "nope"}, {"token": ""}, ["token"], None])
def test_login_without_token_field(client, fake_session, response_factory, body):
    fake_session.request.return_value = response_factory(200, body if body is not None else "null")

    with pytest.raises(AuthenticationError, match="Token missing in response"):
        client.get_token()


@pytest.mark.parametrize(
    "kwargs,missing",
    [
        ({"account": "alice", "password": "secret"}, "ZENTAO_BASE_URL"),
        ({"base_url": BASE_URL, "password": "secret"}, "ZENTAO_ACCOUNT"),
        ({"base_url": BASE_URL, "account": "alice"}, "ZENTAO_PASSWORD"),
    ],
)
def test_missing_configuration_fails_before_any_io(fake_session, kwargs, missing):
    client = ZenTaoClient(ZenTaoConfig(**kwargs), session=fake_session)

    with pytest.raises(ConfigurationError, match=missing):
        client.request("projects")
    fake_session.request.assert_not_called()


def test_missing_configuration_fails_even_with_seeded_token(fake_session):
    client = ZenTaoClient(ZenTaoConfig(token="seeded"), session=fake_session)

    with pytest.raises(ConfigurationError, match="ZENTAO_BASE_URL"):
        client.request("projects")


def test_client_resolves_config_when_omitted(zentao_config, fake_session):
    with patch("mcp_zentao.client.config_module.resolve", return_value=zentao_config) as mock_resolve:
        client = ZenTaoClient(session=fake_session)

    mock_resolve.assert_called_once_with()
    assert client.config is zentao_config


# ==================== URL BUILDING ====================


def test_leading_slash_is_optional(client):
    assert client.build_url("/projects") == client.build_url("projects") == f"{BASE_URL}/api.php/v1/projects"


def test_nested_relative_path(client):
    assert client.build_url("projects/1") == f"{BASE_URL}/api.php/v1/projects/1"


def test_absolute_url_used_verbatim(client):
    assert client.build_url("https://other.example.com/api.php/v1/users") == "https://other.example.com/api.php/v1/users"
    assert client.build_url("HTTP://other.example.com/x") == "HTTP://other.example.com/x"


def test_base_url_trailing_slash_is_stripped(fake_session):
    client = ZenTaoClient(ZenTaoConfig(base_url=f"{BASE_URL}/", account="a", password="p"), session=fake_session)
    assert client.build_url("projects") == f"{BASE_URL}/api.php/v1/projects"


def test_query_drops_none_values(client):
    url = client.build_url("bugs", {"page": 1, "keywords": None, "product": 3})
    assert url == f"{BASE_URL}/api.php/v1/bugs?page=1&product=3"
    assert "keywords" not in url


def test_query_values_are_encoded(client):
    url = client.build_url("products", {"keywords": "a b&c", "all": True, "mine": False})
    assert url == f"{BASE_URL}/api.php/v1/products?keywords=a+b%26c&all=true&mine=false"


@pytest.mark.parametrize("query", [None, {}, {"keywords": None}])
def test_empty_query_adds_no_query_string(client, query):
    assert client.build_url("products", query) == f"{BASE_URL}/api.php/v1/products"


# ==================== REQUEST EXECUTION ====================


def test_end_to_end_departments(client, fake_session, response_factory):
    fake_session.request.side_effect = [
        response_factory(200, {"token": "tok-1"}),
        response_factory(200, {"data": [{"id": 1}]}, {"Content-Type": "application/json", "X-Request-Id": "r1"}),
    ]

    response = client.request("/departments", method="GET")

    assert response.status_code == 200
    assert response.data["data"][0]["id"] == 1
    assert response.headers["X-Request-Id"] == "r1"

    call = _api_calls(fake_session)[0]
    assert call.args == ("GET", f"{BASE_URL}/api.php/v1/departments")
    assert call.kwargs["data"] is None
    assert call.kwargs["headers"]["Content-Type"] == "application/json"


def test_body_is_json_serialized(client, fake_session, response_factory):
    client.tokens._token = "tok"
    fake_session.request.return_value = response_factory(200, {"id": 9})

    client.request("stories", method="post", body={"title": "Story", "pri": 1})

    call = fake_session.request.call_args
    assert call.args[0] == "POST"
    assert json.loads(call.kwargs["data"]) == {"title": "Story", "pri": 1}


def test_empty_dict_body_is_still_sent(client, fake_session, response_factory):
    client.tokens._token = "tok"
    fake_session.request.return_value = response_factory(200, {})

    client.request("bugs/1/confirm", method="POST", body={})

    assert fake_session.request.call_args.kwargs["data"] == "{}"


def test_timeout_is_passed_through(fake_session, response_factory):
    config = ZenTaoConfig(base_url=BASE_URL, account="a", password="p", token="tok", timeout=12.5)
    client = ZenTaoClient(config, session=fake_session)
    fake_session.request.return_value = response_factory(200, {})

    client.request("projects")

    assert fake_session.request.call_args.kwargs["timeout"] == 12.5


def test_non_json_body_degrades_to_text(client, fake_session, response_factory):
    client.tokens._token = "tok"
    fake_session.request.return_value = response_factory(200, "plain text", {"Content-Type": "text/plain"})

    response = client.request("misc")

    assert response.data == "plain text"


def test_server_error_raises_request_error(client, fake_session, response_factory):
    client.tokens._token = "tok"
    fake_session.request.return_value = response_factory(500, "boom", {"Content-Type": "text/plain"})

    with pytest.raises(RequestError) as exc_info:
        client.request("projects")

    assert "500" in str(exc_info.value)
    assert "boom" in str(exc_info.value)
    assert exc_info.value.status_code == 500
    assert exc_info.value.body == "boom"


def test_caller_headers_are_merged_after_defaults(client, fake_session, response_factory):
    client.tokens._token = "tok"
    fake_session.request.return_value = response_factory(200, {})

    with patch("mcp_zentao.client.logger") as mock_logger:
        client.request("projects", headers={"X-Trace": "1", "token": "override"})

    headers = fake_session.request.call_args.kwargs["headers"]
    assert headers["X-Trace"] == "1"
    assert {k.lower(): v for k, v in headers.items()}["token"] == "override"
    mock_logger.warning.assert_called_once()


# ==================== CONVENIENCE CALLS ====================


def test_list_my_projects_filters_by_account(client, fake_session, response_factory):
    client.tokens._token = "tok"
    fake_session.request.return_value = response_factory(
        200,
        {
            "page": 1,
            "projects": [
                {"id": 1, "name": "Alpha", "PM": "alice"},
                {"id": 2, "name": "Beta", "PM": "bob"},
                {"id": 3, "name": "Gamma", "teamMembers": [{"account": "ALICE"}]},
            ],
        },
    )

    projects = client.list_my_projects(keyword=None, limit=50)

    assert [p["id"] for p in projects] == [1, 3]
    assert fake_session.request.call_args.args[1] == f"{BASE_URL}/api.php/v1/projects?page=1&limit=50"


def test_search_products_sends_keywords(client, fake_session, response_factory):
    client.tokens._token = "tok"
    fake_session.request.return_value = response_factory(
        200, {"products": [{"id": 1, "name": "Foo"}, {"id": 2, "name": "Bar"}]}
    )

    products = client.search_products(keyword="foo", limit=20)

    assert products == [{"id": 1, "name": "Foo"}]
    assert fake_session.request.call_args.args[1].endswith("products?page=1&limit=20&keywords=foo")


def test_list_my_bugs_defaults_to_active(client, fake_session, response_factory):
    client.tokens._token = "tok"
    payload = {
        "bugs": [
            {"id": 1, "title": "A", "status": "active", "assignedTo": "alice"},
            {"id": 2, "title": "B", "status": "resolved", "assignedTo": "alice"},
            {"id": 3, "title": "C", "status": "active", "assignedTo": "bob"},
        ]
    }
    fake_session.request.return_value = response_factory(200, payload)

    bugs, raw = client.list_my_bugs(5, page=2)

    assert [b["id"] for b in bugs] == [1]
    assert raw == payload
    assert fake_session.request.call_args.args[1] == f"{BASE_URL}/api.php/v1/bugs?page=2&limit=20&product=5"

    all_bugs, _ = client.list_my_bugs(5, all_statuses=True)
    assert [b["id"] for b in all_bugs] == [1, 2]


def test_get_bug_extracts_step_images(client, fake_session, response_factory):
    client.tokens._token = "tok"
    fake_session.request.return_value = response_factory(
        200,
        {"id": 7, "title": "Crash", "steps": '<p>1</p><img src="https://cdn/x.png"><img src="data:image/png;base64,A">'},
    )

    bug = client.get_bug(7)

    assert bug["id"] == 7
    assert bug["stepsHtml"].startswith("<p>1</p>")
    assert bug["stepsImages"] == ["https://cdn/x.png"]


def test_get_bug_without_steps(client, fake_session, response_factory):
    client.tokens._token = "tok"
    fake_session.request.return_value = response_factory(200, {"id": 7})

    bug = client.get_bug(7)

    assert bug["stepsHtml"] == ""
    assert bug["stepsImages"] == []


def test_resolve_bug_posts_resolution(client, fake_session, response_factory):
    client.tokens._token = "tok"
    fake_session.request.return_value = response_factory(200, {"id": 7, "status": "resolved"})

    response = client.resolve_bug(7, comment="Fixed in build 42")

    call = fake_session.request.call_args
    assert call.args == ("POST", f"{BASE_URL}/api.php/v1/bugs/7/resolve")
    assert json.loads(call.kwargs["data"]) == {"resolution": "fixed", "comment": "Fixed in build 42"}
    assert response.data["status"] == "resolved"


def test_resolve_bug_without_comment_omits_it(client, fake_session, response_factory):
    client.tokens._token = "tok"
    fake_session.request.return_value = response_factory(200, {})

    client.resolve_bug(7)

    assert json.loads(fake_session.request.call_args.kwargs["data"]) == {"resolution": "fixed"}
