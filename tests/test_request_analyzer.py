"""Tests for request analysis and its keyword fallback."""

import json
import pytest

from toolforge.infra.error_handler import AnalysisFailure
from toolforge.models.tool import AuthMethod
from toolforge.services.request_analyzer import RequestAnalyzer, fallback_intent, intent_from_response


def fenced(data):
    return f"Here is the analysis:\n```json\n{json.dumps(data)}\n```"


class TestFallbackIntent:

    @pytest.mark.parametrize("request_text,service,tool_name", [
        ("read my slack channels", "slack", "read-messages"),
        ("Get the latest Slack messages", "slack", "read-messages"),
        ("send a slack message to #general", "slack", "send-message"),
        ("post to slack", "slack", "send-message"),
        ("read slack and send a reply", "slack", "read-messages"),
        ("slack", "slack", "read-messages"),
        ("create a github issue", "github", "create-issue"),
        ("GitHub stuff", "github", "create-issue"),
        ("convert celsius to fahrenheit", "generic", "custom-tool"),
        ("", "generic", "custom-tool"),
    ])
    def test_keyword_table(self, providers, request_text, service, tool_name):
        intent = fallback_intent(request_text, providers)
        assert intent.service == service
        assert intent.tool_name == tool_name

    def test_slack_read_requires_oauth(self, providers):
        intent = fallback_intent("read my slack channels", providers)
        assert intent.auth.method == AuthMethod.OAUTH2
        assert intent.auth.provider == "slack"
        assert intent.auth.scopes == ["channels:read", "channels:history"]
        assert intent.auth.auth_url == "https://slack.com/oauth/v2/authorize"
        assert intent.parameters["channel"].required

    def test_generic_tool_has_no_auth(self, providers):
        intent = fallback_intent("convert celsius to fahrenheit", providers)
        assert intent.auth.method == AuthMethod.NONE
        assert not intent.auth.requires_oauth
        assert list(intent.parameters) == ["input"]
        assert intent.description == "convert celsius to fahrenheit"


class TestIntentFromResponse:

    def test_normalizes_names_and_auth(self, providers):
        intent = intent_from_response({
            "service": "Slack",
            "toolName": "Read Messages",
            "description": "Read channel messages",
            "parameters": {
                "channel": {"type": "string", "required": True},
                "limit": {"type": "int"},
                "bad name": {"type": "string"},
            },
            "authentication": {"method": "oauth2", "provider": "slack"},
        }, providers)

        assert intent.service == "slack"
        assert intent.tool_name == "read-messages"
        assert set(intent.parameters) == {"channel", "limit"}
        assert intent.parameters["limit"].type == "string"
        assert intent.auth.requires_oauth
        assert intent.auth.scopes == ["channels:read", "channels:history", "chat:write"]
        assert intent.auth.token_url == "https://slack.com/api/oauth.v2.access"

    def test_missing_tool_name_raises(self, providers):
        with pytest.raises(AnalysisFailure):
            intent_from_response({"service": "slack"}, providers)

    def test_non_object_parameters_raise(self, providers):
        with pytest.raises(AnalysisFailure):
            intent_from_response({"service": "slack", "toolName": "x", "parameters": ["a"]}, providers)

    @pytest.mark.parametrize("scopes,expected", [
        ("channels:read", ["channels:read"]),
        ("channels:read,chat:write", ["channels:read", "chat:write"]),
        ("repo read:user", ["repo", "read:user"]),
        (["channels:history"], ["channels:history"]),
    ])
    def test_scopes_string_is_not_split_into_characters(self, providers, scopes, expected):
        intent = intent_from_response({
            "service": "slack",
            "toolName": "read-messages",
            "authentication": {"method": "oauth2", "provider": "slack", "scopes": scopes},
        }, providers)
        assert intent.auth.scopes == expected

    def test_non_list_scopes_raise(self, providers):
        with pytest.raises(AnalysisFailure):
            intent_from_response({
                "service": "slack",
                "toolName": "x",
                "authentication": {"method": "oauth2", "scopes": {"read": True}},
            }, providers)


class TestRequestAnalyzer:

    @pytest.mark.asyncio
    async def test_uses_reasoning_response(self, providers, reasoning_factory):
        reasoning = reasoning_factory([fenced({
            "service": "github",
            "toolName": "list-pull-requests",
            "description": "List open pull requests",
            "parameters": {"repo": {"type": "string", "required": True}},
            "authentication": {"method": "oauth2", "provider": "github", "scopes": ["repo"]},
        })])
        analyzer = RequestAnalyzer(reasoning, providers)

        intent = await analyzer.analyze_request("show my github pull requests", context="owner is acme")

        assert intent.service == "github"
        assert intent.tool_name == "list-pull-requests"
        assert intent.auth.scopes == ["repo"]
        assert reasoning.calls[0]["purpose"] == "analysis"
        assert "Context: owner is acme" in reasoning.calls[0]["user_prompt"]

    @pytest.mark.asyncio
    async def test_falls_back_when_reasoning_unavailable(self, providers, reasoning_factory):
        analyzer = RequestAnalyzer(reasoning_factory(), providers)
        intent = await analyzer.analyze_request("read my slack channels")
        assert (intent.service, intent.tool_name) == ("slack", "read-messages")

    @pytest.mark.asyncio
    async def test_falls_back_on_unparseable_response(self, providers, reasoning_factory):
        analyzer = RequestAnalyzer(reasoning_factory(["I cannot help with that."]), providers)
        intent = await analyzer.analyze_request("create a github issue")
        assert (intent.service, intent.tool_name) == ("github", "create-issue")

    @pytest.mark.asyncio
    async def test_falls_back_on_unexpected_exception(self, providers, reasoning_factory):
        analyzer = RequestAnalyzer(reasoning_factory([RuntimeError("boom")]), providers)
        intent = await analyzer.analyze_request("weather lookup")
        assert intent.tool_name == "custom-tool"

    @pytest.mark.asyncio
    async def test_falls_back_on_incomplete_json(self, providers, reasoning_factory):
        analyzer = RequestAnalyzer(reasoning_factory([fenced({"service": "slack"})]), providers)
        intent = await analyzer.analyze_request("send slack message")
        assert intent.tool_name == "send-message"
