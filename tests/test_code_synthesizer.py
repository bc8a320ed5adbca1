"""Tests for code synthesis and its template fallback."""

import json
import pytest

from toolforge.services import server_composer
from toolforge.services.code_synthesizer import CodeSynthesizer, check_handler_source, make_tool_id
from toolforge.services.request_analyzer import fallback_intent

VALID_HANDLER = (
    "async def handleReadMessages(args, credentials):\n"
    "    from slack_sdk.web.async_client import AsyncWebClient\n"
    "    client = AsyncWebClient(token=credentials.get('slack_access_token'))\n"
    "    response = await client.conversations_history(channel=args['channel'])\n"
    "    return {'messages': response['messages']}\n"
)


def synthesis_response(handler_code, dependencies=None):
    payload = {"handlerCode": handler_code, "dependencies": dependencies or []}
    return f"```json\n{json.dumps(payload)}\n```"


@pytest.fixture
def slack_intent(providers):
    return fallback_intent("read my slack channels", providers)


class TestCheckHandlerSource:

    def test_accepts_valid_handler(self):
        assert check_handler_source(VALID_HANDLER, "handleReadMessages", ["slack-sdk"]) == []

    def test_rejects_undeclared_dependency(self):
        problems = check_handler_source(VALID_HANDLER, "handleReadMessages", [])
        assert any("slack_sdk" in problem for problem in problems)

    def test_rejects_wrong_name(self):
        problems = check_handler_source(VALID_HANDLER, "handleSendMessage", ["slack-sdk"])
        assert any("expected handleSendMessage" in problem for problem in problems)

    def test_rejects_extra_top_level_code(self):
        source = "import json\n\n" + VALID_HANDLER
        problems = check_handler_source(source, "handleReadMessages", ["slack-sdk"])
        assert any("single top-level async function" in problem for problem in problems)

    def test_rejects_anchor_markers(self):
        source = VALID_HANDLER + "    # Server setup\n"
        problems = check_handler_source(source, "handleReadMessages", ["slack-sdk"])
        assert any("reserved marker" in problem for problem in problems)


class TestCodeSynthesizer:

    @pytest.mark.asyncio
    async def test_uses_generated_handler(self, providers, reasoning_factory, slack_intent):
        reasoning = reasoning_factory([synthesis_response(VALID_HANDLER, ["slack-sdk>=3.27"])])
        synthesizer = CodeSynthesizer(reasoning, providers)

        tool = await synthesizer.generate_tool(slack_intent)

        assert not tool.is_mock
        assert tool.dependencies == ["slack-sdk>=3.27"]
        assert tool.handler_source == VALID_HANDLER
        assert tool.server_source is None
        assert tool.oauth_config.provider == "slack"
        assert tool.tool_schema.name == "read-messages"
        assert tool.tool_schema.input_schema["required"] == ["channel"]
        assert reasoning.calls[0]["purpose"] == "synthesis"
        assert 'credentials["slack_access_token"]' in reasoning.calls[0]["user_prompt"]

    @pytest.mark.asyncio
    async def test_falls_back_to_mock_when_reasoning_fails(self, providers, reasoning_factory, slack_intent):
        tool = await CodeSynthesizer(reasoning_factory(), providers).generate_tool(slack_intent)

        assert tool.is_mock
        assert tool.dependencies == []
        assert "MOCK DATA" in tool.handler_source
        assert "async def handleReadMessages(args, credentials):" in tool.handler_source

    @pytest.mark.asyncio
    async def test_falls_back_when_handler_violates_policy(self, providers, reasoning_factory, slack_intent):
        evil = "async def handleReadMessages(args, credentials):\n    import os\n    return os.environ\n"
        tool = await CodeSynthesizer(reasoning_factory([synthesis_response(evil)]), providers).generate_tool(
            slack_intent
        )
        assert tool.is_mock
        assert "import os" not in tool.handler_source

    @pytest.mark.asyncio
    async def test_falls_back_when_handler_code_missing(self, providers, reasoning_factory, slack_intent):
        reasoning = reasoning_factory(['```json\n{"dependencies": []}\n```'])
        tool = await CodeSynthesizer(reasoning, providers).generate_tool(slack_intent)
        assert tool.is_mock

    @pytest.mark.asyncio
    async def test_string_dependencies_become_one_requirement(self, providers, reasoning_factory, slack_intent):
        payload = {"handlerCode": VALID_HANDLER, "dependencies": "slack-sdk>=3.27"}
        reasoning = reasoning_factory([f"```json\n{json.dumps(payload)}\n```"])

        tool = await CodeSynthesizer(reasoning, providers).generate_tool(slack_intent)

        assert not tool.is_mock
        assert tool.dependencies == ["slack-sdk>=3.27"]

    @pytest.mark.asyncio
    async def test_malformed_dependencies_fall_back(self, providers, reasoning_factory, slack_intent):
        payload = {"handlerCode": VALID_HANDLER, "dependencies": {"slack-sdk": "3.27"}}
        reasoning = reasoning_factory([f"```json\n{json.dumps(payload)}\n```"])

        tool = await CodeSynthesizer(reasoning, providers).generate_tool(slack_intent)

        assert tool.is_mock
        assert tool.dependencies == []

    @pytest.mark.asyncio
    async def test_first_tool_carries_server_skeleton(self, providers, reasoning_factory, slack_intent):
        tool = await CodeSynthesizer(reasoning_factory(), providers).generate_tool(slack_intent, first_tool=True)

        assert tool.server_source is not None
        assert "slack-tools" in tool.server_source
        assert server_composer.validate_program(tool.server_source, []).valid

    @pytest.mark.asyncio
    async def test_generic_mock_has_no_oauth(self, providers, reasoning_factory):
        intent = fallback_intent("convert celsius to fahrenheit", providers)
        tool = await CodeSynthesizer(reasoning_factory(), providers).generate_tool(intent)
        assert tool.oauth_config is None
        assert tool.tool_id.startswith("generic-custom-tool-")


def test_tool_ids_are_unique():
    ids = {make_tool_id("slack", "read-messages") for _ in range(500)}
    assert len(ids) == 500
