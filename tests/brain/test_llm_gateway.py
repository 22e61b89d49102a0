import pytest
from unittest.mock import AsyncMock, Mock, patch

from somnus.brain.llm_gateway import (
    LLMGateway,
    GatewayNotConfiguredError,
    UpstreamClientError,
    KeysExhaustedError,
)
from conftest import make_config, completion, ProviderError

KEYS = ["key-aaaaa", "key-bbbbb", "key-ccccc", "key-ddddd"]


@pytest.fixture
def gateway():
    return LLMGateway(make_config(api_keys=KEYS))


class TestLLMGatewayInitialization:
    def test_init(self, gateway):
        assert gateway.keys == KEYS
        assert gateway.model == "gemini/gemini-2.0-flash"
        assert gateway.is_configured

    def test_not_configured(self):
        assert not LLMGateway(make_config()).is_configured

    @pytest.mark.parametrize("status, retryable", [
        (None, True), (200, True), (302, True), (429, True), (408, True), (500, True), (503, True),
        (400, False), (401, False), (403, False), (404, False),
    ])
    def test_classification(self, status, retryable):
        assert LLMGateway._is_retryable(status) is retryable


class TestLLMGatewayFailover:
    @pytest.mark.asyncio
    async def test_first_key_success(self, gateway):
        with patch("somnus.brain.llm_gateway.litellm.acompletion", new_callable=AsyncMock) as mock_complete:
            mock_complete.return_value = completion("  A calm dream  ")

            text = await gateway.complete("Interpret this")

            assert text == "A calm dream"
            mock_complete.assert_awaited_once_with(
                model="gemini/gemini-2.0-flash",
                messages=[{"role": "user", "content": "Interpret this"}],
                api_key="key-aaaaa",
                num_retries=0,
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failures", [[429], [500, 429], [503, 502, 429]])
    async def test_retryable_failures_move_to_next_key(self, gateway, failures):
        with patch("somnus.brain.llm_gateway.litellm.acompletion", new_callable=AsyncMock) as mock_complete:
            mock_complete.side_effect = [ProviderError(s) for s in failures] + [completion("Recovered")]

            text = await gateway.complete("prompt")

            assert text == "Recovered"
            assert mock_complete.await_count == len(failures) + 1
            used_keys = [c.kwargs["api_key"] for c in mock_complete.await_args_list]
            assert used_keys == KEYS[:len(failures) + 1]

    @pytest.mark.asyncio
    async def test_network_error_moves_to_next_key(self, gateway):
        with patch("somnus.brain.llm_gateway.litellm.acompletion", new_callable=AsyncMock) as mock_complete:
            mock_complete.side_effect = [ConnectionError("reset by peer"), completion("ok")]
            assert await gateway.complete("prompt") == "ok"
            assert mock_complete.await_count == 2

    @pytest.mark.asyncio
    async def test_non_error_status_on_exception_moves_to_next_key(self, gateway):
        with patch("somnus.brain.llm_gateway.litellm.acompletion", new_callable=AsyncMock) as mock_complete:
            mock_complete.side_effect = [ProviderError(200, "unparseable body"), completion("ok")]
            assert await gateway.complete("prompt") == "ok"
            assert mock_complete.await_count == 2

    @pytest.mark.asyncio
    async def test_empty_body_moves_to_next_key(self, gateway):
        with patch("somnus.brain.llm_gateway.litellm.acompletion", new_callable=AsyncMock) as mock_complete:
            malformed = Mock()
            malformed.choices = []
            mock_complete.side_effect = [completion(None), malformed, completion("third time")]

            assert await gateway.complete("prompt") == "third time"
            assert mock_complete.await_count == 3

    @pytest.mark.asyncio
    async def test_client_error_is_terminal(self, gateway):
        with patch("somnus.brain.llm_gateway.litellm.acompletion", new_callable=AsyncMock) as mock_complete:
            mock_complete.side_effect = [ProviderError(429), ProviderError(400, "bad request"), completion("never")]

            with pytest.raises(UpstreamClientError) as exc:
                await gateway.complete("prompt")

            assert exc.value.status_code == 400
            assert mock_complete.await_count == 2

    @pytest.mark.asyncio
    async def test_all_keys_fail(self, gateway):
        with patch("somnus.brain.llm_gateway.litellm.acompletion", new_callable=AsyncMock) as mock_complete:
            mock_complete.side_effect = ProviderError(429)

            with pytest.raises(KeysExhaustedError) as exc:
                await gateway.complete("prompt")

            assert exc.value.attempts == len(KEYS)
            assert mock_complete.await_count == len(KEYS)

    @pytest.mark.asyncio
    async def test_no_keys_issues_no_call(self):
        gateway = LLMGateway(make_config())
        with patch("somnus.brain.llm_gateway.litellm.acompletion", new_callable=AsyncMock) as mock_complete:
            with pytest.raises(GatewayNotConfiguredError):
                await gateway.complete("prompt")
            mock_complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout_passed_through(self):
        config = make_config(api_keys=["only-key"])
        config.llm.timeout = 12.5
        gateway = LLMGateway(config)
        with patch("somnus.brain.llm_gateway.litellm.acompletion", new_callable=AsyncMock) as mock_complete:
            mock_complete.return_value = completion("ok")
            await gateway.complete("prompt")
            assert mock_complete.call_args.kwargs["timeout"] == 12.5

    @pytest.mark.asyncio
    async def test_keys_are_never_logged_in_full(self, gateway, caplog):
        with patch("somnus.brain.llm_gateway.litellm.acompletion", new_callable=AsyncMock) as mock_complete:
            mock_complete.side_effect = [ProviderError(500), completion("ok")]
            await gateway.complete("prompt")

        assert "key-aaaaa" not in caplog.text
        assert "...aaaaa" in caplog.text
