"""
Unit Tests for the Metrics Abstraction Layer

Test Coverage:
- MetricsClient interface implementations
- Backend selection via factory function
- Delegation to aio-statsd
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from aio_statsd import TelegrafStatsdClient

from social.graze.pod.app.metrics import (
    MetricsClient,
    NoOpMetricsClient,
    TelegrafCompatibilityClient,
    create_metrics_client,
)


class TestMetricsClientInterface:
    """Test the abstract MetricsClient interface."""

    def test_interface_is_abstract(self):
        """MetricsClient should be abstract and not instantiable."""
        with pytest.raises(TypeError):
            MetricsClient()


class TestNoOpMetricsClient:
    """Test the NoOpMetricsClient implementation."""

    @pytest.fixture
    def noop_client(self):
        return NoOpMetricsClient()

    def test_noop_increment_and_timer(self, noop_client):
        noop_client.increment("pod.request.count", 1, {"method": "get"})
        noop_client.increment("pod.request.count")
        noop_client.timer("pod.request.time", 0.5)

    @pytest.mark.asyncio
    async def test_noop_connect_and_close(self, noop_client):
        await noop_client.connect()
        await noop_client.close()


class TestTelegrafCompatibilityClient:
    """Test the TelegrafCompatibilityClient wrapper."""

    @pytest.fixture
    def mock_telegraf_client(self):
        """Create a mock TelegrafStatsdClient."""
        mock = Mock()
        mock.increment = Mock()
        mock.timer = Mock()
        mock.connect = AsyncMock()
        mock.close = AsyncMock()
        return mock

    @pytest.fixture
    def telegraf_client(self, mock_telegraf_client):
        return TelegrafCompatibilityClient(mock_telegraf_client)

    def test_telegraf_increment(self, telegraf_client, mock_telegraf_client):
        telegraf_client.increment("pod.request.count", 2, {"method": "put"})

        mock_telegraf_client.increment.assert_called_once_with(
            "pod.request.count", 2, tag_dict={"method": "put"}
        )

    def test_telegraf_increment_no_tags(self, telegraf_client, mock_telegraf_client):
        telegraf_client.increment("pod.refresh.count")

        mock_telegraf_client.increment.assert_called_once_with(
            "pod.refresh.count", 1, tag_dict={}
        )

    def test_telegraf_timer(self, telegraf_client, mock_telegraf_client):
        telegraf_client.timer("pod.request.time", 1.5, {"status": "200"})

        mock_telegraf_client.timer.assert_called_once_with(
            "pod.request.time", 1.5, tag_dict={"status": "200"}
        )

    @pytest.mark.asyncio
    async def test_telegraf_connect_and_close(self, telegraf_client, mock_telegraf_client):
        await telegraf_client.connect()
        await telegraf_client.close()

        mock_telegraf_client.connect.assert_awaited_once()
        mock_telegraf_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_telegraf_close_error_is_logged(
        self, telegraf_client, mock_telegraf_client, caplog
    ):
        mock_telegraf_client.close.side_effect = OSError("socket gone")

        await telegraf_client.close()

        assert "Error closing Telegraf client" in caplog.text


class TestCreateMetricsClient:
    """Test backend selection."""

    def test_none_backend(self):
        assert isinstance(create_metrics_client("none"), NoOpMetricsClient)

    def test_backend_name_is_case_insensitive(self):
        assert isinstance(create_metrics_client("NONE"), NoOpMetricsClient)

    def test_telegraf_backend_with_client(self):
        mock_client = Mock(spec=TelegrafStatsdClient)

        client = create_metrics_client("telegraf", telegraf_client=mock_client)

        assert isinstance(client, TelegrafCompatibilityClient)
        assert client.client is mock_client

    def test_telegraf_backend_creates_client(self):
        with patch("social.graze.pod.app.metrics.TelegrafStatsdClient") as mock_class:
            client = create_metrics_client("telegraf", host="statsd", port=9125)

        mock_class.assert_called_once_with(host="statsd", port=9125, debug=False)
        assert isinstance(client, TelegrafCompatibilityClient)

    def test_invalid_backend(self):
        with pytest.raises(ValueError, match="Invalid metrics backend"):
            create_metrics_client("prometheus")
