"""Unit tests for the kopf handlers and operator startup helpers."""

from unittest.mock import AsyncMock, MagicMock, patch

import kopf
import pytest

from jwker_operator import operator
from jwker_operator.errors import ConfigurationError
from jwker_operator.handlers import jwker as handlers
from jwker_operator.utils import jwk as jwkutil
from jwker_operator.utils.secret_manager import SecretManager

from .fakes import NAMESPACE


@pytest.fixture(autouse=True)
def no_jitter():
    with patch.object(handlers, "RECONCILE_JITTER_MAX", 0.0):
        yield


class TestReconcileHandler:
    @pytest.mark.asyncio
    async def test_delegates_to_reconciler(self):
        memo = kopf.Memo()
        memo.reconciler = MagicMock()
        memo.reconciler.reconcile = AsyncMock(return_value={"secretName": "s"})

        result = await handlers.reconcile_jwker(
            name="app", namespace=NAMESPACE, memo=memo, retry=2, reason="update"
        )

        assert result is None
        memo.reconciler.reconcile.assert_awaited_once_with(
            name="app", namespace=NAMESPACE, retry=2
        )

    @pytest.mark.asyncio
    async def test_not_ready_before_startup(self):
        with pytest.raises(kopf.TemporaryError):
            await handlers.reconcile_jwker(
                name="app", namespace=NAMESPACE, memo=kopf.Memo(), retry=0, reason="create"
            )


class TestDeleteHandler:
    @pytest.mark.asyncio
    async def test_passes_body_to_finalize(self):
        memo = kopf.Memo()
        memo.reconciler = MagicMock()
        memo.reconciler.finalize = AsyncMock(return_value=None)
        body = {"metadata": {"name": "app", "namespace": NAMESPACE}}

        await handlers.delete_jwker(
            name="app", namespace=NAMESPACE, body=body, memo=memo, retry=0
        )

        memo.reconciler.finalize.assert_awaited_once_with(
            name="app", namespace=NAMESPACE, retry=0, body=body
        )

    @pytest.mark.asyncio
    async def test_failure_propagates(self):
        memo = kopf.Memo()
        memo.reconciler = MagicMock()
        memo.reconciler.finalize = AsyncMock(
            side_effect=kopf.TemporaryError("broker down", delay=10)
        )
        with pytest.raises(kopf.TemporaryError):
            await handlers.delete_jwker(
                name="app", namespace=NAMESPACE, body={}, memo=memo, retry=0
            )


class TestLoadControllerKey:
    @pytest.mark.asyncio
    async def test_bootstraps_from_secret(self, core_api):
        key = await operator.load_controller_key(SecretManager(core_api))

        names = {name for (_, name) in core_api.secrets}
        assert names == {"jwker-private-jwk", "jwker-public-jwks"}
        assert jwkutil.is_private(key)

    @pytest.mark.asyncio
    async def test_prefers_key_file(self, core_api, tmp_path, controller_jwk):
        path = tmp_path / "jwk.json"
        path.write_text(jwkutil.serialize(controller_jwk))

        with patch.object(operator.operator_settings, "client_jwk_file", str(path)):
            key = await operator.load_controller_key(SecretManager(core_api))

        assert key == controller_jwk
        names = {name for (_, name) in core_api.secrets}
        assert names == {"jwker-public-jwks"}


class TestStartup:
    @pytest.mark.asyncio
    async def test_refuses_to_start_without_brokers(self):
        settings = kopf.OperatorSettings()
        with (
            patch.object(operator, "configure_logging"),
            patch.object(operator.operator_settings, "tokendings_base_urls", ""),
        ):
            with pytest.raises(ConfigurationError):
                await operator.startup_handler(settings=settings, memo=kopf.Memo())

    @pytest.mark.asyncio
    async def test_cleanup_releases_resources(self):
        memo = kopf.Memo()
        memo.metrics_refresh = MagicMock()
        memo.broker = MagicMock()
        memo.broker.close = AsyncMock()
        memo.metrics_server = MagicMock()
        memo.metrics_server.stop = AsyncMock()

        await operator.cleanup_handler(memo=memo)

        memo.metrics_refresh.cancel.assert_called_once()
        memo.broker.close.assert_awaited_once()
        memo.metrics_server.stop.assert_awaited_once()
