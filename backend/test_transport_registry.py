import pytest

from common.errors import ConfigurationError
from common.settings import PushSettings
from transports.expo_transport import ExpoTransport
from transports.fake_transports import FakeExpoTransport, FakeFCMTransport
from transports.fcm_transport import FCMTransport
from transports.registry import load_transports


@pytest.mark.parametrize("mode", ["demo", "test"])
def test_demo_and_test_modes_use_fakes(mode):
    transports = load_transports(PushSettings(mode=mode, expo_chunk_size=25))
    assert isinstance(transports.expo, FakeExpoTransport)
    assert isinstance(transports.fcm, FakeFCMTransport)
    assert transports.expo.chunk_size == 25


def test_prod_mode_builds_real_transports():
    settings = PushSettings(
        mode="prod",
        fcm_server_key="legacy-key",
        expo_access_token="expo-token",
        retry_attempts=5,
    )
    transports = load_transports(settings)
    assert isinstance(transports.expo, ExpoTransport)
    assert isinstance(transports.fcm, FCMTransport)
    assert transports.expo.access_token == "expo-token"
    assert transports.fcm.retry_attempts == 5
    assert transports.fcm.has_legacy is True
    assert transports.fcm.has_primary is False


def test_prod_mode_without_fcm_credentials():
    with pytest.raises(ConfigurationError):
        load_transports(PushSettings(mode="prod"))


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("PUSH_MODE", "demo")
    transports = load_transports()
    assert isinstance(transports.expo, FakeExpoTransport)


@pytest.mark.asyncio
async def test_aclose_closes_both():
    transports = load_transports(PushSettings(mode="test"))
    await transports.aclose()
    assert transports.expo.closed is True
    assert transports.fcm.closed is True
