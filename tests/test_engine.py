from __future__ import annotations

import threading

import pytest

from conftest import FakeRawDevice, FakeRunner
from ztwipe.custody import ChainOfCustodyClient
from ztwipe.engine import DeviceGuard, WipeOrchestrator
from ztwipe.errors import DeviceBusyError, DevicePolicyError, ErasureError
from ztwipe.models import Device, DeviceType, WipeMethod, WipeStatus
from ztwipe.strategies import BlockOverwrite, ErasureStrategy, default_strategies


class RecordingStrategy(ErasureStrategy):
    def __init__(self, method: WipeMethod, error: Exception | None = None) -> None:
        self.method = method
        self.error = error
        self.paths: list[str] = []

    def execute(self, device_path: str) -> None:
        self.paths.append(device_path)
        if self.error is not None:
            raise self.error


def _device(**overrides) -> Device:
    values = dict(
        name="sdb",
        path="/dev/sdb",
        size_bytes=1000,
        model="X1",
        serial="S1",
        device_type=DeviceType.ATA_SCSI,
        supported_methods={WipeMethod.PLAIN_OVERWRITE, WipeMethod.ATA_SECURE_ERASE},
    )
    values.update(overrides)
    return Device(**values)


def test_successful_wipe_reports_success_with_bracketing_times(clock) -> None:
    strategy = RecordingStrategy(WipeMethod.PLAIN_OVERWRITE)
    orchestrator = WipeOrchestrator({strategy.method: strategy}, clock=clock)

    result = orchestrator.wipe("/dev/sdb", WipeMethod.PLAIN_OVERWRITE,
                               model="X1", serial="S1", size=1000)

    assert strategy.paths == ["/dev/sdb"]
    assert result.status == WipeStatus.SUCCESS
    assert (result.start_time, result.end_time) == (1000, 1001)
    assert result.tool_version == "zt-wipe 1.0"
    assert result.error is None
    assert (result.device_model, result.device_serial, result.device_size) == ("X1", "S1", 1000)


def test_strategy_error_becomes_failure_with_step(clock) -> None:
    error = ErasureError("boom")
    error.step = "security-set-pass"
    strategy = RecordingStrategy(WipeMethod.ATA_SECURE_ERASE, error)
    orchestrator = WipeOrchestrator({strategy.method: strategy}, clock=clock)

    result = orchestrator.wipe("/dev/sdb", WipeMethod.ATA_SECURE_ERASE)

    assert result.status == WipeStatus.FAILURE
    assert result.failed_step == "security-set-pass"
    assert result.error == "boom"
    assert result.end_time >= result.start_time


def test_encrypted_overwrite_resolves_to_failure(clock) -> None:
    orchestrator = WipeOrchestrator(default_strategies(runner=FakeRunner()), clock=clock)

    result = orchestrator.wipe("/dev/sdb", WipeMethod.ENCRYPTED_OVERWRITE)

    assert result.status == WipeStatus.FAILURE
    assert result.failed_step == "dispatch"
    assert "not supported" in result.error


def test_method_without_strategy_resolves_to_failure(clock) -> None:
    orchestrator = WipeOrchestrator({}, clock=clock)

    result = orchestrator.wipe("/dev/sdb", WipeMethod.FIRMWARE_ERASE)

    assert result.status == WipeStatus.FAILURE
    assert result.failed_step == "dispatch"


def test_unexpected_exception_propagates_and_releases_guard(clock) -> None:
    strategy = RecordingStrategy(WipeMethod.PLAIN_OVERWRITE, RuntimeError("bug"))
    orchestrator = WipeOrchestrator({strategy.method: strategy}, clock=clock)

    with pytest.raises(RuntimeError):
        orchestrator.wipe("/dev/sdb", WipeMethod.PLAIN_OVERWRITE)

    assert not orchestrator.guard.is_busy("/dev/sdb")


def test_path_with_nul_byte_resolves_to_open_failure(clock) -> None:
    orchestrator = WipeOrchestrator({WipeMethod.PLAIN_OVERWRITE: BlockOverwrite()}, clock=clock)

    result = orchestrator.wipe("/dev/sd\x00a", WipeMethod.PLAIN_OVERWRITE)

    assert result.status == WipeStatus.FAILURE
    assert result.failed_step == "open"
    assert not orchestrator.guard.is_busy("/dev/sd\x00a")


def test_block_overwrite_failure_on_pass_two_reported(clock) -> None:
    device = FakeRawDevice(4096, fail_write_on_pass=2)
    strategy = BlockOverwrite(opener=device.opener)
    orchestrator = WipeOrchestrator({strategy.method: strategy}, clock=clock)

    result = orchestrator.wipe("/dev/sdb", WipeMethod.PLAIN_OVERWRITE)

    assert result.status == WipeStatus.FAILURE
    assert result.failed_step == "pass-2-write"
    assert 3 not in device.bytes_per_pass


def test_read_only_device_cannot_offer_methods() -> None:
    with pytest.raises(ValueError):
        _device(is_read_only=True)

    read_only = _device(is_read_only=True, supported_methods=set())
    assert read_only.supported_methods == frozenset()
    assert not any(read_only.supports(m) for m in WipeMethod)


def test_wipe_device_refuses_read_only_and_unoffered_methods(clock) -> None:
    strategy = RecordingStrategy(WipeMethod.FIRMWARE_ERASE)
    orchestrator = WipeOrchestrator({strategy.method: strategy}, clock=clock)

    with pytest.raises(DevicePolicyError):
        orchestrator.wipe_device(_device(is_read_only=True, supported_methods=()),
                                 WipeMethod.FIRMWARE_ERASE)
    with pytest.raises(DevicePolicyError):
        orchestrator.wipe_device(_device(), WipeMethod.FIRMWARE_ERASE)

    assert strategy.paths == []


def test_wipe_device_fills_identity_from_description(clock) -> None:
    strategy = RecordingStrategy(WipeMethod.PLAIN_OVERWRITE)
    orchestrator = WipeOrchestrator({strategy.method: strategy}, clock=clock)

    result = orchestrator.wipe_device(_device(), WipeMethod.PLAIN_OVERWRITE)

    assert (result.device_path, result.device_model, result.device_serial,
            result.device_size) == ("/dev/sdb", "X1", "S1", 1000)


def test_concurrent_wipe_on_same_path_is_rejected(clock) -> None:
    started = threading.Event()
    release = threading.Event()

    class BlockingStrategy(ErasureStrategy):
        method = WipeMethod.PLAIN_OVERWRITE

        def execute(self, device_path: str) -> None:
            started.set()
            release.wait(5)

    orchestrator = WipeOrchestrator({WipeMethod.PLAIN_OVERWRITE: BlockingStrategy()},
                                    clock=clock)
    results = []
    worker = threading.Thread(
        target=lambda: results.append(orchestrator.wipe("/dev/sdb", WipeMethod.PLAIN_OVERWRITE)))
    worker.start()
    assert started.wait(5)

    with pytest.raises(DeviceBusyError):
        orchestrator.wipe("/dev/sdb", WipeMethod.PLAIN_OVERWRITE)

    release.set()
    worker.join(5)
    assert results[0].status == WipeStatus.SUCCESS
    assert not orchestrator.guard.is_busy("/dev/sdb")


def test_guard_allows_different_paths() -> None:
    guard = DeviceGuard()
    with guard.hold("/dev/sda"):
        with guard.hold("/dev/sdb"):
            assert guard.is_busy("/dev/sda") and guard.is_busy("/dev/sdb")
    assert not guard.is_busy("/dev/sda")


def test_guard_treats_aliases_of_one_device_as_busy(tmp_path) -> None:
    target = tmp_path / "sdb"
    target.write_bytes(b"")
    alias = tmp_path / "by-id-disk"
    alias.symlink_to(target)
    guard = DeviceGuard()

    with guard.hold(str(target)):
        assert guard.is_busy(str(alias))
        with pytest.raises(DeviceBusyError):
            with guard.hold(str(alias)):
                pass
    assert not guard.is_busy(str(alias))


def test_wipe_and_certify_end_to_end(clock, fake_service) -> None:
    device = FakeRawDevice(1000)
    strategy = BlockOverwrite(opener=device.opener)
    orchestrator = WipeOrchestrator({strategy.method: strategy}, clock=clock)
    client = ChainOfCustodyClient(session=fake_service)

    outcome = orchestrator.wipe_and_certify(_device(), WipeMethod.PLAIN_OVERWRITE, client)

    assert outcome.result.status == WipeStatus.SUCCESS
    assert device.bytes_per_pass == {1: 1000, 2: 1000, 3: 1000}
    assert outcome.recorded and outcome.record_error is None
    recorded = fake_service.posts_to("/record-wipe")
    assert recorded == [{
        "cert_hash": outcome.certificate.cert_hash_hex,
        "device_hash": outcome.certificate.device_hash_hex,
        "wipe_method": 0,
    }]

    verification = client.verify(outcome.certificate.document)
    assert verification.verified
    assert verification.wipe_method == WipeMethod.PLAIN_OVERWRITE
    assert verification.timestamp == fake_service.records[
        (outcome.certificate.cert_hash_hex, outcome.certificate.device_hash_hex)][0]


def test_failed_wipe_is_never_recorded(clock, fake_service) -> None:
    strategy = RecordingStrategy(WipeMethod.PLAIN_OVERWRITE, ErasureError("dead"))
    orchestrator = WipeOrchestrator({strategy.method: strategy}, clock=clock)

    outcome = orchestrator.wipe_and_certify(
        _device(), WipeMethod.PLAIN_OVERWRITE, ChainOfCustodyClient(session=fake_service))

    assert outcome.result.status == WipeStatus.FAILURE
    assert outcome.certificate.wipe_status is False
    assert not outcome.recorded
    assert fake_service.requests == []


def test_recording_failure_does_not_change_erasure_status(clock, fake_service) -> None:
    def unreachable(url, json, timeout):
        import requests
        raise requests.exceptions.ConnectionError("refused")

    fake_service.post = unreachable
    strategy = RecordingStrategy(WipeMethod.PLAIN_OVERWRITE)
    orchestrator = WipeOrchestrator({strategy.method: strategy}, clock=clock)

    outcome = orchestrator.wipe_and_certify(
        _device(), WipeMethod.PLAIN_OVERWRITE, ChainOfCustodyClient(session=fake_service))

    assert outcome.result.status == WipeStatus.SUCCESS
    assert not outcome.recorded
    assert outcome.proof_pending
    assert "refused" in outcome.record_error
    assert strategy.paths == ["/dev/sdb"]
