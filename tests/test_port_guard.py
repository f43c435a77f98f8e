"""Tests for sequential port negotiation."""

import errno

import pytest

from echoguard import port_guard
from echoguard.errors import NoAvailablePortError, PortProbeError
from echoguard.port_guard import (
    PortInUse,
    candidate_ports,
    detect_available_port,
    probe_port,
)


class Recorder:
    def __init__(self):
        self.calls: list[int] = []

    def __call__(self, port):
        self.calls.append(port)


def _fake_probe(busy=(), failing=None, probed=None):
    def probe(host, port):
        if probed is not None:
            probed.append(port)
        if failing is not None and port == failing:
            raise OSError(errno.EACCES, "Permission denied")
        if port in busy:
            raise PortInUse(port)

    return probe


def test_candidate_ports():
    assert candidate_ports(8080, 8) == [8080, 8081, 8082, 8083, 8084, 8085, 8086, 8087]
    assert candidate_ports(9000, 1) == [9000]


class TestValidation:
    @pytest.mark.parametrize(
        "base_port,max_attempts",
        [(0, 8), (-1, 8), (8080, 0), (8080, -3), ("8080", 8), (8080, 2.5), (True, 8)],
    )
    def test_rejects_bad_numbers_before_probing(
        self, monkeypatch, base_port, max_attempts
    ):
        probed = []
        monkeypatch.setattr(port_guard, "probe_port", _fake_probe(probed=probed))
        on_ready = Recorder()

        with pytest.raises(ValueError):
            detect_available_port(base_port, max_attempts, on_ready)
        assert probed == []
        assert on_ready.calls == []

    def test_rejects_range_past_65535(self, monkeypatch):
        probed = []
        monkeypatch.setattr(port_guard, "probe_port", _fake_probe(probed=probed))
        with pytest.raises(ValueError):
            detect_available_port(65530, 8, Recorder())
        assert probed == []

    @pytest.mark.parametrize("on_ready", [None, 42, "start"])
    def test_rejects_non_callable(self, monkeypatch, on_ready):
        probed = []
        monkeypatch.setattr(port_guard, "probe_port", _fake_probe(probed=probed))
        with pytest.raises(TypeError):
            detect_available_port(8080, 8, on_ready)
        assert probed == []


class TestNegotiation:
    def test_first_busy_second_chosen(self, monkeypatch, captured_logs):
        probed = []
        monkeypatch.setattr(
            port_guard, "probe_port", _fake_probe(busy={8080}, probed=probed)
        )
        on_ready = Recorder()

        port = detect_available_port(8080, 8, on_ready)

        assert port == 8081
        assert on_ready.calls == [8081]
        assert probed == [8080, 8081]
        warnings = [msg for level, msg in captured_logs if level == "WARNING"]
        assert len(warnings) == 1 and "8080" in warnings[0]

    def test_result_is_in_candidate_range(self, monkeypatch):
        busy = {5000, 5001, 5002, 5004}
        monkeypatch.setattr(port_guard, "probe_port", _fake_probe(busy=busy))
        on_ready = Recorder()

        port = detect_available_port(5000, 6, on_ready)

        assert port == 5003
        assert on_ready.calls == [5003]
        assert port in candidate_ports(5000, 6)

    def test_exhaustion(self, monkeypatch, captured_logs):
        probed = []
        monkeypatch.setattr(
            port_guard,
            "probe_port",
            _fake_probe(busy=set(range(7000, 7004)), probed=probed),
        )
        on_ready = Recorder()

        with pytest.raises(NoAvailablePortError) as exc_info:
            detect_available_port(7000, 4, on_ready)

        assert exc_info.value.exit_code == 111
        assert exc_info.value.candidates == [7000, 7001, 7002, 7003]
        assert probed == [7000, 7001, 7002, 7003]
        assert on_ready.calls == []
        assert any(level == "ERROR" and "111" in msg for level, msg in captured_logs)

    def test_unexpected_probe_error_stops_immediately(self, monkeypatch, captured_logs):
        probed = []
        monkeypatch.setattr(
            port_guard,
            "probe_port",
            _fake_probe(busy={6000}, failing=6001, probed=probed),
        )
        on_ready = Recorder()

        with pytest.raises(PortProbeError) as exc_info:
            detect_available_port(6000, 8, on_ready)

        assert exc_info.value.exit_code == 113
        assert exc_info.value.port == 6001
        assert probed == [6000, 6001]
        assert on_ready.calls == []
        assert any(level == "ERROR" and "113" in msg for level, msg in captured_logs)


class TestRealSockets:
    def test_probe_reports_port_in_use(self, occupied_port):
        with pytest.raises(PortInUse):
            probe_port("127.0.0.1", occupied_port)

    def test_occupied_base_port_is_skipped(self, occupied_port):
        attempts = min(8, 65536 - occupied_port)
        if attempts < 2:
            pytest.skip("occupied port too close to 65535")
        on_ready = Recorder()

        port = detect_available_port(occupied_port, attempts, on_ready, host="127.0.0.1")

        assert port != occupied_port
        assert port in candidate_ports(occupied_port, attempts)
        assert on_ready.calls == [port]
        # probe listener is closed again, so the port can be bound right away
        probe_port("127.0.0.1", port)

    def test_single_occupied_candidate_exhausts(self, occupied_port):
        on_ready = Recorder()
        with pytest.raises(NoAvailablePortError):
            detect_available_port(occupied_port, 1, on_ready, host="127.0.0.1")
        assert on_ready.calls == []
