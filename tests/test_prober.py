import asyncio
import logging

import pytest

import pingboard
from pingboard import Prober, ProbeStartError, Target


@pytest.fixture
def have_ping(monkeypatch):
    monkeypatch.setattr(pingboard.shutil, "which", lambda name: "/bin/ping")


def fake_transport(monkeypatch, replies):
    calls = []

    async def fake_ping(host, timeout_ms):
        calls.append(host)
        i = len(calls) - 1
        return replies[i] if i < len(replies) else None

    monkeypatch.setattr(pingboard, "ping_once", fake_ping)
    return calls


async def run_until(task_factory, calls, count):
    task = asyncio.create_task(task_factory())
    while len(calls) < count:
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


def test_start_rejects_empty_address(have_ping):
    with pytest.raises(ProbeStartError):
        asyncio.run(Prober(Target("blank", "")).start())


def test_start_requires_ping_binary(monkeypatch):
    monkeypatch.setattr(pingboard.shutil, "which", lambda name: None)
    with pytest.raises(ProbeStartError, match="ping"):
        asyncio.run(Prober(Target("lo", "127.0.0.1")).start())


def test_start_resolves_address(have_ping):
    p = Prober(Target("lo", "127.0.0.1"))
    asyncio.run(p.start())
    assert p.host == "127.0.0.1"


def test_probe_loop_counts_sends_and_replies(monkeypatch, have_ping):
    calls = fake_transport(monkeypatch, [12.0, None, 18.0])
    t = Target("lo", "127.0.0.1")

    asyncio.run(run_until(lambda: pingboard.probe_target(t, interval=0), calls, 3))

    assert calls[0] == "127.0.0.1"
    assert t.packets_sent == len(calls)
    assert t.packets_received == 2
    assert t.mean_rtt() == pytest.approx(15.0)
    assert t.packet_loss() == pytest.approx((len(calls) - 2) / len(calls) * 100)


def test_start_failure_is_isolated(monkeypatch, have_ping, caplog):
    calls = fake_transport(monkeypatch, [5.0] * 10)
    good = Target("lo", "127.0.0.1")
    bad = Target("broken", "")

    async def go():
        tasks = pingboard.start_probers([bad, good], interval=0)
        while len(calls) < 3:
            await asyncio.sleep(0)
        assert tasks[0].done() and tasks[0].exception() is None
        await pingboard.stop_probers(tasks)
        assert all(t.done() for t in tasks)

    with caplog.at_level(logging.WARNING, logger="pingboard"):
        asyncio.run(go())

    assert bad.error == "empty address"
    assert bad.packets_sent == 0
    assert good.packets_received >= 3
    assert "broken" in caplog.text


def test_ping_cmd_linux(monkeypatch):
    monkeypatch.setattr(pingboard.platform, "system", lambda: "Linux")
    cmd, rx = pingboard.ping_cmd("10.0.0.1", 1000)
    assert cmd[0] == "ping" and cmd[-1] == "10.0.0.1"
    assert "-W" in cmd and cmd[cmd.index("-W") + 1] == "1"
    m = rx.search("64 bytes from 10.0.0.1: icmp_seq=1 ttl=64 time=0.045 ms")
    assert float(m.group(1)) == pytest.approx(0.045)


def test_ping_cmd_windows(monkeypatch):
    monkeypatch.setattr(pingboard.platform, "system", lambda: "Windows")
    cmd, rx = pingboard.ping_cmd("10.0.0.1", 800)
    assert cmd[:3] == ["ping", "-n", "1"]
    assert rx.search("Reply from 10.0.0.1: bytes=32 time<1ms TTL=128").group(1) == "1"


class FakeProc:
    def __init__(self, out):
        self.out = out
        self.returncode = None

    async def communicate(self):
        self.returncode = 0
        return self.out, b""


@pytest.mark.parametrize("out, rtt", [
    (b"64 bytes from 10.0.0.1: icmp_seq=1 ttl=64 time=7.25 ms\n", 7.25),
    (b"1 packets transmitted, 0 received, 100% packet loss\n", None),
])
def test_ping_once_parses_reply(monkeypatch, out, rtt):
    monkeypatch.setattr(pingboard.platform, "system", lambda: "Linux")

    async def fake_exec(*cmd, **kw):
        return FakeProc(out)

    monkeypatch.setattr(pingboard.asyncio, "create_subprocess_exec", fake_exec)
    assert asyncio.run(pingboard.ping_once("10.0.0.1", 1000)) == rtt


def test_ping_once_swallows_spawn_failure(monkeypatch):
    async def fake_exec(*cmd, **kw):
        raise FileNotFoundError("ping")

    monkeypatch.setattr(pingboard.asyncio, "create_subprocess_exec", fake_exec)
    assert asyncio.run(pingboard.ping_once("10.0.0.1", 1000)) is None


def test_start_resolves_ipv4_only(have_ping):
    seen = {}

    async def go():
        loop = asyncio.get_running_loop()

        async def fake_getaddrinfo(host, port, **kw):
            seen.update(kw)
            return [(pingboard.socket.AF_INET, 1, 0, "", ("127.0.0.1", 0))]

        loop.getaddrinfo = fake_getaddrinfo
        p = Prober(Target("local", "localhost"))
        await p.start()
        return p.host

    assert asyncio.run(go()) == "127.0.0.1"
    assert seen["family"] == pingboard.socket.AF_INET


class HangingProc:
    def __init__(self):
        self.returncode = None
        self.killed = False
        self.waited = False
        self.started = asyncio.Event()

    async def communicate(self):
        self.started.set()
        await asyncio.sleep(3600)

    def kill(self):
        self.killed = True

    async def wait(self):
        self.waited = True
        self.returncode = -9
        return self.returncode


def test_cancelled_ping_kills_and_reaps_child(monkeypatch):
    procs = []

    async def fake_exec(*cmd, **kw):
        procs.append(HangingProc())
        return procs[-1]

    monkeypatch.setattr(pingboard.asyncio, "create_subprocess_exec", fake_exec)

    async def go():
        task = asyncio.create_task(pingboard.ping_once("10.0.0.1", 1000))
        while not procs:
            await asyncio.sleep(0)
        await procs[0].started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(go())
    assert procs[0].killed
    assert procs[0].waited
