"""
# Live ranked ping board: packet loss, RTT avg and RTT std dev per target, best first.
# ASCII only. Cross-platform. On Windows: pip install windows-curses

# Copyright (c) 2025 Charles Culver
# [GitHub](https://github.com/cculver78) • [Bluesky](https://bsky.app/profile/dhelmet78.bsky.social) • [Threads](https://www.threads.com/@cculver78)
# Licensed under the MIT License. See LICENSE file for details.
"""

import asyncio, json, sys, platform, re, shutil, argparse, curses, math, socket, threading, logging
from dataclasses import dataclass, asdict
from typing import Optional, List, Tuple

VERSION = "1.0.0"

PROBE_INTERVAL = 1.0      # seconds between echo requests, per target
PROBE_TIMEOUT_MS = 1000   # per-echo reply timeout
DISPLAY_INTERVAL = 1.0    # seconds between re-rank + redraw
INPUT_POLL = 0.05         # seconds between keyboard polls

log = logging.getLogger("pingboard")


class ProbeStartError(Exception):
    """A target's prober could not be started (bad address, no ping binary)."""


# ---------------------------------------------------------------------------
# Per-target statistics
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Snapshot:
    name: str
    address: str
    sent: int
    received: int
    loss_pct: Optional[float]
    rtt_avg_ms: Optional[float]
    rtt_stddev_ms: Optional[float]
    error: Optional[str] = None

    def row(self) -> Tuple[str, str, str, str, str]:
        return (
            self.name,
            self.address,
            format_loss(self.loss_pct),
            format_duration(self.rtt_avg_ms),
            format_duration(self.rtt_stddev_ms),
        )

    def to_dict(self) -> dict:
        d = asdict(self)
        d["row"] = list(self.row())
        return d


class Target:
    """One probed endpoint.

    Counters and the running mean / M2 pair are only touched while holding
    ``_lock``, so a reader never sees a receive count that disagrees with
    the mean and std dev it reads alongside it.
    """

    def __init__(self, name: str, address: str):
        self._name = name
        self._address = address
        self._lock = threading.Lock()
        self._sent = 0
        self._received = 0
        self._mean = 0.0
        self._m2 = 0.0
        self._error: Optional[str] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def address(self) -> str:
        return self._address

    def __repr__(self):
        return f"Target({self._name!r}, {self._address!r})"

    # -- writer side (the target's prober) --

    def on_send(self):
        with self._lock:
            self._sent += 1

    def on_receive(self, rtt_ms: float):
        # Welford's online algorithm, single pass, no sample storage.
        with self._lock:
            self._received += 1
            if self._received == 1:
                self._mean = rtt_ms
                self._m2 = 0.0
            else:
                delta = rtt_ms - self._mean
                self._mean += delta / self._received
                self._m2 += delta * (rtt_ms - self._mean)

    def fail(self, reason: str):
        with self._lock:
            self._error = reason

    # -- reader side --

    def _loss(self) -> Optional[float]:
        if self._sent == 0:
            return None
        return (self._sent - self._received) / self._sent * 100.0

    def _avg(self) -> Optional[float]:
        return self._mean if self._received >= 1 else None

    def _stddev(self) -> Optional[float]:
        if self._received < 2:
            return None
        return math.sqrt(self._m2 / (self._received - 1))

    @property
    def packets_sent(self) -> int:
        with self._lock:
            return self._sent

    @property
    def packets_received(self) -> int:
        with self._lock:
            return self._received

    @property
    def error(self) -> Optional[str]:
        with self._lock:
            return self._error

    def packet_loss(self) -> Optional[float]:
        """Loss percentage, or None until the first echo has been sent."""
        with self._lock:
            return self._loss()

    def mean_rtt(self) -> Optional[float]:
        with self._lock:
            return self._avg()

    def stddev_rtt(self) -> Optional[float]:
        with self._lock:
            return self._stddev()

    def snapshot(self) -> Snapshot:
        with self._lock:
            return Snapshot(
                name=self._name,
                address=self._address,
                sent=self._sent,
                received=self._received,
                loss_pct=self._loss(),
                rtt_avg_ms=self._avg(),
                rtt_stddev_ms=self._stddev(),
                error=self._error,
            )


# ---------------------------------------------------------------------------
# Target list
# ---------------------------------------------------------------------------

def parse_target_line(line: str) -> Target:
    name, sep, addr = line.partition("|")
    return Target(name.strip(), addr.strip() if sep else "")


def load_targets(path: str) -> List[Target]:
    """Read ``name|address`` lines. Raises OSError if the file can't be read."""
    # undecodable bytes become U+FFFD so a cp1252 file still loads
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        text = f.read()
    return [parse_target_line(line) for line in text.splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def format_loss(pct: Optional[float]) -> str:
    return "--" if pct is None else f"{pct:.1f}%"


def _trim(num: str) -> str:
    return num.rstrip("0").rstrip(".") if "." in num else num


def format_duration(ms: Optional[float]) -> str:
    """Round to 100us buckets and render as 500us / 12.3ms / 1.2345s."""
    if ms is None:
        return "--"
    # half away from zero, in units of 100us
    us = int(math.floor(max(ms, 0.0) * 10 + 0.5)) * 100
    if us == 0:
        return "0s"
    if us < 1000:
        return f"{us}us"
    if us < 1_000_000:
        return _trim(f"{us / 1000:.1f}") + "ms"
    return _trim(f"{us / 1_000_000:.4f}") + "s"


# ---------------------------------------------------------------------------
# Probing
# ---------------------------------------------------------------------------

def ping_cmd(host: str, timeout_ms: int):
    sysname = platform.system().lower()
    if sysname.startswith("win"):
        # -n 1 one echo; -w timeout ms
        return (["ping", "-n", "1", "-w", str(timeout_ms), host],
                re.compile(r"time[=<]\s*(\d+)\s*ms", re.I))
    elif sysname == "darwin":
        # -c 1 one echo; -W timeout ms (mac accepts ms)
        return (["ping", "-n", "-c", "1", "-W", str(timeout_ms), host],
                re.compile(r"time[=<]\s*([\d\.]+)\s*ms", re.I))
    else:
        # Linux: -c 1; -W timeout sec (ceil from ms)
        tout = max(1, math.ceil(timeout_ms / 1000))
        return (["ping", "-n", "-c", "1", "-W", str(tout), host],
                re.compile(r"time[=<]\s*([\d\.]+)\s*ms", re.I))


async def ping_once(host: str, timeout_ms: int) -> Optional[float]:
    """Send one echo request. Returns the RTT in ms, or None if no reply."""
    cmd, rx = ping_cmd(host, timeout_ms)
    proc = None
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=(timeout_ms / 1000) + 1.5)
    except (OSError, asyncio.TimeoutError) as e:
        log.debug("ping %s failed: %s", host, e)
        return None
    finally:
        if proc is not None and proc.returncode is None:
            proc.kill()
            try:
                await asyncio.wait_for(proc.wait(), timeout=1.0)
            except asyncio.TimeoutError:
                log.debug("ping child for %s not reaped", host)
    m = rx.search(stdout.decode(errors="ignore"))
    if not m:
        return None
    return float(m.group(1))


class Prober:
    """Drives one target: a send every PROBE_INTERVAL, forever."""

    def __init__(self, target: Target, interval: float = PROBE_INTERVAL,
                 timeout_ms: int = PROBE_TIMEOUT_MS):
        self.target = target
        self.interval = interval
        self.timeout_ms = timeout_ms
        self.host: Optional[str] = None

    async def start(self):
        addr = self.target.address
        if not addr:
            raise ProbeStartError("empty address")
        if not shutil.which("ping"):
            raise ProbeStartError("ping executable not found")
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(addr, None, family=socket.AF_INET)
        except (socket.gaierror, UnicodeError) as e:
            raise ProbeStartError(f"cannot resolve {addr!r}: {e}") from e
        if not infos:
            raise ProbeStartError(f"cannot resolve {addr!r}")
        self.host = infos[0][4][0]
        log.info("probing %s (%s) at %s", self.target.name, addr, self.host)

    async def run(self):
        if self.host is None:
            await self.start()
        loop = asyncio.get_running_loop()
        while True:
            next_at = loop.time() + self.interval
            self.target.on_send()
            rtt = await ping_once(self.host, self.timeout_ms)
            if rtt is not None:
                self.target.on_receive(rtt)
            await asyncio.sleep(max(0.0, next_at - loop.time()))


async def probe_target(target: Target, **kw):
    prober = Prober(target, **kw)
    try:
        await prober.start()
    except ProbeStartError as e:
        log.warning("%s: %s", target.name or "<unnamed>", e)
        target.fail(str(e))
        return
    await prober.run()


def start_probers(targets: List[Target], **kw) -> List[asyncio.Task]:
    return [asyncio.create_task(probe_target(t, **kw)) for t in targets]


async def stop_probers(tasks: List[asyncio.Task]):
    for t in tasks:
        t.cancel()
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for r in results:
        if isinstance(r, Exception):
            log.error("prober crashed: %r", r)


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

def _rtt_key(snap: Snapshot) -> float:
    return float("inf") if snap.rtt_avg_ms is None else snap.rtt_avg_ms


class Ranker:
    """Orders targets by mean RTT, keeping ties in last tick's order."""

    def __init__(self, targets: List[Target]):
        self._order = list(targets)

    def rank(self) -> List[Snapshot]:
        pairs = [(t, t.snapshot()) for t in self._order]
        pairs.sort(key=lambda p: _rtt_key(p[1]))
        self._order = [t for t, _ in pairs]
        return [s for _, s in pairs]


# ---------------------------------------------------------------------------
# Terminal table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Column:
    title: str
    width: int


DEFAULT_COLUMNS = (
    Column("Name", 30),
    Column("Address", 30),
    Column("Packet Loss", 15),
    Column("RTT Avg", 15),
    Column("RTT Std Dev", 15),
)


@dataclass(frozen=True)
class TableStyle:
    columns: Tuple[Column, ...] = DEFAULT_COLUMNS
    border_color: int = 240    # 256-colour palette indices
    selected_fg: int = 229
    selected_bg: int = 57
    chrome_rows: int = 8       # terminal rows not available to table body
    header_bold: bool = False


@dataclass
class TableCursor:
    """Selected row + scroll offset for a fixed-height viewport."""
    height: int = 1
    count: int = 0
    index: int = 0
    offset: int = 0

    def resize(self, height: int, count: Optional[int] = None):
        self.height = max(1, height)
        if count is not None:
            self.count = max(0, count)
        self._clamp()

    def move(self, delta: int):
        self.index += delta
        self._clamp()

    def home(self):
        self.index = 0
        self._clamp()

    def end(self):
        self.index = self.count - 1
        self._clamp()

    def visible(self) -> range:
        return range(self.offset, min(self.count, self.offset + self.height))

    def _clamp(self):
        self.index = min(max(self.index, 0), max(self.count - 1, 0))
        if self.index < self.offset:
            self.offset = self.index
        elif self.index >= self.offset + self.height:
            self.offset = self.index - self.height + 1
        self.offset = min(self.offset, max(self.count - self.height, 0))
        self.offset = max(self.offset, 0)


def fit(text: str, width: int) -> str:
    return text[:width].ljust(width)


def render_line(cells, style: TableStyle) -> str:
    return "|" + "".join(f" {fit(c, col.width)} " for c, col in zip(cells, style.columns)) + "|"


QUIT = "quit"


class TableView:
    """Curses sink for ranked rows. Owns the cursor; knows nothing about pings."""

    PAIR_BORDER = 1
    PAIR_SELECTED = 2

    def __init__(self, stdscr, style: TableStyle):
        self.scr = stdscr
        self.style = style
        self.rows: List[Tuple[str, ...]] = []
        self.cursor = TableCursor()
        self._border_attr = 0
        self._selected_attr = curses.A_REVERSE
        self._init_colors()

    def _init_colors(self):
        try:
            if not curses.has_colors():
                return
            curses.start_color()
            curses.use_default_colors()
            if curses.COLORS >= 256:
                curses.init_pair(self.PAIR_BORDER, self.style.border_color, -1)
                curses.init_pair(self.PAIR_SELECTED, self.style.selected_fg, self.style.selected_bg)
            else:
                curses.init_pair(self.PAIR_BORDER, curses.COLOR_WHITE, -1)
                curses.init_pair(self.PAIR_SELECTED, curses.COLOR_YELLOW, curses.COLOR_BLUE)
        except curses.error:
            return
        self._border_attr = curses.color_pair(self.PAIR_BORDER)
        self._selected_attr = curses.color_pair(self.PAIR_SELECTED)

    def set_rows(self, rows):
        self.rows = list(rows)
        self.cursor.resize(self.cursor.height, len(self.rows))

    def handle_key(self, ch: int) -> Optional[str]:
        page = self.cursor.height
        if ch in (ord("q"), ord("Q")):
            return QUIT
        if ch in (curses.KEY_UP, ord("k")):
            self.cursor.move(-1)
        elif ch in (curses.KEY_DOWN, ord("j")):
            self.cursor.move(1)
        elif ch in (curses.KEY_PPAGE, ord("b")):
            self.cursor.move(-page)
        elif ch in (curses.KEY_NPAGE, ord("f"), ord(" ")):
            self.cursor.move(page)
        elif ch in (curses.KEY_HOME, ord("g")):
            self.cursor.home()
        elif ch in (curses.KEY_END, ord("G")):
            self.cursor.end()
        return None

    def draw(self, status: str = ""):
        scr = self.scr
        scr.erase()
        maxy, maxx = scr.getmaxyx()
        self.cursor.resize(maxy - self.style.chrome_rows, len(self.rows))

        def line(y: int, text: str, attr: int = 0):
            if 0 <= y < maxy:
                scr.addstr(y, 0, text[:maxx - 1], attr)

        inner = sum(c.width + 2 for c in self.style.columns)
        rule = "+" + "-" * inner + "+"
        header_attr = curses.A_BOLD if self.style.header_bold else 0

        line(0, rule, self._border_attr)
        line(1, render_line([c.title for c in self.style.columns], self.style), header_attr)
        line(2, rule, self._border_attr)
        y = 3
        for i in self.cursor.visible():
            attr = self._selected_attr if i == self.cursor.index else 0
            line(y, render_line(self.rows[i], self.style), attr)
            y += 1
        # keep the frame a fixed height so the box doesn't jump as rows arrive
        y = max(y, 3 + self.cursor.height)
        line(y, rule, self._border_attr)

        legend = "q=quit, up/down=select, pgup/pgdn=page, g/G=top/bottom"
        line(y + 2, legend)
        if status:
            line(y + 3, status)
        scr.refresh()


class StatusLineHandler(logging.Handler):
    """Keeps the latest log record for the table's status line."""

    def __init__(self, level=logging.WARNING):
        super().__init__(level)
        self.message = ""

    def emit(self, record):
        try:
            self.message = self.format(record)
        except Exception:
            self.handleError(record)


# ---------------------------------------------------------------------------
# Loops
# ---------------------------------------------------------------------------

async def ui_loop(stdscr, targets: List[Target], style: TableStyle,
                  status: Optional[StatusLineHandler] = None):
    curses.curs_set(0)
    stdscr.nodelay(True)
    stdscr.keypad(True)

    view = TableView(stdscr, style)
    ranker = Ranker(targets)
    tasks = start_probers(targets)
    loop = asyncio.get_running_loop()
    try:
        next_tick = loop.time()
        while True:
            dirty = False
            if loop.time() >= next_tick:
                view.set_rows([s.row() for s in ranker.rank()])
                next_tick += DISPLAY_INTERVAL
                dirty = True

            try:
                ch = stdscr.getch()
            except curses.error:
                ch = -1
            if ch != -1:
                if view.handle_key(ch) == QUIT:
                    break
                dirty = True

            if dirty:
                view.draw(status.message if status else "")
            await asyncio.sleep(INPUT_POLL)
    finally:
        await stop_probers(tasks)


async def ui_json(targets: List[Target], out=None):
    """Headless mode: one JSON snapshot line per tick, for GUI frontends."""
    out = out or sys.stdout
    ranker = Ranker(targets)
    tasks = start_probers(targets)
    try:
        while True:
            snap = [s.to_dict() for s in ranker.rank()]
            out.write(json.dumps({"type": "snapshot", "targets": snap}) + "\n")
            out.flush()
            await asyncio.sleep(DISPLAY_INTERVAL)
    finally:
        await stop_probers(tasks)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv=None):
    p = argparse.ArgumentParser(description=f"pingboard {VERSION} - live ranked ping table")
    p.add_argument("targets", help="Target list file, one 'name|address' per line")
    p.add_argument("--json", action="store_true", help="Stream JSON lines to stdout (no curses UI)")
    p.add_argument("--log-file", help="Write log records to this file")
    p.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="WARNING",
                   help="Minimum log level")
    p.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return p.parse_args(argv)


def setup_logging(args) -> Optional[StatusLineHandler]:
    """Route records away from the terminal while curses owns it."""
    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    handlers: List[logging.Handler] = []
    status = None
    if args.log_file:
        handlers.append(logging.FileHandler(args.log_file))
    if args.json:
        handlers.append(logging.StreamHandler(sys.stderr))
    else:
        status = StatusLineHandler()
        status.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        handlers.append(status)
    logging.basicConfig(level=getattr(logging, args.log_level), format=fmt,
                        handlers=handlers, force=True)
    return status


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        targets = load_targets(args.targets)
    except OSError as e:
        print(f"Error reading target list: {e}", file=sys.stderr)
        return 1

    status = setup_logging(args)
    log.info("loaded %d targets from %s", len(targets), args.targets)

    if args.json:
        try:
            asyncio.run(ui_json(targets))
        except KeyboardInterrupt:
            pass
        return 0

    style = TableStyle()

    def _wrap(scr):
        return asyncio.run(ui_loop(scr, targets, style, status))
    try:
        curses.wrapper(_wrap)
    except KeyboardInterrupt:
        pass
    except curses.error as e:
        print(f"Error running display: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
