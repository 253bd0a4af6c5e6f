"""Shared fixtures: a stand-in `slidev` CLI and settings rooted in a temp dir."""

import socket
import sys
import textwrap
from pathlib import Path

import pytest

from slidev_runtime.binary import SlidevCommand
from slidev_runtime.config import Settings

FAKE_SLIDEV = textwrap.dedent(
    '''
    import http.server
    import os
    import socket
    import sys
    import threading
    import time


    def option(args, name):
        return args[args.index(name) + 1] if name in args else None


    class QuietHandler(http.server.SimpleHTTPRequestHandler):
        def log_message(self, *args):
            pass


    class IPv6Server(http.server.HTTPServer):
        address_family = socket.AF_INET6


    def main():
        args = sys.argv[1:]
        if os.environ.get("FAKE_SLIDEV_SLEEP"):
            time.sleep(float(os.environ["FAKE_SLIDEV_SLEEP"]))
        if os.environ.get("FAKE_SLIDEV_FAIL"):
            sys.stderr.write("fake slidev failure\\n")
            return 3

        if args and args[0] == "build":
            out = option(args, "--out")
            base = option(args, "--base") or "/"
            os.makedirs(os.path.join(out, "assets"), exist_ok=True)
            with open(os.path.join(out, "index.html"), "w") as fh:
                fh.write('<html><script src="%sassets/app.js"></script></html>' % base)
            with open(os.path.join(out, "assets", "app.js"), "w") as fh:
                fh.write("console.log('deck')")
            return 0

        if args and args[0] == "export":
            output = option(args, "--output")
            fmt = option(args, "--format")
            if not os.environ.get("FAKE_SLIDEV_SKIP_OUTPUT"):
                header = b"%PDF-1.4 " if fmt == "pdf" else b"PK "
                body = b"dark" if "--dark" in args else b"light"
                with open(output, "wb") as fh:
                    fh.write(header + body)
            return 0

        port = int(option(args, "--port"))
        if os.environ.get("FAKE_SLIDEV_PROMPT"):
            sys.stdout.write("@slidev/cli is missing, do you want to install it now? (Y/n) ")
            sys.stdout.flush()
            if sys.stdin.readline().strip() != "y":
                return 4
        if os.environ.get("FAKE_SLIDEV_NO_LISTEN"):
            time.sleep(60)
            return 0
        if os.environ.get("FAKE_SLIDEV_EXIT_AFTER"):
            threading.Timer(float(os.environ["FAKE_SLIDEV_EXIT_AFTER"]), os._exit, (0,)).start()
        host = os.environ.get("FAKE_SLIDEV_HOST", "127.0.0.1")
        server_class = IPv6Server if ":" in host else http.server.HTTPServer
        server = server_class((host, port), QuietHandler)
        server.serve_forever()
        return 0


    sys.exit(main())
    '''
)


def free_port() -> int:
    """Ask the OS for a port that is currently free."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("0.0.0.0", 0))
        return sock.getsockname()[1]


@pytest.fixture
def fake_cli(tmp_path):
    script = tmp_path / "fake_slidev.py"
    script.write_text(FAKE_SLIDEV)
    return script


@pytest.fixture
def fake_command(fake_cli):
    return SlidevCommand(sys.executable, (str(fake_cli),))


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def settings(work_dir):
    return Settings(work_dir=work_dir, build_timeout_ms=20_000)


@pytest.fixture
def slides_file(tmp_path) -> Path:
    deck = tmp_path / "decks" / "intro"
    deck.mkdir(parents=True)
    slides = deck / "slides.md"
    slides.write_text("# Hello\n\n---\n\n# World\n")
    return slides


def localhost_has_ipv6() -> bool:
    """True when `localhost` resolves to ::1 and ::1 can be bound."""
    try:
        infos = socket.getaddrinfo("localhost", None, socket.AF_INET6, socket.SOCK_STREAM)
        with socket.socket(socket.AF_INET6, socket.SOCK_STREAM) as sock:
            sock.bind(("::1", 0))
    except OSError:
        return False
    return any(info[4][0] == "::1" for info in infos)
