#!/usr/bin/env python3
"""
portboard - A developer dashboard for local services and network identity
Version : 1.0
========================================
* Registry of named apps (name, port, url) kept in a JSON file
* Live listener snapshot from netstat (Windows) or lsof (Linux/macOS)
* Status table showing which registered apps are actually listening
* Local interface and public IP report
"""

import argparse
import json
import logging
import os
import shlex
import socket
import subprocess
import sys
import ipaddress
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

import psutil
import requests
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.text import Text

__version__ = "1.0.0"

LOGGER = logging.getLogger("portboard")

# Constants
DATA_DIR_NAME = ".portboard"
REGISTRY_FILENAME = "ports-list.json"
PUBLIC_IP_URL = "https://api.ipify.org?format=json"
UNKNOWN_MAC = "00:00:00:00:00:00"

DEFAULT_REGISTRY = [
    {"name": "App1", "port": "3000", "url": "http://localhost:3000"},
    {"name": "App2", "port": "8080", "url": "http://localhost:8080"},
    {"name": "App3", "port": "5000", "url": "http://localhost:5000"},
]

TABLE_COLUMNS = ["SL", "Name", "Port", "Status", "PID", "URL"]


class PortboardError(Exception):
    """Base class for every failure reported to the user."""


class ConfigReadError(PortboardError):
    """The registry file is missing, unreadable or malformed."""


class SnapshotCommandError(PortboardError):
    """The listener enumeration command failed or complained on stderr."""


class NetworkFetchError(PortboardError):
    """The public IP could not be fetched or parsed."""


class Protocol(str, Enum):
    TCP = "TCP"
    UDP = "UDP"
    OTHER = "OTHER"

    @classmethod
    def from_token(cls, token: str) -> "Protocol":
        token = token.upper()
        if "TCP" in token:
            return cls.TCP
        if "UDP" in token:
            return cls.UDP
        return cls.OTHER


class Status(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


@dataclass(frozen=True)
class AppConfig:
    data_dir: Path
    registry_path: Path
    public_ip_url: str = PUBLIC_IP_URL
    editor: str = "nano"
    timeout: Optional[float] = None


@dataclass(frozen=True)
class ListenerRecord:
    protocol: Protocol
    port: str
    pid: Optional[str] = None
    process: Optional[str] = None


@dataclass(frozen=True)
class RegistryEntry:
    name: str
    port: str
    url: str = ""


@dataclass(frozen=True)
class StatusRow:
    sequence: int
    name: str
    port: Optional[int]
    status: Status
    pid: str
    url: str

    def to_table_row(self) -> Sequence[str]:
        return [
            str(self.sequence),
            self.name,
            str(self.port) if self.port is not None else "-",
            self.status.value,
            self.pid,
            self.url,
        ]


@dataclass(frozen=True)
class NetworkInterfaceInfo:
    interface: str
    ip: str
    mac: str


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _default_editor(platform: str) -> str:
    return "notepad" if platform == "win32" else "nano"


def load_config(env: Optional[Mapping[str, str]] = None,
                timeout: Optional[float] = None,
                platform: str = sys.platform) -> AppConfig:
    """Resolve the per-user paths and overrides once for this invocation."""
    env = os.environ if env is None else env
    home = env.get("PORTBOARD_HOME")
    data_dir = Path(home).expanduser() if home else Path.home() / DATA_DIR_NAME
    return AppConfig(
        data_dir=data_dir,
        registry_path=data_dir / REGISTRY_FILENAME,
        public_ip_url=env.get("PORTBOARD_PUBLIC_IP_URL") or PUBLIC_IP_URL,
        editor=env.get("EDITOR") or _default_editor(platform),
        timeout=timeout,
    )


# ---------------------------------------------------------------------------
# Listener snapshot
# ---------------------------------------------------------------------------

def _port_suffix(address: str) -> str:
    return address.rsplit(":", 1)[-1]


class ListenerSource:
    """Enumerates the TCP/UDP listeners on this host.

    Subclasses pick the OS command and the grammar used to read its output.
    ``read`` is the only method touching the OS; ``parse`` is pure.
    """

    name = "base"
    command: Sequence[str] = ()

    def read(self, timeout: Optional[float] = None) -> str:
        LOGGER.debug("Running %s", " ".join(self.command))
        try:
            res = subprocess.run(
                list(self.command),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SnapshotCommandError(f"{self.command[0]} not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise SnapshotCommandError(
                f"{self.command[0]} did not finish within {timeout}s"
            ) from exc
        except OSError as exc:
            raise SnapshotCommandError(f"could not run {self.command[0]}: {exc}") from exc

        if res.returncode != 0:
            detail = res.stderr.strip() or f"exit status {res.returncode}"
            raise SnapshotCommandError(f"{' '.join(self.command)} failed: {detail}")
        if res.stderr.strip():
            raise SnapshotCommandError(f"{' '.join(self.command)} reported: {res.stderr.strip()}")
        return res.stdout

    def parse(self, text: str) -> List[ListenerRecord]:
        records: List[ListenerRecord] = []
        for line in text.strip().splitlines():
            record = self.parse_line(line.split())
            if record is None:
                if line.strip():
                    LOGGER.debug("Skipping line: %r", line)
                continue
            records.append(record)
        return records

    def parse_line(self, fields: List[str]) -> Optional[ListenerRecord]:
        raise NotImplementedError

    def snapshot(self, timeout: Optional[float] = None) -> List[ListenerRecord]:
        records = self.parse(self.read(timeout))
        LOGGER.debug("Parsed %d listeners from %s", len(records), self.name)
        return records


class NetstatSource(ListenerSource):
    """``netstat -ano`` rows: PROTO LOCAL FOREIGN [STATE] PID."""

    name = "netstat"
    command = ("netstat", "-ano")
    min_fields = 4

    def parse_line(self, fields: List[str]) -> Optional[ListenerRecord]:
        if len(fields) < self.min_fields or fields[0] not in ("TCP", "UDP"):
            return None
        return ListenerRecord(
            protocol=Protocol(fields[0]),
            port=_port_suffix(fields[1]),
            pid=fields[-1],
        )


class LsofSource(ListenerSource):
    """``lsof -i -P -n`` rows: COMMAND PID USER FD TYPE DEVICE SIZE NODE NAME."""

    name = "lsof"
    command = ("lsof", "-i", "-P", "-n")
    min_fields = 9

    def read(self, timeout: Optional[float] = None) -> str:
        out = super().read(timeout)
        # lsof lists every open inet socket; only listeners are wanted
        return "\n".join(line for line in out.splitlines() if "LISTEN" in line)

    def parse_line(self, fields: List[str]) -> Optional[ListenerRecord]:
        if len(fields) < self.min_fields:
            return None
        return ListenerRecord(
            protocol=Protocol.from_token(fields[7]),
            port=_port_suffix(fields[8]),
            pid=fields[1],
            process=fields[0],
        )


def detect_source(platform: str = sys.platform) -> ListenerSource:
    source: ListenerSource = NetstatSource() if platform == "win32" else LsofSource()
    LOGGER.debug("Using %s listener source for platform %s", source.name, platform)
    return source


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def ensure_registry(config: AppConfig) -> bool:
    """Create the registry with the default apps unless it already exists.

    Returns True when the file was created. An existing file is never
    rewritten, whatever it contains.
    """
    path = config.registry_path
    if path.exists():
        return False
    try:
        config.data_dir.mkdir(parents=True, exist_ok=True)
        with open(path, "x", encoding="utf-8") as fp:
            json.dump(DEFAULT_REGISTRY, fp, indent=2)
    except FileExistsError:
        return False
    except OSError as exc:
        raise ConfigReadError(f"could not create {path}: {exc}") from exc
    LOGGER.info("Created default registry at %s", path)
    return True


def load_registry(path: Path) -> List[RegistryEntry]:
    try:
        with open(path, "r", encoding="utf-8") as fp:
            data = json.load(fp)
    except FileNotFoundError as exc:
        raise ConfigReadError(f"registry file {path} does not exist") from exc
    except json.JSONDecodeError as exc:
        raise ConfigReadError(f"registry file {path} is not valid JSON: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigReadError(f"could not read {path}: {exc}") from exc

    if not isinstance(data, list):
        raise ConfigReadError(f"registry file {path} must contain a JSON array")

    entries: List[RegistryEntry] = []
    for i, item in enumerate(data, 1):
        if not isinstance(item, dict):
            raise ConfigReadError(f"registry entry #{i} in {path} is not an object")
        entries.append(
            RegistryEntry(
                name=_as_text(item.get("name")),
                port=_as_text(item.get("port")),
                url=_as_text(item.get("url")),
            )
        )
    return entries


def _as_text(value: object) -> str:
    return "" if value is None else str(value)


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def _port_number(port: str) -> Optional[int]:
    # ASCII digits only; int() would also take "3_000" or " 3000 "
    if port.isascii() and port.isdigit():
        return int(port)
    return None


def reconcile(entries: Sequence[RegistryEntry],
              listeners: Sequence[ListenerRecord]) -> List[StatusRow]:
    """One row per registry entry, in registry order.

    Ports are compared as text, so "08080" does not match a listener on 8080.
    When several TCP listeners share a port the first one parsed wins.
    """
    tcp = [l for l in listeners if l.protocol is Protocol.TCP]
    rows: List[StatusRow] = []
    for seq, entry in enumerate(entries, 1):
        found = next((l for l in tcp if l.port == entry.port), None)
        rows.append(
            StatusRow(
                sequence=seq,
                name=entry.name,
                port=_port_number(entry.port),
                status=Status.ACTIVE if found else Status.INACTIVE,
                pid=(found.pid or "-") if found else "-",
                url=entry.url or "-",
            )
        )
    return rows


# ---------------------------------------------------------------------------
# Network identity
# ---------------------------------------------------------------------------

def _normalize_mac(mac: str) -> str:
    return mac.replace("-", ":").lower()


def _is_loopback(ip: str) -> bool:
    try:
        return ipaddress.ip_address(ip).is_loopback
    except ValueError:
        return False


def local_interfaces() -> List[NetworkInterfaceInfo]:
    results: List[NetworkInterfaceInfo] = []
    for name, addrs in psutil.net_if_addrs().items():
        mac = next(
            (_normalize_mac(a.address) for a in addrs if a.family == psutil.AF_LINK and a.address),
            UNKNOWN_MAC,
        )
        for addr in addrs:
            if addr.family != socket.AF_INET or _is_loopback(addr.address):
                continue
            results.append(NetworkInterfaceInfo(interface=name, ip=addr.address, mac=mac))
    return results


def fetch_public_ip(url: str = PUBLIC_IP_URL, timeout: Optional[float] = None) -> str:
    LOGGER.debug("Fetching public IP from %s", url)
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as exc:
        raise NetworkFetchError(str(exc)) from exc

    try:
        body = response.json()
    except ValueError as exc:
        raise NetworkFetchError("Error parsing response") from exc
    ip = body.get("ip") if isinstance(body, dict) else None
    if not isinstance(ip, str) or not ip:
        raise NetworkFetchError("Error parsing response: no 'ip' field")
    return ip


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

def render_status_table(rows: Sequence[StatusRow], console: Console) -> None:
    table = Table(show_header=True, header_style="bold cyan")
    for col in TABLE_COLUMNS:
        table.add_column(col, no_wrap=col != "URL")

    for row in rows:
        cells = [Text(cell) for cell in row.to_table_row()]
        cells[3].stylize("green" if row.status is Status.ACTIVE else "red")
        table.add_row(*cells)

    console.print(table)


def render_identity(interfaces: Sequence[NetworkInterfaceInfo], console: Console) -> None:
    if not interfaces:
        console.print("No local network info found.")
        return
    console.print("[bold]Local Network Info:[/]")
    for net in interfaces:
        console.print(f" - Interface: {escape(net.interface)}", highlight=False)
        console.print(f"   IP:  {net.ip}", highlight=False)
        console.print(f"   MAC: {net.mac}\n", highlight=False)


def render_public_ip(ip: str, console: Console) -> None:
    console.print("[bold]Public IP address:[/]")
    console.print(f" - {escape(ip)}", highlight=False)


def _report(err: Console, prefix: str, exc: Exception) -> None:
    err.print(f"[red]{escape(prefix)}[/] {escape(str(exc))}", highlight=False)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_ip(config: AppConfig, out: Console, err: Console) -> int:
    render_identity(local_interfaces(), out)
    try:
        ip = fetch_public_ip(config.public_ip_url, config.timeout)
    except NetworkFetchError as exc:
        err.print()
        _report(err, "Could not fetch public IP:", exc)
        return 0
    render_public_ip(ip, out)
    return 0


def cmd_ports(config: AppConfig, out: Console, err: Console,
              source: Optional[ListenerSource] = None) -> int:
    try:
        ensure_registry(config)
        entries = load_registry(config.registry_path)
    except ConfigReadError as exc:
        _report(err, "Could not read user ports file:", exc)
        return 1

    source = source or detect_source()
    try:
        listeners = source.snapshot(config.timeout)
    except SnapshotCommandError as exc:
        _report(err, "Error fetching running ports:", exc)
        return 1

    rows = reconcile(entries, listeners)
    LOGGER.debug("%d of %d apps active", sum(r.status is Status.ACTIVE for r in rows), len(rows))
    render_status_table(rows, out)
    return 0


def _editor_argv(editor: str, path: Path, posix: bool = os.name != "nt") -> List[str]:
    """Split ``$EDITOR`` into argv and append the file to edit.

    Non-POSIX splitting keeps backslashes in Windows paths but also keeps the
    quotes around tokens, so those are stripped here.
    """
    tokens = shlex.split(editor, posix=posix)
    if not posix:
        tokens = [t[1:-1] if len(t) >= 2 and t[0] == t[-1] and t[0] in "\"'" else t
                  for t in tokens]
    return tokens + [str(path)]


def cmd_ports_edit(config: AppConfig, out: Console, err: Console) -> int:
    try:
        ensure_registry(config)
    except ConfigReadError as exc:
        _report(err, "Could not prepare user ports file:", exc)
        return 1

    argv = _editor_argv(config.editor, config.registry_path)
    LOGGER.debug("Launching editor: %s", argv)
    try:
        res = subprocess.run(argv, check=False)
    except OSError as exc:
        _report(err, f"Could not start editor {argv[0]!r}:", exc)
        return 1
    return res.returncode


COMMANDS = {
    "ip": cmd_ip,
    "ports": cmd_ports,
    "ports-edit": cmd_ports_edit,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portboard",
        description="portboard – show network info and check which of your apps are listening",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  portboard ip            # Local interfaces and public IP
  portboard ports         # Status of the apps in ports-list.json
  portboard ports-edit    # Open ports-list.json in $EDITOR
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    parser.add_argument("--no-color", action="store_true", help="Disable colors")
    parser.add_argument("--timeout", type=float, metavar="SECONDS",
                        help="Give up on the listener command or public IP request after SECONDS")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("ip", help="Show local IP, MAC address, and public IP")
    sub.add_parser("ports", help="Check apps in ports-list.json and show their status")
    sub.add_parser("ports-edit", help="Edit your local ports-list.json")
    return parser


def _setup_logging(verbose: bool, console: Console) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    out = Console(no_color=args.no_color)
    err = Console(stderr=True, no_color=args.no_color)
    _setup_logging(args.verbose, err)

    if not args.command:
        parser.print_help()
        return 2

    config = load_config(timeout=args.timeout)
    LOGGER.debug("Registry file: %s", config.registry_path)
    return COMMANDS[args.command](config, out, err)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as e:
        Console(stderr=True).print(f"[red]Error:[/] {escape(str(e))}", highlight=False)
        sys.exit(1)
