#!/usr/bin/env python3
"""
VFS Emulator - a tiny shell over an in-memory virtual filesystem

The emulator loads a virtual filesystem from a manifest file (see ``vfs.py``
for the format), optionally replays a startup script, and then drops into an
interactive prompt of the form ``user@host:/current/path$``. Three commands
are understood:

    ls          list the current directory (directories end with '/')
    cd <path>   change directory: '/', '..', a child name or an absolute path
    exit        leave the emulator

Command lines are split on whitespace; double quotes group words into one
argument (``cd "My Documents"``). Output is colourised with colorama. When
the readline module is present the prompt keeps a history file and completes
command names and directory names.

The startup script uses the same command syntax, one command per line, with
blank lines and ``#`` comments skipped. Script execution stops at the first
failing command, and ``exit`` inside a script is ignored; in both cases the
interactive prompt still starts afterwards.

Settings may come from ``vfs_emulator.yaml`` (keys ``vfs``, ``script``,
``user``, ``host``, ``color``, ``debug``) and are overridden by command line
flags, e.g.::

    python vfs_emulator.py --vfs demo.vfs.csv --script startup.txt
"""

import argparse
import getpass
import logging
import os
import socket
import sys
from cmd import Cmd
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

# optional module
try:
    import readline  # noqa: F401
except Exception:
    readline = None

try:
    from colorama import Fore, Style, init as colorama_init
except Exception:
    print("Please install 'colorama' (pip install colorama)")
    sys.exit(1)

try:
    import yaml  # for the optional settings file
except Exception:
    yaml = None  # still works without it

from vfs import (
    VFSError,
    VirtualFileSystem,
    is_skipped_line,
    load_manifest,
)

logger = logging.getLogger(__name__)

CONFIG_FILE = "vfs_emulator.yaml"
HISTORY_FILE = "~/.vfs_emulator_history"

NOT_LOADED = "VFS not loaded"
EMPTY_LISTING = "(empty)"
SCRIPT_HEADER = "=== Executing Startup Script ==="
SCRIPT_FOOTER = "=== Script Execution Finished ==="
SCRIPT_STOPPED = "Script execution stopped due to error."


# ---------- Errors ----------
class ShellError(VFSError):
    """A command-line level failure; ``str()`` is the line shown to the user."""


class ScriptReadFailure(ShellError):
    pass


class UnterminatedQuote(ShellError):
    pass


class NavigationFailure(ShellError):
    pass


class MissingArgument(ShellError):
    pass


class UnknownCommand(ShellError):
    pass


# ---------- Utilities ----------
def c(text: Any, color: Fore = Fore.CYAN) -> str:
    """Colourise text for terminal display."""
    lines = str(text).splitlines() or [""]
    return "\n".join(f"{color}{ln}{Style.RESET_ALL}" for ln in lines)


def tokenize(line: str) -> List[str]:
    """Split a command line into arguments.

    Whitespace separates arguments except inside double quotes. Each quote
    character opens or closes a quoted region and is dropped; there is no
    escape for a literal quote. Empty arguments (``""``) are discarded.

    Raises
    ------
    UnterminatedQuote
        The line ends inside a quoted region.
    """
    args: List[str] = []
    current = ""
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch.isspace() and not in_quotes:
            if current:
                args.append(current)
                current = ""
        else:
            current += ch
    if in_quotes:
        raise UnterminatedQuote("Error: unterminated quote in command line")
    if current:
        args.append(current)
    return args


# ---------- Dispatcher ----------
class Mode(Enum):
    INTERACTIVE = "interactive"
    SCRIPTED = "scripted"


@dataclass
class CommandResult:
    ok: bool = True
    lines: List[str] = field(default_factory=list)
    exit_requested: bool = False


class Dispatcher:
    """Run command lines against a (possibly missing) virtual filesystem.

    There is one dispatcher for both the interactive prompt and the startup
    script. The mode only matters for ``exit``: interactively it asks the
    caller to stop, in a script it is reported and ignored. Whether a failed
    command stops anything is the caller's decision.
    """

    def __init__(self, vfs: Optional[VirtualFileSystem] = None):
        self.vfs = vfs
        self.handlers: "OrderedDict[str, Callable[[List[str], Mode], CommandResult]]" = OrderedDict([
            ("ls", self.h_ls),
            ("cd", self.h_cd),
            ("exit", self.h_exit),
        ])

    def dispatch(self, line: Union[str, Sequence[str]], mode: Mode = Mode.INTERACTIVE) -> CommandResult:
        """Tokenize (unless already tokenized) and execute one command line."""
        try:
            tokens = tokenize(line) if isinstance(line, str) else list(line)
            if not tokens:
                return CommandResult()
            verb, args = tokens[0], tokens[1:]
            logger.debug("dispatch %s %r (%s)", verb, args, mode.value)
            handler = self.handlers.get(verb)
            if handler is None:
                raise UnknownCommand(f"Command not found: {verb}")
            return handler(args, mode)
        except ShellError as e:
            logger.debug("command failed: %s", e)
            return CommandResult(ok=False, lines=[str(e)])

    def h_ls(self, args: List[str], mode: Mode) -> CommandResult:
        """List the current directory. Arguments are ignored."""
        if self.vfs is None:
            return CommandResult(lines=[NOT_LOADED])
        return CommandResult(lines=self.vfs.list_current() or [EMPTY_LISTING])

    def h_cd(self, args: List[str], mode: Mode) -> CommandResult:
        """Change the current directory. Usage: cd <path>"""
        if self.vfs is None:
            return CommandResult(lines=[NOT_LOADED])
        if not args:
            raise MissingArgument("cd: missing argument")
        target = args[0]
        if not self.vfs.change_directory(target):
            raise NavigationFailure(f"cd: no such directory: {target}")
        return CommandResult()

    def h_exit(self, args: List[str], mode: Mode) -> CommandResult:
        if mode is Mode.SCRIPTED:
            return CommandResult(lines=["exit command in script - ignoring"])
        return CommandResult(exit_requested=True)


# ---------- Startup script ----------
@dataclass
class ScriptReport:
    """Outcome of a startup script run.

    ``results`` holds one ``(command line, result)`` pair per executed line.
    ``error`` is set when the script could not be read at all, ``stopped``
    when a command failed and the rest of the script was skipped.
    """

    path: str
    results: List[Tuple[str, CommandResult]] = field(default_factory=list)
    error: Optional[str] = None
    stopped: bool = False

    @property
    def completed(self) -> bool:
        return self.error is None and not self.stopped

    @property
    def executed(self) -> List[str]:
        return [cmd for cmd, _ in self.results]

    def entries(self) -> List[Tuple[str, str]]:
        """Rendered output as (line, tag) pairs.

        Tags are ``frame``, ``error``, ``command``, ``output`` and ``stopped``;
        the shell picks a colour per tag.
        """
        out = [(SCRIPT_HEADER, "frame")]
        if self.error:
            out.append((self.error, "error"))
        for cmd, result in self.results:
            out.append((f"$ {cmd}", "command"))
            tag = "output" if result.ok else "error"
            out.extend((line, tag) for line in result.lines)
        if self.stopped:
            out.append((SCRIPT_STOPPED, "stopped"))
        out.append((SCRIPT_FOOTER, "frame"))
        return out

    def lines(self) -> List[str]:
        return [line for line, _ in self.entries()]


def read_script(path: str) -> List[str]:
    """Return the lines of a script file, read in one go."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read().splitlines()
    except (OSError, UnicodeDecodeError) as e:
        raise ScriptReadFailure(f"Error reading script file: {e}") from e


def run_script(dispatcher: Dispatcher, path: str) -> ScriptReport:
    """Replay a script file through ``dispatcher`` in scripted mode.

    Blank lines and comments are skipped. The first failing command ends the
    run; nothing after it is executed. The host process is never terminated
    from here, not even by ``exit``.
    """
    report = ScriptReport(path=path)
    try:
        lines = read_script(path)
    except ScriptReadFailure as e:
        logger.warning("%s", e)
        report.error = str(e)
        return report
    for line in lines:
        if is_skipped_line(line):
            continue
        result = dispatcher.dispatch(line, Mode.SCRIPTED)
        report.results.append((line, result))
        if not result.ok:
            logger.warning("script %s stopped at %r: %s", path, line, "; ".join(result.lines))
            report.stopped = True
            break
    else:
        logger.info("script %s finished (%d commands)", path, len(report.results))
    return report


# ---------- Settings ----------
def _default_user() -> str:
    try:
        return getpass.getuser()
    except (OSError, KeyError):
        return "user"


def _default_host() -> str:
    try:
        return socket.gethostname()
    except OSError:
        return "localhost"


@dataclass
class Settings:
    vfs_path: Optional[str] = None
    script_path: Optional[str] = None
    username: str = field(default_factory=_default_user)
    hostname: str = field(default_factory=_default_host)
    color: bool = True
    debug: bool = False
    # problems found while reading settings, shown in the startup banner
    notices: List[str] = field(default_factory=list)


# settings file key -> Settings attribute
CONFIG_KEYS = {
    "vfs": "vfs_path",
    "script": "script_path",
    "user": "username",
    "host": "hostname",
    "color": "color",
    "debug": "debug",
}
BOOL_KEYS = {"color", "debug"}


def load_config(path: str = CONFIG_FILE) -> Dict[str, Any]:
    """Load the optional YAML settings file.

    Unknown keys are dropped. ``color`` and ``debug`` must be booleans, the
    other keys scalars (converted to str); anything else raises ValueError.
    """
    if not yaml or not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    values: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in CONFIG_KEYS:
            continue
        if key in BOOL_KEYS:
            if not isinstance(value, bool):
                raise ValueError(f"{path}: {key} must be true or false, got {value!r}")
        elif value is None:
            continue
        elif isinstance(value, (str, int, float)) and not isinstance(value, bool):
            value = str(value)
        else:
            raise ValueError(f"{path}: {key} must be a string, got {value!r}")
        values[CONFIG_KEYS[key]] = value
    return values


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Shell emulator over an in-memory virtual filesystem",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python vfs_emulator.py --vfs demo.vfs.csv\n"
               "  python vfs_emulator.py -vfs demo.vfs.csv -script startup.txt\n"
    )
    parser.add_argument("--vfs", "-vfs", dest="vfs_path", default=None, metavar="PATH",
                        help="Manifest file describing the virtual filesystem")
    parser.add_argument("--script", "-script", dest="script_path", default=None, metavar="PATH",
                        help="Startup script replayed before the prompt appears")
    parser.add_argument("--config", default=None, metavar="PATH",
                        help=f"YAML settings file (default: ./{CONFIG_FILE} if present)")
    parser.add_argument("--user", dest="username", default=None,
                        help="User name shown in the prompt")
    parser.add_argument("--host", dest="hostname", default=None,
                        help="Host name shown in the prompt")
    parser.add_argument("--no-color", dest="color", action="store_const", const=False, default=None,
                        help="Disable coloured output")
    parser.add_argument("--debug", dest="debug", action="store_const", const=True, default=None,
                        help="Log debug information to stderr")
    return parser


def build_settings(argv: Optional[Sequence[str]] = None) -> Settings:
    """Merge defaults, the YAML settings file and command line flags (in that order)."""
    args = build_parser().parse_args(argv)
    settings = Settings()
    config_path = args.config or CONFIG_FILE
    config_errors = (OSError, ValueError) + ((yaml.YAMLError,) if yaml else ())
    if args.config and not yaml:
        settings.notices.append(f"PyYAML is not installed, ignoring {args.config}")
    elif args.config and not os.path.exists(args.config):
        settings.notices.append(f"Config file not found: {args.config}")
    else:
        try:
            values = load_config(config_path)
        except config_errors as e:
            settings.notices.append(f"Error reading config file: {e}")
            values = {}
        for attr, value in values.items():
            setattr(settings, attr, value)
    for attr in ("vfs_path", "script_path", "username", "hostname", "color", "debug"):
        value = getattr(args, attr)
        if value is not None:
            setattr(settings, attr, value)
    return settings


def debug_banner(settings: Settings) -> List[str]:
    lines = [
        "=== Debug Information ===",
        f"VFS Path: {settings.vfs_path or 'not specified'}",
        f"Script Path: {settings.script_path or 'not specified'}",
        f"Username: {settings.username}",
        f"Hostname: {settings.hostname}",
    ]
    lines.extend(settings.notices)
    lines.append("=========================")
    return lines


def load_vfs(path: str) -> Tuple[Optional[VirtualFileSystem], str]:
    """Load the manifest at ``path``; return the tree (or None) and a status line."""
    try:
        vfs = load_manifest(path)
    except VFSError as e:
        logger.warning("manifest %s not loaded: %s", path, e)
        return None, f"Error loading VFS: {e}"
    return vfs, f"VFS loaded successfully from: {path}"


# ---------- Shell ----------
SCRIPT_COLORS = {
    "frame": Fore.MAGENTA,
    "command": Fore.WHITE,
    "output": Fore.CYAN,
    "error": Fore.RED,
    "stopped": Fore.YELLOW,
}


class VFSShell(Cmd):
    """Interactive prompt; every line goes through ``Dispatcher.dispatch``."""

    intro = None

    def __init__(self, dispatcher: Dispatcher, settings: Optional[Settings] = None, stdin=None, stdout=None):
        super().__init__(stdin=stdin, stdout=stdout)
        self.dispatcher = dispatcher
        self.settings = settings or Settings()

    def enable_history(self) -> None:
        """Keep a persistent command history if readline is available."""
        if readline:
            try:
                import atexit
                hist = os.path.expanduser(HISTORY_FILE)
                try:
                    readline.read_history_file(hist)
                except FileNotFoundError:
                    pass
                atexit.register(lambda: readline.write_history_file(hist))
            except Exception:
                logger.debug("readline history unavailable", exc_info=True)

    @property
    def prompt(self) -> str:
        vfs = self.dispatcher.vfs
        path = vfs.current_path() if vfs is not None else "~"
        return (f"{Fore.GREEN}{self.settings.username}@{self.settings.hostname}{Style.RESET_ALL}:"
                f"{Fore.BLUE}{path}{Style.RESET_ALL}$ ")

    # ---- output
    def say(self, text: str, color: Fore = Fore.CYAN) -> None:
        print(c(text, color), file=self.stdout)

    def show_result(self, result: CommandResult) -> None:
        color = Fore.CYAN if result.ok else Fore.RED
        for line in result.lines:
            self.say(line, color)

    def show_script_report(self, report: ScriptReport) -> None:
        for line, tag in report.entries():
            self.say(line, SCRIPT_COLORS[tag])
        self.say("")

    # ---- core overrides
    def onecmd(self, line: str) -> bool:
        """Run one interactive line; return True to leave the loop."""
        if line == "EOF":
            return self.do_EOF(line)
        result = self.dispatcher.dispatch(line, Mode.INTERACTIVE)
        self.show_result(result)
        if result.exit_requested:
            self.say("Bye!", Fore.MAGENTA)
            return True
        return False

    def do_EOF(self, arg) -> bool:
        print(file=self.stdout)
        return True

    # ---- tab completion
    def completenames(self, text, *ignored):
        return [k for k in self.dispatcher.handlers if k.startswith(text)]

    def complete_cd(self, text, line, begidx, endidx):
        """Complete directory names of the current directory."""
        vfs = self.dispatcher.vfs
        if vfs is None:
            return []
        return [name.rstrip("/") for name in vfs.list_current()
                if name.endswith("/") and name.startswith(text)]


def boot(settings: Settings, stdout=None) -> VFSShell:
    """Print the banner, load the manifest and replay the startup script.

    The script always runs to completion (or to its first failure) before the
    returned shell accepts interactive input.
    """
    vfs = None
    status = None
    if settings.vfs_path:
        vfs, status = load_vfs(settings.vfs_path)
    dispatcher = Dispatcher(vfs)
    shell = VFSShell(dispatcher, settings, stdout=stdout)
    for line in debug_banner(settings):
        shell.say(line, Fore.YELLOW)
    shell.say("")
    if status:
        shell.say(status, Fore.GREEN if vfs is not None else Fore.RED)
    if settings.script_path:
        shell.show_script_report(run_script(dispatcher, settings.script_path))
    return shell


# ---------- main ----------
def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = build_settings(argv)
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    colorama_init(strip=None if settings.color else True)
    shell = boot(settings)
    shell.enable_history()
    shell.cmdloop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
