"""
Fail-closed classification of shell command strings.

A command may run only if every segment of it (split on ``|``, ``||``,
``&&`` and ``;``) starts with an allowlisted verb and passes that verb's
argument rules. Anything the classifier does not recognise is blocked.
"""

import glob
import logging
import ntpath
import os
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from sandbox_tools.filesystem.confiner import PathConfiner, expand_home
from sandbox_tools.shell.models import CommandVerdict

logger = logging.getLogger(__name__)

IS_WINDOWS = os.name == "nt"

# Seeded from the historical denylist; these are rejected with an explicit
# reason even if someone adds them to the allowlist.
DANGEROUS_VERBS = frozenset(
    {
        "sudo", "su", "doas", "dd", "mkfs", "fdisk", "parted", "format",
        "diskpart", "shutdown", "reboot", "halt", "poweroff", "init",
        "chown", "chmod", "chgrp", "passwd", "useradd", "userdel", "usermod",
        "groupadd", "groupdel", "systemctl", "service", "crontab", "history",
        "netsh", "net", "reg", "regedit", "regsvr32", "taskkill", "wmic",
        "powershell", "pwsh", "cmd", "del", "erase", "rd", "kill", "killall",
        "pkill", "mount", "umount", "shred", "truncate", "eval", "exec",
        "source", "bash", "sh", "zsh", "dash", "xargs", "env", "nohup",
    }
)

PROTECTED_PATHS = (
    "/",
    "/bin",
    "/boot",
    "/dev",
    "/etc",
    "/lib",
    "/lib64",
    "/proc",
    "/sbin",
    "/sys",
    "/usr",
    "/var",
    "/System",
    "/Library",
    "C:\\",
    "C:\\Windows",
    "C:\\Program Files",
    "C:\\Program Files (x86)",
    "C:\\ProgramData",
)

# Only these exact paths are protected; their descendants are not.
_ROOT_ONLY = frozenset({"/", "C:\\"})

_ALLOWED_OPERATORS = frozenset({"|", "||", "&&", ";"})
_FORBIDDEN_SUBSTRINGS = ("`", "$(", "${", "\n", "\r", "\x00")
_WINDOWS_PATH = re.compile(r"^(?:[A-Za-z]:(?:[\\/]|$)|\\\\)")
_SIMPLE_OPTION = re.compile(r"^(?:-[A-Za-z0-9]+|--[A-Za-z0-9][A-Za-z0-9-]*)$")
_LONG_OPTION_VALUE = re.compile(r"^--[A-Za-z0-9][A-Za-z0-9-]*=(.*)$")

_GLOB_CHARS = frozenset("*?[")

_VERSION_FLAGS = frozenset({"--version", "-version", "-v", "-V", "version", "--help", "-h"})

# Options that replace grep's positional pattern.
_PATTERN_OPTIONS = frozenset({"-e", "--regexp", "-f", "--file"})

# Operand handling per verb.
PATHS = "paths"
PATTERN_THEN_PATHS = "pattern"
FIND_START_POINTS = "find"


@dataclass(frozen=True)
class VerbRule:
    """
    Argument rules for one allowlisted verb.

    ``operands`` says which positional arguments name files: ``"paths"``
    (all of them), ``"pattern"`` (all but a leading grep-style pattern),
    ``"find"`` (the start points before the expression) or None. Options in
    ``value_options`` consume the next argument; for ``path_options`` that
    argument is a path as well.
    """

    category: str
    mutating: bool = False
    forbidden_options: tuple[str, ...] = ()
    forbidden_letters: str = ""
    subcommands: Optional[frozenset[str]] = None
    only_subcommand_args: bool = False
    max_operands: Optional[int] = None
    operands: Optional[str] = None
    value_options: frozenset[str] = frozenset()
    path_options: frozenset[str] = frozenset()
    examples: tuple[str, ...] = ()


def _rule(category: str, *examples: str, **kwargs) -> VerbRule:
    return VerbRule(category=category, examples=examples, **kwargs)


def _opts(names: str) -> frozenset[str]:
    return frozenset(names.split())


_GREP = dict(
    operands=PATTERN_THEN_PATHS,
    forbidden_options=("--dereference-recursive",),
    forbidden_letters="R",
    value_options=_opts(
        "-e --regexp -m --max-count -A --after-context -B --before-context "
        "-C --context -d --directories -D --devices --include --exclude "
        "--exclude-dir --label --binary-files --color --colour"
    ),
    path_options=_opts("-f --file --exclude-from"),
)


_GIT_SUBCOMMANDS = frozenset(
    {"status", "log", "diff", "show", "branch", "tag", "blame", "rev-parse", "ls-files", "shortlog"}
)
_PIP_SUBCOMMANDS = frozenset({"list", "show", "freeze", "--version", "-V"})

ALLOWLIST: dict[str, VerbRule] = {
    # file
    "ls": _rule(
        "file",
        "ls -la",
        operands=PATHS,
        forbidden_letters="L",
        forbidden_options=("--dereference",),
        value_options=_opts(
            "-I --ignore --hide -w --width -T --tabsize --block-size --format --sort "
            "--time --time-style --quoting-style --indicator-style --color"
        ),
    ),
    "dir": _rule(
        "file",
        "dir",
        operands=PATHS,
        forbidden_letters="L",
        value_options=_opts("-I --ignore --hide -w --width -T --tabsize"),
    ),
    "pwd": _rule("file", "pwd"),
    "tree": _rule(
        "file",
        "tree -L 2",
        operands=PATHS,
        forbidden_options=("--fromfile",),
        forbidden_letters="lo",
        value_options=_opts("-L -P -I -H -T --charset --filelimit --timefmt --sort"),
    ),
    "cat": _rule("file", "cat filename", operands=PATHS),
    "head": _rule("file", "head -n 20 filename", operands=PATHS, value_options=_opts("-n --lines -c --bytes")),
    "tail": _rule(
        "file",
        "tail -n 20 filename",
        operands=PATHS,
        value_options=_opts("-n --lines -c --bytes -s --sleep-interval --pid"),
    ),
    "less": _rule(
        "file",
        operands=PATHS,
        forbidden_options=("--log-file", "--LOG-FILE", "--lesskey-file", "--lesskey-src"),
        forbidden_letters="oOk",
    ),
    "more": _rule("file", operands=PATHS),
    "stat": _rule("file", "stat filename", operands=PATHS, value_options=_opts("-c --format --printf")),
    "file": _rule(
        "file",
        "file filename",
        operands=PATHS,
        forbidden_options=("-C", "--compile", "--files-from"),
        forbidden_letters="fC",
        value_options=_opts("-F --separator -e --exclude -P --parameter"),
        path_options=_opts("-m --magic-file"),
    ),
    "du": _rule(
        "file",
        "du -sh .",
        operands=PATHS,
        forbidden_options=("--files0-from", "--dereference"),
        forbidden_letters="L",
        value_options=_opts("-d --max-depth -B --block-size -t --threshold --exclude --time-style"),
        path_options=_opts("-X --exclude-from"),
    ),
    "mkdir": _rule("file", "mkdir dirname", mutating=True),
    "rmdir": _rule("file", "rmdir dirname", mutating=True),
    "touch": _rule("file", "touch filename", mutating=True),
    "cp": _rule(
        "file", "cp source dest", mutating=True, forbidden_options=("--dereference",), forbidden_letters="L"
    ),
    "mv": _rule("file", "mv source dest", mutating=True),
    "rm": _rule("file", "rm filename", mutating=True),
    # text
    "grep": _rule("text", "grep pattern filename", **_GREP),
    "egrep": _rule("text", **_GREP),
    "fgrep": _rule("text", **_GREP),
    "rg": _rule(
        "text",
        "rg pattern",
        operands=PATTERN_THEN_PATHS,
        forbidden_options=("--pre", "--pre-glob", "--search-zip", "--follow"),
        forbidden_letters="Lz",
        value_options=_opts(
            "-e --regexp -g --glob --iglob -t --type -T --type-not --type-add "
            "-m --max-count -A --after-context -B --before-context -C --context "
            "-j --threads -M --max-columns -E --encoding -d --max-depth "
            "-r --replace --sort --sortr --max-filesize --color --colors --engine"
        ),
        path_options=_opts("-f --file --ignore-file"),
    ),
    "sort": _rule(
        "text",
        "sort filename",
        operands=PATHS,
        forbidden_options=("--output", "--compress-program", "--files0-from", "--random-source"),
        forbidden_letters="o",
        value_options=_opts("-k --key -t --field-separator -S --buffer-size --parallel --batch-size"),
        path_options=_opts("-T --temporary-directory"),
    ),
    "uniq": _rule(
        "text",
        "uniq filename",
        operands=PATHS,
        max_operands=1,
        value_options=_opts("-f --skip-fields -s --skip-chars -w --check-chars"),
    ),
    "wc": _rule("text", "wc -l filename", operands=PATHS, forbidden_options=("--files0-from",)),
    "cut": _rule(
        "text",
        "cut -d, -f1 filename",
        operands=PATHS,
        value_options=_opts("-d --delimiter -f --fields -c --characters -b --bytes --output-delimiter"),
    ),
    "tr": _rule("text", "tr a-z A-Z"),
    "diff": _rule(
        "text",
        "diff old new",
        operands=PATHS,
        # Recursive diff follows symlinks found inside directories.
        forbidden_options=("--recursive",),
        forbidden_letters="r",
        value_options=_opts(
            "-C --context -U --unified -I --ignore-matching-lines -F --show-function-line "
            "-x --exclude -S --starting-file --label -L -W --width --tabsize --color"
        ),
        path_options=_opts("-X --exclude-from --from-file --to-file"),
    ),
    "echo": _rule("text", "echo text"),
    "find": _rule(
        "text",
        "find . -name '*.py'",
        operands=FIND_START_POINTS,
        forbidden_options=(
            "-delete", "-exec", "-execdir", "-ok", "-okdir",
            "-fprint", "-fprint0", "-fprintf", "-fls",
            "-L", "-follow", "-files0-from",
        ),
    ),
    # system
    "whoami": _rule("system", "whoami"),
    "date": _rule(
        "system", "date", forbidden_options=("--set", "--file", "--reference"), forbidden_letters="sfr"
    ),
    "uname": _rule("system", "uname -a"),
    "ps": _rule("system", "ps aux"),
    "df": _rule("system", "df -h"),
    "free": _rule("system", "free -h"),
    "uptime": _rule("system", "uptime"),
    "which": _rule("system", "which python3"),
    "whereis": _rule("system", "whereis python3"),
    "hostname": _rule("system", "hostname", max_operands=0, forbidden_options=("-F", "--file", "-b", "--boot")),
    # network
    "ping": _rule("network", "ping -c 4 hostname", forbidden_letters="f"),
    "nslookup": _rule("network", "nslookup hostname"),
    "dig": _rule("network", "dig hostname", forbidden_letters="fk"),
    # dev
    "git": _rule(
        "dev",
        "git status",
        "git log --oneline",
        "git diff",
        subcommands=_GIT_SUBCOMMANDS,
        forbidden_options=(
            "-c", "--config-env", "--exec-path", "--output", "--ext-diff",
            "-d", "-D", "--delete", "-m", "-M", "--move", "--upload-pack",
            "--no-index", "--contents",
        ),
    ),
    "npm": _rule(
        "dev",
        "npm list",
        subcommands=frozenset({"list", "ls", "view", "outdated", "--version", "-v"}),
    ),
    "pip": _rule(
        "dev",
        "pip list",
        subcommands=_PIP_SUBCOMMANDS,
        forbidden_options=("--log", "--log-file", "--cache-dir"),
    ),
    "pip3": _rule("dev", subcommands=_PIP_SUBCOMMANDS, forbidden_options=("--log", "--log-file", "--cache-dir")),
    "node": _rule("dev", "node --version", subcommands=_VERSION_FLAGS, only_subcommand_args=True),
    "python": _rule("dev", "python --version", subcommands=_VERSION_FLAGS, only_subcommand_args=True),
    "python3": _rule("dev", subcommands=_VERSION_FLAGS, only_subcommand_args=True),
    "java": _rule("dev", "java -version", subcommands=_VERSION_FLAGS, only_subcommand_args=True),
    "javac": _rule("dev", subcommands=_VERSION_FLAGS, only_subcommand_args=True),
    "gcc": _rule("dev", "gcc --version", subcommands=_VERSION_FLAGS, only_subcommand_args=True),
    "make": _rule("dev", "make --version", subcommands=_VERSION_FLAGS, only_subcommand_args=True),
    "cmake": _rule("dev", subcommands=_VERSION_FLAGS, only_subcommand_args=True),
}

COMMAND_CATEGORIES = ("file", "text", "system", "network", "dev")


def path_key(path: str, cwd: Path) -> str:
    """
    Canonical comparison key for a path mentioned in a command.

    Windows-style paths are normalized and case-folded; anything else is
    resolved against ``cwd`` with symlinks followed. Separators are ``/``.
    """
    if _WINDOWS_PATH.match(path) and not IS_WINDOWS:
        return ntpath.normcase(ntpath.normpath(path)).replace("\\", "/")
    candidate = Path(expand_home(path))
    if not candidate.is_absolute():
        candidate = cwd / candidate
    resolved = str(candidate.resolve())
    if IS_WINDOWS:
        resolved = os.path.normcase(resolved)
    return resolved.replace("\\", "/")


def _is_under(key: str, base: str) -> bool:
    return key == base or key.startswith(base.rstrip("/") + "/")


def split_arguments(rule: VerbRule, args: list[str]) -> tuple[list[str], list[str], set[str]]:
    """
    Separate a verb's operands from its options.

    Returns:
        Tuple of (operands, arguments of path-valued options, option names seen)
    """
    operands: list[str] = []
    path_values: list[str] = []
    seen: set[str] = set()
    takes_value = rule.value_options | rule.path_options
    pending: Optional[str] = None
    end_of_options = False

    for arg in args:
        if pending is not None:
            if pending in rule.path_options:
                path_values.append(arg)
            pending = None
        elif end_of_options or arg == "-" or not arg.startswith("-"):
            operands.append(arg)
        elif arg == "--":
            end_of_options = True
        elif arg.startswith("--"):
            name, eq, value = arg.partition("=")
            seen.add(name)
            if eq:
                if name in rule.path_options:
                    path_values.append(value)
            elif name in takes_value:
                pending = name
        else:
            for i, letter in enumerate(arg[1:], start=1):
                name = "-" + letter
                seen.add(name)
                if name in takes_value:
                    attached = arg[i + 1 :]
                    if not attached:
                        pending = name
                    elif name in rule.path_options:
                        path_values.append(attached)
                    break
    return operands, path_values, seen


def find_start_points(args: list[str]) -> list[str]:
    """Start points of a find command: the operands before its expression."""
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-H", "-P") or arg.startswith("-O"):
            i += 1
        elif arg == "-D":
            i += 2
        else:
            break
    points = []
    for arg in args[i:]:
        if arg.startswith("-") or arg in ("!", ","):
            break
        points.append(arg)
    return points


def path_arguments(
    rule: VerbRule,
    args: list[str],
    operands: list[str],
    path_values: list[str],
    seen: set[str],
) -> list[str]:
    """Arguments of a non-mutating verb that the command will open as files."""
    if rule.operands == PATHS:
        return operands + path_values
    if rule.operands == PATTERN_THEN_PATHS:
        if seen & _PATTERN_OPTIONS:
            return operands + path_values
        return operands[1:] + path_values
    if rule.operands == FIND_START_POINTS:
        return find_start_points(args)
    return path_values


class SafetyClassifier:
    """
    Decides whether a command string may run inside the sandbox.

    The policy is an allowlist: unknown verbs, shell substitutions,
    redirections, background jobs and newlines are all rejected. Mutating
    verbs (rm, mv, cp, mkdir, rmdir, touch) must name only paths that
    canonicalize inside the sandbox root.

    Usage:
        classifier = SafetyClassifier(PathConfiner("/srv/sandbox"))

        verdict = classifier.classify("rm -rf C:\\\\Windows")
        assert not verdict.allowed
    """

    def __init__(
        self,
        confiner: PathConfiner,
        protected_paths: tuple[str, ...] = PROTECTED_PATHS,
        allowlist: Optional[dict[str, VerbRule]] = None,
    ):
        """
        Initialize the classifier.

        Args:
            confiner: Path confiner owning the sandbox root
            protected_paths: Paths that mutating commands may never touch
            allowlist: Verb rules (default: ALLOWLIST)
        """
        self.confiner = confiner
        self.allowlist = allowlist if allowlist is not None else ALLOWLIST
        cwd = Path(os.sep)
        self._protected = [
            (p, path_key(p, cwd), p in _ROOT_ONLY) for p in protected_paths
        ]

    def classify(
        self, command: str, working_dir: Optional[Union[str, Path]] = None
    ) -> CommandVerdict:
        """
        Classify a command.

        Args:
            command: Shell command string
            working_dir: Directory relative arguments resolve against
                (default: sandbox root)

        Returns:
            CommandVerdict (never raises)
        """
        cwd = Path(working_dir).resolve() if working_dir else self.root
        verbs: list[str] = []

        def verdict(allowed: bool, reason: str) -> CommandVerdict:
            if not allowed:
                logger.warning(f"Blocked command {command!r}: {reason}")
            return CommandVerdict(command=command, allowed=allowed, reason=reason, verbs=verbs)

        text = command.strip()
        if not text:
            return verdict(False, "Empty command")
        for token in _FORBIDDEN_SUBSTRINGS:
            if token in text:
                return verdict(False, f"Forbidden shell construct {token!r}")

        try:
            segments = self._segments(text)
        except ValueError as e:
            return verdict(False, f"Cannot parse command: {e}")

        for segment in segments:
            if not segment:
                return verdict(False, "Empty command segment")
            verb = self._verb(segment[0])
            verbs.append(verb)
            reason = self._check_segment(verb, segment[0], segment[1:], cwd)
            if reason is not None:
                return verdict(False, reason)

        return verdict(True, "Allowed: " + ", ".join(verbs))

    def is_protected(self, path: str, cwd: Optional[Path] = None) -> Optional[str]:
        """Return the protected path that ``path`` hits, if any."""
        key = path_key(path, cwd or self.root)
        for original, protected_key, root_only in self._protected:
            if root_only:
                if key == protected_key:
                    return original
            elif _is_under(key, protected_key):
                return original
        return None

    @property
    def root(self) -> Path:
        """Current sandbox root (follows root changes on the confiner)."""
        return self.confiner.root

    def _segments(self, text: str) -> list[list[str]]:
        lexer = shlex.shlex(text, posix=True, punctuation_chars=True)
        lexer.whitespace_split = True
        lexer.commenters = ""  # text after "#" is checked too
        if not IS_WINDOWS:
            # Keep backslashes literal so Windows paths survive tokenizing.
            lexer.escape = ""

        segments: list[list[str]] = [[]]
        for token in lexer:
            if token and all(c in "();<>|&" for c in token):
                if token not in _ALLOWED_OPERATORS:
                    raise ValueError(f"operator {token!r} is not allowed")
                segments.append([])
            else:
                segments[-1].append(token)
        return segments

    @staticmethod
    def _verb(token: str) -> str:
        verb = token.lower()
        if verb.endswith(".exe"):
            verb = verb[:-4]
        return verb

    def _check_segment(
        self, verb: str, raw_verb: str, args: list[str], cwd: Path
    ) -> Optional[str]:
        if "/" in raw_verb or "\\" in raw_verb:
            return f"Commands must be invoked by name, not path: {raw_verb}"
        if verb in DANGEROUS_VERBS:
            return f"Dangerous command: {verb}"
        rule = self.allowlist.get(verb)
        if rule is None:
            return f"Command not in allowlist: {verb}"

        for arg in args:
            for forbidden in rule.forbidden_options:
                if arg == forbidden or arg.startswith(forbidden + "="):
                    return f"Option {forbidden} is not allowed for {verb}"
            if rule.forbidden_letters and arg.startswith("-") and not arg.startswith("--"):
                for letter in rule.forbidden_letters:
                    if letter in arg[1:]:
                        return f"Option -{letter} is not allowed for {verb}"

        if rule.subcommands is not None:
            if not args or args[0] not in rule.subcommands:
                allowed = ", ".join(sorted(rule.subcommands))
                return f"{verb} is limited to: {allowed}"
            if rule.only_subcommand_args and any(a not in rule.subcommands for a in args):
                return f"{verb} only accepts version/help queries"

        operands, path_values, seen = split_arguments(rule, args)
        if rule.max_operands is not None and len(operands) > rule.max_operands:
            return f"Too many operands for {verb}"

        root_key = path_key(str(self.root), self.root)
        if rule.mutating:
            return self._check_mutation(verb, args, cwd, root_key)

        for value in path_arguments(rule, args, operands, path_values, seen):
            reason = self._check_path(verb, value, cwd, root_key, allow_glob=True)
            if reason is not None:
                return reason
        return None

    def _check_mutation(
        self, verb: str, args: list[str], cwd: Path, root_key: str
    ) -> Optional[str]:
        for arg in args:
            value = arg
            if arg.startswith("-"):
                match = _LONG_OPTION_VALUE.match(arg)
                if match:
                    value = match.group(1)
                elif _SIMPLE_OPTION.match(arg):
                    continue
                else:
                    return f"Unsupported option form for {verb}: {arg}"

            # The shell expands wildcards after classification.
            reason = self._check_path(verb, value, cwd, root_key, allow_glob=False)
            if reason is not None:
                return reason
            if path_key(value, cwd) == root_key and verb in ("rm", "rmdir", "mv"):
                return f"{verb} cannot target the sandbox root"
        return None

    def _check_path(
        self, verb: str, value: str, cwd: Path, root_key: str, allow_glob: bool
    ) -> Optional[str]:
        """Reason a path argument is refused, or None if it stays inside the root."""
        if "$" in value or "{" in value or "}" in value:
            return f"Shell expansion is not allowed in {verb} arguments: {value}"
        if value.startswith("~") and not (value == "~" or value.startswith("~/")):
            return f"User home expansion is not allowed: {value}"
        if not IS_WINDOWS and "\\" in value and not _WINDOWS_PATH.match(value):
            return f"Backslash escapes are not allowed in {verb} arguments: {value}"

        candidates = [value]
        if _GLOB_CHARS.intersection(value):
            if not allow_glob:
                return f"Wildcards are not allowed in {verb} arguments: {value}"
            if "[" in value:
                return f"Character classes are not allowed in {verb} arguments: {value}"
            for part in re.split(r"[\\/]", value):
                # bash may match "." and ".." here; glob never does.
                if part.startswith(".") and _GLOB_CHARS.intersection(part):
                    return f"Wildcards over hidden entries are not allowed: {value}"
            candidates.extend(glob.glob(expand_home(value), root_dir=cwd))

        for candidate in candidates:
            protected = self.is_protected(candidate, cwd)
            inside = _is_under(path_key(candidate, cwd), root_key)
            if protected is not None and not inside:
                return f"{verb} targets protected path {protected}"
            if not inside:
                return f"{verb} targets a path outside the sandbox: {candidate}"
        return None

    def list_safe_commands(self, category: Optional[str] = None) -> dict[str, list[str]]:
        """
        Example commands per category, taken from the allowlist itself.

        Args:
            category: One of file, text, system, network, dev
                (unknown or None returns all categories)
        """
        commands: dict[str, list[str]] = {c: [] for c in COMMAND_CATEGORIES}
        for rule in self.allowlist.values():
            commands.setdefault(rule.category, []).extend(rule.examples)
        if category and category in commands:
            return {category: commands[category]}
        return commands
