"""Environment probes used to build a SystemContext."""

from __future__ import annotations

import getpass
import os
import platform
import shutil
import subprocess
import sys
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from forgor.runtime_logging import get_runtime_logger
from forgor.system.inventory import (
    DevTool,
    LanguageRuntime,
    SystemContext,
    ToolInventory,
    merge_custom_tools,
)

PROBE_TIMEOUT_SECONDS = 2.0

PACKAGE_MANAGERS = (
    "brew", "apt", "apt-get", "yum", "dnf", "pacman", "zypper", "apk", "port", "nix",
    "npm", "pip", "pip3", "pipx", "uv", "gem", "cargo", "go", "composer",
    "yarn", "bun", "pnpm", "bundle", "poetry", "pipenv", "conda", "mamba",
)

# language -> candidate binaries, first hit wins
LANGUAGES: dict[str, tuple[str, ...]] = {
    "python": ("python3", "python"),
    "node": ("node",),
    "deno": ("deno",),
    "go": ("go",),
    "java": ("java",),
    "ruby": ("ruby",),
    "php": ("php",),
    "rust": ("rustc",),
    "kotlin": ("kotlinc",),
    "scala": ("scala",),
    "swift": ("swift",),
    "dart": ("dart",),
    "dotnet": ("dotnet",),
    "perl": ("perl",),
    "lua": ("lua",),
    "r": ("Rscript", "R"),
    "julia": ("julia",),
    "elixir": ("elixir",),
    "erlang": ("erl",),
    "haskell": ("ghc",),
    "clojure": ("clojure",),
    "nim": ("nim",),
    "zig": ("zig",),
    "ocaml": ("ocaml",),
}

VERSION_ARGS: dict[str, tuple[str, ...]] = {
    "go": ("version",),
    "zig": ("version",),
    "java": ("-version",),
    "erlang": ("-noshell", "-eval", "io:format(\"~s~n\", [erlang:system_info(otp_release)]), halt()."),
    "haskell": ("--numeric-version",),
}

DEV_TOOLS: dict[str, str] = {
    "git": "Version control system",
    "svn": "Subversion version control",
    "hg": "Mercurial version control",
    "make": "Build automation tool",
    "cmake": "Cross-platform build system",
    "ninja": "Small build system",
    "bazel": "Multi-language build system",
    "gradle": "Build automation tool for Java",
    "mvn": "Build automation tool for Java",
    "ansible": "Configuration management tool",
    "terraform": "Infrastructure as code tool",
    "vagrant": "Development environment manager",
    "tmux": "Terminal multiplexer",
    "screen": "Terminal multiplexer",
    "vim": "Text editor",
    "nvim": "Neovim text editor",
    "emacs": "Text editor",
    "nano": "Text editor",
    "code": "Visual Studio Code",
    "subl": "Sublime Text",
    "gh": "GitHub command line client",
    "jq": "JSON processor",
    "yq": "YAML processor",
    "fzf": "Fuzzy finder",
    "rg": "ripgrep recursive search",
    "fd": "Fast file finder",
    "bat": "cat with syntax highlighting",
    "direnv": "Per-directory environment loader",
}

SYSTEM_COMMANDS = (
    "ls", "pwd", "mkdir", "rmdir", "rm", "cp", "mv", "ln", "touch", "stat",
    "find", "grep", "egrep", "awk", "sed", "sort", "uniq", "cut", "tr", "wc", "xargs",
    "head", "tail", "cat", "tac", "less", "more", "file", "which", "whereis", "locate",
    "ps", "top", "htop", "btop", "kill", "killall", "pkill", "pgrep", "nice", "nohup",
    "df", "du", "mount", "umount", "lsblk", "fdisk", "free", "vmstat", "iostat",
    "tar", "gzip", "gunzip", "bzip2", "xz", "zstd", "zip", "unzip", "7z",
    "chmod", "chown", "chgrp", "id", "whoami", "groups", "sudo", "su",
    "date", "cal", "uptime", "uname", "hostname", "who", "w", "last",
    "env", "printenv", "echo", "printf", "test", "true", "false", "tee", "watch",
    "crontab", "systemctl", "journalctl", "launchctl", "service",
    "diff", "patch", "md5sum", "sha256sum", "shasum", "base64", "openssl",
    "lsof", "strace", "dtruss", "ltrace", "time", "timeout",
)

CONTAINER_TOOLS = (
    "docker", "podman", "buildah", "skopeo", "nerdctl",
    "kubectl", "helm", "minikube", "kind", "k3s", "k9s", "kustomize",
    "docker-compose", "docker-machine", "colima", "lima",
    "containerd", "ctr", "crictl", "runc",
)

CLOUD_TOOLS = (
    "aws", "az", "gcloud", "gsutil", "bq",
    "doctl", "linode-cli", "vultr-cli", "hcloud", "flyctl", "vercel", "netlify",
    "heroku", "cf", "oc", "ibmcloud",
    "sam", "serverless", "pulumi", "cdk", "eksctl", "wrangler",
)

DATABASE_TOOLS = (
    "mysql", "mariadb", "psql", "pg_dump", "sqlite3", "duckdb",
    "mongo", "mongosh", "mongodump", "redis-cli", "valkey-cli",
    "influx", "cqlsh", "snowsql", "clickhouse-client",
    "sqlplus", "isql", "bcp", "sqlcmd",
)

NETWORK_TOOLS = (
    "curl", "wget", "httpie", "http", "xh",
    "nc", "netcat", "ncat", "nmap", "tcpdump", "socat",
    "wireshark", "tshark", "dig", "nslookup", "host", "whois",
    "telnet", "ssh", "scp", "sftp", "rsync",
    "iperf", "iperf3", "mtr", "traceroute", "ping", "ip", "ifconfig",
    "netstat", "ss", "iptables", "nft", "ufw", "firewall-cmd",
)

# Only these environment variables ever reach the snapshot.
RELEVANT_ENV = (
    "USER", "HOME", "SHELL", "TERM", "LANG", "LC_ALL",
    "EDITOR", "VISUAL", "PAGER", "BROWSER",
    "GOPATH", "GOROOT", "JAVA_HOME", "PYTHONPATH", "NODE_PATH",
    "VIRTUAL_ENV", "CONDA_DEFAULT_ENV",
    "DOCKER_HOST", "KUBECONFIG", "AWS_PROFILE", "AZURE_SUBSCRIPTION_ID",
)

Lookup = Callable[[str], str | None]
Runner = Callable[[Sequence[str]], str]


def os_tag() -> str:
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform.startswith("freebsd"):
        return "freebsd"
    return sys.platform


def current_shell(environ: Mapping[str, str] | None = None) -> str:
    environ = os.environ if environ is None else environ
    shell = environ.get("SHELL", "")
    if shell:
        return Path(shell).name
    return "cmd" if os_tag() == "windows" else "bash"


def shell_executable(environ: Mapping[str, str] | None = None) -> str:
    environ = os.environ if environ is None else environ
    return environ.get("SHELL") or ("cmd" if os_tag() == "windows" else "/bin/bash")


def relevant_environment(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    environ = os.environ if environ is None else environ
    selected = {name: environ[name] for name in RELEVANT_ENV if environ.get(name)}
    if environ.get("PATH"):
        selected["PATH"] = "set"
    return selected


def first_output_line(command: Sequence[str]) -> str:
    """Run ``command`` and return the first non-empty output line."""
    completed = subprocess.run(
        list(command),
        capture_output=True,
        text=True,
        timeout=PROBE_TIMEOUT_SECONDS,
        check=True,
        stdin=subprocess.DEVNULL,
    )
    for line in (completed.stdout + "\n" + completed.stderr).splitlines():
        if line.strip():
            return line.strip()
    return ""


def probe_version(command: Sequence[str], runner: Runner = first_output_line) -> str:
    try:
        line = runner(command)
    except (OSError, subprocess.SubprocessError, ValueError):
        return "unknown"
    return line or "unknown"


class SystemProber:
    """Builds SystemContext snapshots; ``lookup`` and ``runner`` are swappable for tests."""

    def __init__(
        self,
        lookup: Lookup = shutil.which,
        runner: Runner = first_output_line,
        custom_tools: Mapping[str, Sequence[str]] | None = None,
        probe_versions: bool = True,
    ) -> None:
        self.lookup = lookup
        self.runner = runner
        self.custom_tools = dict(custom_tools or {})
        self.probe_versions = probe_versions

    def _present(self, candidates: Sequence[str]) -> tuple[str, ...]:
        return tuple(name for name in candidates if self.lookup(name))

    def _languages(self) -> tuple[LanguageRuntime, ...]:
        runtimes: list[LanguageRuntime] = []
        for language, binaries in LANGUAGES.items():
            for binary in binaries:
                path = self.lookup(binary)
                if not path:
                    continue
                version = "unknown"
                if self.probe_versions:
                    args = VERSION_ARGS.get(language, ("--version",))
                    version = probe_version([path, *args], self.runner)
                runtimes.append(LanguageRuntime(name=language, version=version, path=path))
                break
        return tuple(runtimes)

    def _dev_tools(self) -> tuple[DevTool, ...]:
        tools: list[DevTool] = []
        for name, description in DEV_TOOLS.items():
            path = self.lookup(name)
            if not path:
                continue
            version = probe_version([path, "--version"], self.runner) if self.probe_versions else "unknown"
            tools.append(DevTool(name=name, version=version, path=path, description=description))
        return tuple(tools)

    def inventory(self) -> ToolInventory:
        inventory = ToolInventory(
            package_managers=self._present(PACKAGE_MANAGERS),
            languages=self._languages(),
            development_tools=self._dev_tools(),
            system_commands=self._present(SYSTEM_COMMANDS),
            container_tools=self._present(CONTAINER_TOOLS),
            cloud_tools=self._present(CLOUD_TOOLS),
            database_tools=self._present(DATABASE_TOOLS),
            network_tools=self._present(NETWORK_TOOLS),
        )
        if self.custom_tools:
            inventory = merge_custom_tools(inventory, self.custom_tools, self.lookup)
        return inventory

    def build(self) -> SystemContext:
        logger = get_runtime_logger()
        try:
            user = getpass.getuser()
        except (KeyError, OSError):
            user = os.environ.get("USER", "")
        try:
            cwd = os.getcwd()
        except OSError:
            cwd = "."
        tools = self.inventory()
        context = SystemContext(
            os=os_tag(),
            shell=current_shell(),
            architecture=platform.machine().lower() or "unknown",
            user=user,
            home_directory=str(Path.home()),
            working_directory=cwd,
            tools=tools,
            environment=relevant_environment(),
        )
        logger.debug(
            "context.probed",
            os=context.os,
            shell=context.shell,
            tools=len(tools.available),
        )
        return context
