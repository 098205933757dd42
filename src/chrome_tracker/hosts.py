"""System-level blocking through a managed region of the hosts file."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Callable, Iterable, NamedTuple, Optional, Protocol, Sequence

from .config import TrackerSettings
from .normalization import is_valid_hostname, normalize_domain, normalize_domains

logger = logging.getLogger(__name__)

BLOCK_ADDRESS = "0.0.0.0"

PasswordPrompt = Callable[[str, str], Optional[str]]


class HostsResult(NamedTuple):
    success: bool
    message: str


def build_host_entries(patterns: Iterable[str]) -> list[str]:
    """Expand blocklist patterns into the sorted literal hostnames to block.

    Wildcards are approximated by their bare suffix, and every host is paired
    with its ``www.`` variant.
    """
    entries: set[str] = set()
    for pattern in normalize_domains(patterns):
        host = pattern[2:] if pattern.startswith("*.") else pattern
        host = normalize_domain(host)
        if not is_valid_hostname(host):
            continue
        entries.add(host)
        if not host.startswith("www."):
            entries.add(f"www.{host}")
    return sorted(entries)


def build_hosts_fragment(hosts: Sequence[str], marker_start: str, marker_end: str) -> str:
    if not hosts:
        return ""
    lines = [marker_start, *(f"{BLOCK_ADDRESS} {host}" for host in hosts), marker_end]
    return "\n".join(lines) + "\n"


def merge_hosts_fragment(text: str, fragment: str, marker_start: str, marker_end: str) -> str:
    """Replace the managed region of ``text`` with ``fragment``.

    An empty fragment removes the region. Merging is idempotent.
    """
    kept: list[str] = []
    skipping = False
    for line in text.splitlines():
        stripped = line.strip()
        if stripped == marker_start:
            skipping = True
            continue
        if stripped == marker_end:
            skipping = False
            continue
        if not skipping:
            kept.append(line)

    while kept and not kept[-1].strip():
        kept.pop()

    body = "\n".join(kept)
    if not fragment:
        return f"{body}\n" if body else ""
    if not body:
        return fragment
    return f"{body}\n\n{fragment}"


def build_privileged_script(
    staged_path: Path,
    hosts_path: str,
    dns_flush_commands: Iterable[Sequence[str]],
) -> str:
    target = shlex.quote(hosts_path)
    swap = shlex.quote(f"{hosts_path}.chrometracker.tmp")
    lines = [
        "#!/bin/bash",
        "set -euo pipefail",
        f"cp {shlex.quote(str(staged_path))} {swap}",
        f"chmod 644 {swap}",
        f"mv -f {swap} {target}",
    ]
    for command in dns_flush_commands:
        lines.append(f"{shlex.join(command)} || true")
    return "\n".join(lines) + "\n"


class HostsEditor(Protocol):
    def authorize(self) -> HostsResult: ...

    def apply(self, text: str) -> HostsResult: ...


class DisabledHostsEditor:
    """Editor used when system-level blocking is switched off."""

    message = "System-level blocking is disabled."

    def authorize(self) -> HostsResult:
        return HostsResult(False, self.message)

    def apply(self, text: str) -> HostsResult:
        return HostsResult(False, self.message)


class SudoHostsEditor:
    """Rewrites the hosts file through ``sudo`` with a cached administrator password."""

    max_attempts = 3

    def __init__(
        self,
        settings: TrackerSettings,
        password_prompt: PasswordPrompt,
        *,
        sudo_path: str = "/usr/bin/sudo",
        timeout: float = 60.0,
    ) -> None:
        self._settings = settings
        self._prompt = password_prompt
        self._sudo_path = sudo_path
        self._timeout = timeout
        self._cached_password: Optional[str] = None

    def authorize(
        self,
        title: str = "Administrator Authentication",
        message: str = "Enter your administrator password to apply system-level blocking.",
    ) -> HostsResult:
        prompt_message = message
        for _ in range(self.max_attempts):
            password = self._prompt(title, prompt_message)
            if password is None:
                return HostsResult(False, "User canceled administrator authentication.")
            if not password:
                prompt_message = "The password is empty. Please enter it again."
                continue
            verify = self._run_sudo(["-v"], password)
            if verify.success:
                self._cached_password = password
                return HostsResult(True, "Administrator authentication completed.")
            prompt_message = "Password is incorrect. Please try again."
        return HostsResult(False, "Administrator authentication failed.")

    def apply(self, text: str) -> HostsResult:
        with tempfile.TemporaryDirectory(prefix="chrometracker-") as workdir:
            staged = Path(workdir) / "hosts"
            script = Path(workdir) / "apply-hosts.sh"
            try:
                staged.write_text(text, encoding="utf-8")
                script.write_text(
                    build_privileged_script(
                        staged, self._settings.hosts_path, self._settings.dns_flush_commands
                    ),
                    encoding="utf-8",
                )
                os.chmod(script, 0o700)
            except OSError as exc:
                return HostsResult(False, f"Failed to create temporary script: {exc}")
            return self._run_privileged(["/bin/bash", str(script)])

    def _run_privileged(self, arguments: list[str]) -> HostsResult:
        first = self._run_sudo(arguments, self._cached_password)
        if first.success:
            return first
        logger.info("Privileged hosts edit failed (%s); asking for authentication again.", first.message)

        reauth = self.authorize(
            title="Refresh Administrator Authentication",
            message="Administrator authentication expired or failed. Please re-enter your password.",
        )
        if not reauth.success:
            return reauth
        return self._run_sudo(arguments, self._cached_password)

    def _run_sudo(self, arguments: list[str], password: Optional[str]) -> HostsResult:
        if password is None:
            command = [self._sudo_path, "-n", *arguments]
            stdin = None
        else:
            command = [self._sudo_path, "-S", "-p", "", *arguments]
            stdin = password + "\n"
        try:
            completed = subprocess.run(
                command,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            return HostsResult(False, f"sudo execution failed: {exc}")

        if completed.returncode == 0:
            return HostsResult(True, "ok")
        message = completed.stderr.strip()
        return HostsResult(False, message or f"sudo failed (status: {completed.returncode})")


class SystemHostsBlocker:
    """Mirrors the blocklist into the hosts file."""

    def __init__(self, settings: TrackerSettings, editor: HostsEditor) -> None:
        self._settings = settings
        self._editor = editor
        self._apply_lock = threading.Lock()
        self.last_result: Optional[HostsResult] = None

    def authorize(self) -> HostsResult:
        return self._editor.authorize()

    def render(self, patterns: Iterable[str], current: str) -> tuple[list[str], str]:
        hosts = build_host_entries(patterns)
        fragment = build_hosts_fragment(
            hosts, self._settings.marker_start, self._settings.marker_end
        )
        merged = merge_hosts_fragment(
            current, fragment, self._settings.marker_start, self._settings.marker_end
        )
        return hosts, merged

    def apply_blocked_domains(self, patterns: Iterable[str]) -> HostsResult:
        hosts_path = Path(self._settings.hosts_path)
        try:
            current = hosts_path.read_text(encoding="utf-8")
        except OSError as exc:
            return self._record(HostsResult(False, f"Cannot read {hosts_path}: {exc}"))

        hosts, updated = self.render(patterns, current)
        if updated == current:
            logger.debug("Hosts file already up to date.")
        else:
            result = self._editor.apply(updated)
            if not result.success:
                logger.warning("System-level blocking failed: %s", result.message)
                return self._record(result)

        if not hosts:
            return self._record(HostsResult(True, "System blocking removed"))
        return self._record(
            HostsResult(True, f"Applied system-level block for {len(hosts)} entries")
        )

    def apply_async(
        self,
        patterns: Iterable[str],
        on_done: Optional[Callable[[HostsResult], None]] = None,
    ) -> threading.Thread:
        """Apply in a background thread; the result goes to ``on_done``."""
        snapshot = list(patterns)

        def _worker() -> None:
            with self._apply_lock:
                result = self.apply_blocked_domains(snapshot)
            if on_done is not None:
                on_done(result)

        thread = threading.Thread(target=_worker, name="hosts-apply", daemon=True)
        thread.start()
        return thread

    def _record(self, result: HostsResult) -> HostsResult:
        self.last_result = result
        return result
