"""
Host facade — the machine a task provisions.

Wraps the adapter registry with the handful of verbs provisioning
needs: run a command, query and drive systemd units, install
packages, look up users and groups. Every verb is a command line
dispatched through the registry, so a MockAdapter sees (and can
fail) exactly what would have run.

File edits and downloads go through the host too. In mock mode
(``--mock``) they are logged and skipped.
"""

from __future__ import annotations

import logging
import os
import platform
import shlex
import shutil
import urllib.error
import urllib.request
from pathlib import Path

from hostprep.adapters.registry import AdapterRegistry
from hostprep.adapters.shell.command import ShellCommandAdapter
from hostprep.core.errors import CommandError
from hostprep.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class Host:
    """Local host, as seen through an adapter registry.

    Args:
        registry: Dispatcher for command actions.
        system: ``platform.system()`` value (``Linux``, ``Darwin``).
        euid: Effective uid. Both are injectable for tests.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        *,
        system: str | None = None,
        euid: int | None = None,
    ):
        self._registry = registry
        self.system = system if system is not None else platform.system()
        self.euid = euid if euid is not None else os.geteuid()

    @classmethod
    def local(cls, mock: bool = False) -> Host:
        registry = AdapterRegistry(mock_mode=mock)
        registry.register(ShellCommandAdapter())
        return cls(registry)

    @property
    def registry(self) -> AdapterRegistry:
        return self._registry

    @property
    def is_root(self) -> bool:
        return self.euid == 0

    @property
    def is_darwin(self) -> bool:
        return self.system == "Darwin"

    # ── Commands ────────────────────────────────────────────────

    def run(
        self,
        command: str,
        *,
        check: bool = True,
        timeout: int = 600,
        input: str | None = None,
        cwd: Path | None = None,
    ) -> Receipt:
        """Run a command line.

        Raises:
            CommandError: if ``check`` and the command failed.
        """
        params: dict = {"command": command, "timeout": timeout}
        if input is not None:
            params["input"] = input
        if cwd is not None:
            params["cwd"] = str(cwd)

        receipt = self._registry.execute_action(Action(id=command, params=params))
        if receipt.failed:
            logger.debug("Command failed: %s → %s", command, receipt.error)
            if check:
                raise CommandError(command, receipt.return_code, receipt.error or "")
        return receipt

    def succeeds(self, command: str) -> bool:
        """Run a probe command; True when it exits 0."""
        return self.run(command, check=False).ok

    def output(self, command: str) -> str:
        """Stdout of a probe command, empty on failure."""
        receipt = self.run(command, check=False)
        return receipt.output if receipt.ok else ""

    def command_exists(self, name: str) -> bool:
        return self.succeeds(f"command -v {shlex.quote(name)} >/dev/null 2>&1")

    # ── systemd ─────────────────────────────────────────────────

    def service_active(self, unit: str) -> bool:
        return self.succeeds(f"systemctl is-active --quiet {shlex.quote(unit)}")

    def systemctl(self, verb: str, *units: str, check: bool = True) -> Receipt:
        args = " ".join(shlex.quote(u) for u in units)
        return self.run(f"systemctl {verb} {args}".rstrip(), check=check)

    # ── Packages ────────────────────────────────────────────────

    def yum(self, *args: str, check: bool = True) -> Receipt:
        """``yum`` with arguments passed through verbatim.

        Arguments are not quoted: package globs like ``php*`` are
        meant for yum, so callers quote them themselves when needed.
        """
        return self.run("yum " + " ".join(args), check=check)

    # ── Accounts ────────────────────────────────────────────────

    def user_exists(self, name: str) -> bool:
        return self.succeeds(f"id {shlex.quote(name)} >/dev/null 2>&1")

    def group_exists(self, name: str) -> bool:
        return self.succeeds(f"getent group {shlex.quote(name)} >/dev/null 2>&1")

    # ── Files ───────────────────────────────────────────────────
    # In mock mode these only log, so a rehearsal never edits the box.

    @property
    def simulated(self) -> bool:
        return self._registry.mock_mode

    def write_text(
        self,
        path: Path,
        content: str,
        *,
        append: bool = False,
        mode: int | None = None,
    ) -> None:
        if self.simulated:
            logger.info("[mock] write %s (%d bytes)", path, len(content))
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a" if append else "w", encoding="utf-8") as f:
            f.write(content)
        if mode is not None:
            path.chmod(mode)

    def make_dirs(self, path: Path) -> None:
        if self.simulated:
            logger.info("[mock] mkdir -p %s", path)
            return
        path.mkdir(parents=True, exist_ok=True)

    def remove(self, path: Path) -> bool:
        """``rm -rf`` for one path. False if there was nothing to remove."""
        if not path.exists() and not path.is_symlink():
            return False
        if self.simulated:
            logger.info("[mock] rm -rf %s", path)
            return True
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True

    def move(self, source: Path, dest: Path) -> None:
        if self.simulated:
            logger.info("[mock] mv %s %s", source, dest)
            return
        source.rename(dest)

    # ── Network ─────────────────────────────────────────────────

    def url_reachable(self, url: str, timeout: int = 10) -> bool:
        """HEAD the URL; any HTTP answer counts as reachable."""
        if self.simulated:
            return True
        req = urllib.request.Request(url, method="HEAD", headers={"User-Agent": "hostprep"})
        try:
            with urllib.request.urlopen(req, timeout=timeout):
                return True
        except urllib.error.HTTPError:
            return True
        except (urllib.error.URLError, OSError) as e:
            logger.debug("URL %s unreachable: %s", url, e)
            return False

    def download(self, url: str, dest: Path, timeout: int = 60) -> None:
        """Stream ``url`` into ``dest``. Raises OSError on failure."""
        if self.simulated:
            logger.info("[mock] download %s → %s", url, dest)
            return
        req = urllib.request.Request(url, headers={"User-Agent": "hostprep"})
        tmp = dest.with_name(dest.name + ".part")
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp, tmp.open("wb") as f:
                shutil.copyfileobj(resp, f, length=1024 * 1024)
            tmp.replace(dest)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

    def __repr__(self) -> str:
        mode = " mock" if self.simulated else ""
        return f"<Host {self.system} euid={self.euid}{mode}>"
