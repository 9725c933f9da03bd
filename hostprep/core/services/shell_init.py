"""
Shell function bootstrap — ``~/.functions.d`` plus a loader block.

Every ``*.fn`` file in ``~/.functions.d`` is sourced by a small block
appended to the login shell's config files. Two functions ship with
it: ``setproxy``/``unsetproxy`` and ``reloadenv``.
"""

from __future__ import annotations

import logging
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from hostprep.core.errors import StepError
from hostprep.core.services.host import Host

logger = logging.getLogger(__name__)

FUNCTIONS_DIR_NAME = ".functions.d"
BLOCK_START = "###### fn utils v00001"
BLOCK_END = "###### fn utils end"

LOADER_BLOCK = f"""
{BLOCK_START}
# Load custom shell functions from a directory
FUNCTIONS_DIR="$HOME/.functions.d"
if [ -d "$FUNCTIONS_DIR" ]; then
    for fn_file in "$FUNCTIONS_DIR"/*.fn; do
        if [ -f "$fn_file" ]; then
            . "$fn_file"
        fi
    done
fi
{BLOCK_END}
"""

PROXY_FN = r"""__set_proxy_fn() {
    local proxy_addr=""
    if [ -z "$1" ]; then
        proxy_addr="http://127.0.0.1:10809"
    elif [[ "$1" =~ ^: ]]; then
        proxy_addr="http://127.0.0.1$1"
    elif [[ ! "$1" =~ ^https?:// ]]; then
        proxy_addr="http://$1"
    else
        proxy_addr="$1"
    fi

    export http_proxy="$proxy_addr" \
           https_proxy="$proxy_addr" \
           socks_proxy="$proxy_addr" \
           socks5_proxy="$proxy_addr" \
           HTTP_PROXY="$proxy_addr" \
           HTTPS_PROXY="$proxy_addr" \
           SOCKS_PROXY="$proxy_addr" \
           SOCKS5_PROXY="$proxy_addr"

    echo "✅ Proxy variables set to: $proxy_addr"
    echo "Use 'unsetproxy' to unset the proxy variables"
    __curl_test_addr_for_proxy "$proxy_addr"
}
__curl_test_addr_for_proxy(){
    echo -ne "Checking for availablity...\r"
    if curl -sS --connect-timeout 5 "$1" > /dev/null; then
        echo -e "✅ [Check OK] The proxy at $1 is accepting connections."
    else
        echo -e "❌ [Check Failed] The proxy at $1 is not responding."
    fi
}
__unset_proxy_fn() {
    unset http_proxy https_proxy socks_proxy socks5_proxy HTTP_PROXY HTTPS_PROXY SOCKS_PROXY SOCKS5_PROXY
    echo "❌ Proxy variables removed."
}


alias setproxy='__set_proxy_fn'
alias unsetproxy='__unset_proxy_fn'
"""

USAGE = [
    ("setproxy [address]", "Set proxy variables (default: http://127.0.0.1:10809)"),
    ("unsetproxy", "Remove proxy variables"),
    ("reloadenv", "Reload shell environment"),
]


# ── Detection ───────────────────────────────────────────────────


def detect_os(system: str) -> str:
    """Map ``platform.system()`` to ``macos`` / ``linux`` / ``unknown``."""
    if system.startswith("Darwin"):
        return "macos"
    if system.startswith("Linux"):
        return "linux"
    return "unknown"


def detect_shell() -> str:
    """zsh if installed, else bash, else sh."""
    for candidate in ("zsh", "bash"):
        if shutil.which(candidate):
            return candidate
    return "sh"


def config_files(os_name: str, shell: str, home: Path) -> list[Path]:
    if os_name == "macos":
        if shell == "zsh":
            return [home / ".zprofile"]
        return [home / ".bash_profile", home / ".profile"]
    return [home / ".bashrc", home / ".profile"]


def reloadenv_fn(os_name: str, shell: str) -> str:
    sources = [f"~/{p.name}" for p in config_files(os_name, shell, Path("~"))]
    body = "".join(f"    . {s}\n" for s in sources)
    return f"reloadenv(){{\n{body}}}\n"


# ── Edits ───────────────────────────────────────────────────────


def has_loader_block(path: Path) -> bool:
    return path.is_file() and BLOCK_START in path.read_text(encoding="utf-8")


def add_loader_block(host: Host, path: Path) -> bool:
    """Append the loader block unless present. True if the file changed."""
    if has_loader_block(path):
        logger.warning("Function block already exists in %s, skipping...", path)
        return False
    logger.info("Adding function loading block to %s", path)
    host.write_text(path, LOADER_BLOCK, append=True)
    return True


@dataclass
class ShellInitResult:
    os_name: str
    shell: str
    functions_dir: Path
    updated: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "os": self.os_name,
            "shell": self.shell,
            "functions_dir": str(self.functions_dir),
            "updated": [str(p) for p in self.updated],
            "skipped": [str(p) for p in self.skipped],
            "written": [str(p) for p in self.written],
        }


def init_shell(
    host: Host,
    *,
    home: Path | None = None,
    shell: str | None = None,
    reload: bool = True,
) -> ShellInitResult:
    """Install the function directory, loader block and bundled functions.

    Raises:
        StepError: on an unsupported operating system.
    """
    os_name = detect_os(host.system)
    logger.info("Detected operating system: %s", os_name)
    if os_name == "unknown":
        raise StepError("Unsupported operating system")

    shell = shell or detect_shell()
    logger.info("Detected shell: %s", shell)
    home = home or Path.home()

    functions_dir = home / FUNCTIONS_DIR_NAME
    host.make_dirs(functions_dir)
    result = ShellInitResult(os_name=os_name, shell=shell, functions_dir=functions_dir)

    for path in config_files(os_name, shell, home):
        if add_loader_block(host, path):
            result.updated.append(path)
        else:
            result.skipped.append(path)

    for name, content in (
        ("proxy.fn", PROXY_FN),
        ("reloadenv.fn", reloadenv_fn(os_name, shell)),
    ):
        path = functions_dir / name
        logger.info("Creating function file: %s", path)
        host.write_text(path, content, mode=0o755)
        result.written.append(path)

    if reload:
        reload_environment(host, os_name, shell, home)
    return result


def reload_environment(host: Host, os_name: str, shell: str, home: Path) -> None:
    """Source each config file in a ``shell`` subprocess. Failures are ignored."""
    logger.info("Reloading environment configuration...")
    for path in config_files(os_name, shell, home):
        if not path.is_file():
            continue
        logger.info("Sourcing %s", path)
        inner = f". {shlex.quote(str(path))}"
        host.run(f"{shell} -c {shlex.quote(inner)} 2>/dev/null", check=False)
