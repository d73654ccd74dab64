"""Host tool availability report with per-platform install hints."""

from __future__ import annotations

import asyncio
import os
import platform
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog

from devdock.core.executor import CommandExecutor
from devdock.core.ports import HostPortProbe
from devdock.errors import ValidationError

logger = structlog.get_logger(__name__)

VERSION_TIMEOUT = 5.0

INSTALL_METHODS: dict[str, dict[str, dict[str, str]]] = {
    "node": {
        "darwin": {
            "homebrew": "brew install node",
            "download": "Download from https://nodejs.org/",
        },
        "linux": {
            "apt": "curl -fsSL https://deb.nodesource.com/setup_lts.x | sudo -E bash - && sudo apt-get install -y nodejs",
            "snap": "sudo snap install node --classic",
        },
        "win32": {
            "download": "Download from https://nodejs.org/",
            "winget": "winget install OpenJS.NodeJS",
        },
    },
    "docker": {
        "darwin": {
            "download": "Download Docker Desktop from https://docker.com/",
            "homebrew": "brew install --cask docker",
        },
        "linux": {
            "apt": "sudo apt-get update && sudo apt-get install docker.io",
            "script": "curl -fsSL https://get.docker.com -o get-docker.sh && sh get-docker.sh",
        },
        "win32": {
            "download": "Download Docker Desktop from https://docker.com/",
            "chocolatey": "choco install docker-desktop",
        },
    },
    "composer": {
        "darwin": {"homebrew": "brew install composer"},
        "linux": {
            "download": "curl -sS https://getcomposer.org/installer | php && sudo mv composer.phar /usr/local/bin/composer",
            "apt": "sudo apt install composer",
        },
        "win32": {
            "download": "Download from https://getcomposer.org/download/",
            "chocolatey": "choco install composer",
        },
    },
    "php": {
        "darwin": {"homebrew": "brew install php@8.3"},
        "linux": {"apt": "sudo apt install php8.3 php8.3-cli php8.3-common"},
        "win32": {"chocolatey": "choco install php"},
    },
    "git": {
        "darwin": {"xcode": "xcode-select --install", "homebrew": "brew install git"},
        "linux": {"apt": "sudo apt install git", "yum": "sudo yum install git"},
        "win32": {"download": "Download from https://git-scm.com/", "chocolatey": "choco install git"},
    },
    "make": {
        "darwin": {"xcode": "xcode-select --install", "homebrew": "brew install make"},
        "linux": {"apt": "sudo apt install build-essential"},
        "win32": {"chocolatey": "choco install make"},
    },
    "ngrok": {
        "darwin": {"homebrew": "brew install ngrok"},
        "linux": {"snap": "sudo snap install ngrok"},
        "win32": {"chocolatey": "choco install ngrok"},
    },
}

COMMON_PORTS = (
    (3000, "Node.js Application"),
    (5001, "devdock API"),
    (8000, "Laravel Application"),
    (3306, "MySQL Database"),
    (6379, "Redis Cache"),
    (5173, "Vite Development Server"),
)


@dataclass(frozen=True, slots=True)
class Dependency:
    key: str
    name: str
    category: str
    version_commands: tuple[tuple[str, ...], ...]
    required: bool = True
    expected_version: str | None = None
    description: str = ""


DEPENDENCIES = (
    Dependency(
        "docker",
        "Docker",
        "Containerization",
        (("docker", "--version"),),
        expected_version=">=24.0.0",
        description="Container platform every project runs on",
    ),
    Dependency(
        "docker_compose",
        "Docker Compose",
        "Containerization",
        (("docker", "compose", "version"), ("docker-compose", "--version")),
        expected_version=">=2.0.0",
        description="Multi-container orchestration used for start, stop and rebuild",
    ),
    Dependency(
        "composer",
        "Composer",
        "Package Manager",
        (("composer", "--version"),),
        required=False,
        expected_version=">=2.0.0",
        description="PHP dependency manager, needed to scaffold Laravel projects",
    ),
    Dependency(
        "php",
        "PHP",
        "Runtime",
        (("php", "--version"),),
        required=False,
        expected_version=">=8.2.0",
        description="PHP runtime for Laravel setup steps",
    ),
    Dependency(
        "node",
        "Node.js",
        "Runtime",
        (("node", "--version"),),
        expected_version=">=18.0.0",
        description="JavaScript runtime for Node.js projects",
    ),
    Dependency(
        "npm",
        "npm",
        "Package Manager",
        (("npm", "--version"),),
        expected_version=">=8.0.0",
        description="Node.js package manager",
    ),
    Dependency(
        "git",
        "Git",
        "Version Control",
        (("git", "--version"),),
        expected_version=">=2.0.0",
        description="Version control system",
    ),
    Dependency(
        "make",
        "Make",
        "Build Tool",
        (("make", "--version"),),
        description="Runs the generated Makefile targets",
    ),
    Dependency(
        "ngrok",
        "ngrok",
        "Network Tool",
        (("ngrok", "version"),),
        required=False,
        description="Public tunnels to local projects",
    ),
)


class DependencyChecker:
    """Probe host tools concurrently; nothing here installs anything."""

    def __init__(
        self,
        executor: CommandExecutor,
        *,
        probe: HostPortProbe | None = None,
        platform_name: str = sys.platform,
    ) -> None:
        self._executor = executor
        self._probe = probe
        self._platform = platform_name

    def install_methods(self, key: str) -> dict[str, str]:
        return INSTALL_METHODS.get(key.removesuffix("_compose"), {}).get(self._platform, {})

    async def version(self, commands: Sequence[Sequence[str]]) -> str | None:
        """First line of the first version command that succeeds."""
        for args in commands:
            if self._executor.which(args[0]) is None:
                continue
            result = await self._executor.run(list(args), timeout=VERSION_TIMEOUT)
            if result.success and result.output:
                return result.output.splitlines()[0].strip()
        return None

    async def inspect(self, dependency: Dependency) -> dict[str, Any]:
        version = await self.version(dependency.version_commands)
        report: dict[str, Any] = {
            "key": dependency.key,
            "name": dependency.name,
            "category": dependency.category,
            "required": dependency.required,
            "installed": version is not None,
            "version": version,
            "expected_version": dependency.expected_version,
            "description": dependency.description,
            "install_methods": self.install_methods(dependency.key),
            "check_command": " ".join(dependency.version_commands[0]),
        }
        if dependency.key == "docker":
            report["running"] = version is not None and await self.docker_running()
        return report

    async def docker_running(self) -> bool:
        result = await self._executor.run(["docker", "info"], timeout=VERSION_TIMEOUT)
        return result.success

    async def ports(self) -> list[dict[str, Any]]:
        if self._probe is None:
            return []
        states = await asyncio.gather(*(self._probe.in_use(port) for port, _ in COMMON_PORTS))
        return [
            {"port": port, "service": service, "in_use": state}
            for (port, service), state in zip(COMMON_PORTS, states, strict=True)
        ]

    async def check(self) -> dict[str, Any]:
        dependencies = list(await asyncio.gather(*(self.inspect(dep) for dep in DEPENDENCIES)))
        required = [dep for dep in dependencies if dep["required"]]
        required_installed = sum(1 for dep in required if dep["installed"])
        logger.info(
            "dependencies_checked",
            installed=sum(1 for dep in dependencies if dep["installed"]),
            total=len(dependencies),
        )
        return {
            "dependencies": dependencies,
            "ports": await self.ports(),
            "system": self.system_info(),
            "status": {
                "total": len(dependencies),
                "required": len(required),
                "installed": sum(1 for dep in dependencies if dep["installed"]),
                "required_installed": required_installed,
                "missing": len(required) - required_installed,
                "percentage": round(required_installed / len(required) * 100) if required else 100,
            },
            "last_checked": datetime.now(UTC).isoformat(),
        }

    def install_command(self, key: str, method: str | None = None) -> dict[str, Any]:
        """Return the shell command to run by hand; it is never executed here."""
        methods = self.install_methods(key)
        if not methods:
            msg = f"No installation method available for {key} on {self._platform}"
            raise ValidationError(msg)
        chosen = method or next(iter(methods))
        if chosen not in methods:
            msg = f"Installation method '{chosen}' not available for {key}"
            raise ValidationError(msg, available_methods=sorted(methods))
        return {
            "dependency": key,
            "method": chosen,
            "command": methods[chosen],
            "platform": self._platform,
            "note": "Please run this command in your terminal",
        }

    async def fixes(self) -> list[dict[str, Any]]:
        fixes: list[dict[str, Any]] = []
        for key, label in (("docker", "Docker"), ("node", "Node.js")):
            if self._executor.which(key) is None:
                fixes.append(
                    {
                        "issue": f"{label} not installed",
                        "priority": "high",
                        "commands": self.install_methods(key),
                    }
                )
        if self._executor.which("docker") is not None and not await self.docker_running():
            start = {
                "darwin": "Open Docker Desktop application",
                "linux": "sudo systemctl start docker",
                "win32": "Start Docker Desktop application",
            }
            fixes.append(
                {
                    "issue": "Docker daemon not running",
                    "priority": "medium",
                    "commands": {"start": start.get(self._platform, start["linux"])},
                }
            )
        return fixes

    def system_info(self) -> dict[str, Any]:
        return {
            "platform": self._platform,
            "architecture": platform.machine(),
            "python_version": platform.python_version(),
            "shell": os.environ.get("SHELL", "Unknown"),
        }
