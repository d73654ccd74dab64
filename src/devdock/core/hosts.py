"""OS hosts file editing confined to a marker-delimited managed section."""

from __future__ import annotations

import asyncio
import os
import re
import socket
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

import httpx
import structlog

from devdock.core.executor import CommandExecutor
from devdock.db.projects import ProjectStore
from devdock.errors import (
    DevdockError,
    InvalidCredentialsError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from devdock.models.project import ProjectRecord, ProjectStatus

logger = structlog.get_logger(__name__)

BEGIN_MARKER = "# devdock - managed domains"
END_MARKER = "# end devdock"
DOMAIN_PATTERN = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
MAX_DOMAIN_LENGTH = 253
SUGGESTION_LIMIT = 10
GENERIC_SUGGESTIONS = ("myapp.test", "laravel.test", "app.test", "local.test", "dev.test")

type WriteMethod = Literal["direct", "sudo", "sudo_password"]


def validate_domain(domain: str) -> str:
    if not domain or len(domain) > MAX_DOMAIN_LENGTH or not DOMAIN_PATTERN.fullmatch(domain):
        msg = "Invalid domain format"
        raise ValidationError(msg, domain=domain)
    return domain


@dataclass(frozen=True, slots=True)
class HostEntry:
    ip: str
    domain: str
    comment: str = ""

    def line(self) -> str:
        return f"{self.ip}\t{self.domain}" + (f"\t# {self.comment}" if self.comment else "")


def parse_entry(line: str) -> HostEntry | None:
    body, _, comment = line.strip().partition("#")
    parts = body.split()
    if len(parts) < 2:
        return None
    return HostEntry(ip=parts[0], domain=parts[1], comment=comment.strip())


class HostsFile:
    """Immutable view over hosts file text.

    Only lines between `BEGIN_MARKER` and `END_MARKER` are ever changed; every
    other line is carried through byte for byte.
    """

    def __init__(self, lines: list[str], *, trailing_newline: bool = True) -> None:
        self._lines = tuple(lines)
        self._trailing_newline = trailing_newline

    @classmethod
    def parse(cls, text: str) -> HostsFile:
        return cls(text.splitlines(), trailing_newline=text.endswith("\n") or not text)

    @property
    def lines(self) -> tuple[str, ...]:
        return self._lines

    def render(self) -> str:
        text = "\n".join(self._lines)
        return text + "\n" if self._trailing_newline and self._lines else text

    def managed_entries(self) -> list[HostEntry]:
        section = self._section()
        if section is None:
            return []
        begin, end = section
        return [
            entry
            for entry in (parse_entry(line) for line in self._lines[begin + 1 : end])
            if entry is not None
        ]

    def is_managed(self, domain: str) -> bool:
        return any(entry.domain == domain for entry in self.managed_entries())

    def contains(self, domain: str, *, unmanaged_only: bool = False) -> bool:
        section = self._section()
        for index, line in enumerate(self._lines):
            if unmanaged_only and section is not None and section[0] < index < section[1]:
                continue
            body = line.strip().partition("#")[0].split()
            if len(body) >= 2 and domain in body[1:]:
                return True
        return False

    def add(self, entry: HostEntry) -> HostsFile:
        """Insert or replace the managed entry for `entry.domain`."""
        without = self.remove(entry.domain)
        lines = list(without._lines)
        section = without._section()
        if section is None:
            if lines and lines[-1].strip():
                lines.append("")
            lines.extend([BEGIN_MARKER, entry.line(), END_MARKER])
        else:
            lines.insert(section[1], entry.line())
        return HostsFile(lines, trailing_newline=True)

    def remove(self, domain: str) -> HostsFile:
        section = self._section()
        if section is None:
            return self
        begin, end = section
        kept = [
            line
            for index, line in enumerate(self._lines)
            if not (begin < index < end and _entry_domain(line) == domain)
        ]
        return HostsFile(kept, trailing_newline=self._trailing_newline)

    def _section(self) -> tuple[int, int] | None:
        begin = next(
            (i for i, line in enumerate(self._lines) if line.strip() == BEGIN_MARKER), None
        )
        if begin is None:
            return None
        end = next(
            (i for i in range(begin + 1, len(self._lines)) if self._lines[i].strip() == END_MARKER),
            len(self._lines),
        )
        return begin, end


def _entry_domain(line: str) -> str | None:
    entry = parse_entry(line)
    return entry.domain if entry else None


def manual_instructions(platform: str, staged: Path, hosts_file: Path) -> dict[str, Any]:
    if platform == "win32":
        return {
            "title": "Administrator Access Required",
            "steps": [
                "Open Command Prompt as Administrator",
                f'Copy the generated hosts file: copy "{staged}" "{hosts_file}"',
                "Or manually edit the hosts file and add the domain entries",
            ],
            "note": "Administrator privileges are needed to modify the hosts file on Windows.",
            "command": f'copy "{staged}" "{hosts_file}"',
        }
    return {
        "title": "Sudo Access Required",
        "steps": [
            "Open a terminal",
            f'Run: sudo cp "{staged}" "{hosts_file}"',
            "Enter your password when prompted",
            f"Or manually edit {hosts_file} and add the domain entries",
        ],
        "note": "sudo privileges are needed to modify the hosts file on macOS and Linux.",
        "command": f'sudo cp "{staged}" "{hosts_file}"',
    }


def domain_suggestions(project_name: str | None, existing: set[str]) -> list[str]:
    suggestions: list[str] = []
    if project_name:
        clean = re.sub(r"[^a-z0-9]", "", project_name.lower())
        if clean:
            suggestions.extend(
                [
                    f"{clean}.test",
                    f"{clean}.local",
                    f"{clean}.dev",
                    f"app.{clean}.test",
                    f"api.{clean}.test",
                    f"admin.{clean}.test",
                ]
            )
    suggestions.extend(GENERIC_SUGGESTIONS)
    unique = list(dict.fromkeys(suggestions))
    return [domain for domain in unique if domain not in existing][:SUGGESTION_LIMIT]


class HostsManager:
    """Read and write the OS hosts file, escalating through sudo when needed."""

    def __init__(
        self,
        hosts_file: Path,
        store: ProjectStore,
        executor: CommandExecutor,
        *,
        staging_dir: Path,
        platform: str = sys.platform,
        timeout: float = 5.0,
    ) -> None:
        self.hosts_file = hosts_file
        self._store = store
        self._executor = executor
        self._staging_dir = staging_dir
        self._platform = platform
        self._timeout = timeout
        self._lock = asyncio.Lock()

    def read(self) -> HostsFile:
        try:
            return HostsFile.parse(self.hosts_file.read_text(encoding="utf-8"))
        except OSError as exc:
            msg = f"Cannot read hosts file: {exc}"
            raise DevdockError(msg) from exc

    def can_write(self) -> bool:
        return os.access(self.hosts_file, os.W_OK)

    async def list(self) -> dict[str, Any]:
        projects = {p.custom_domain: p for p in await self._store.list() if p.custom_domain}
        domains = []
        for entry in self.read().managed_entries():
            project = projects.get(entry.domain)
            domains.append(
                {
                    "ip": entry.ip,
                    "domain": entry.domain,
                    "comment": entry.comment,
                    "managed": True,
                    **_project_link(entry.domain, project),
                }
            )
        return {
            "domains": domains,
            "hosts_file": str(self.hosts_file),
            "managed_count": len(domains),
            "can_write": self.can_write(),
        }

    async def add(
        self,
        domain: str,
        *,
        ip: str = "127.0.0.1",
        comment: str = "",
        project_id: str | None = None,
        admin_password: str | None = None,
    ) -> dict[str, Any]:
        validate_domain(domain)
        if project_id is not None and await self._store.get(project_id) is None:
            msg = f"Project not found: {project_id}"
            raise NotFoundError(msg)

        entry = HostEntry(ip=ip, domain=domain, comment=comment)
        async with self._lock:
            hosts = self.read()
            if hosts.contains(domain, unmanaged_only=True):
                msg = "Domain is already in use"
                raise ValidationError(msg, domain=domain)
            method = await self._write(hosts.add(entry).render(), admin_password, entry=entry)

        if project_id is not None:
            await self._store.update(project_id, lambda record: setattr(record, "custom_domain", domain))
        flushed = await self.flush_dns()
        logger.info("domain_added", domain=domain, method=method)
        return {
            "domain": domain,
            "ip": ip,
            "comment": comment,
            "project_id": project_id,
            "method": method,
            "dns_flushed": flushed,
        }

    async def remove(self, domain: str, *, admin_password: str | None = None) -> dict[str, Any]:
        async with self._lock:
            hosts = self.read()
            if not hosts.is_managed(domain):
                msg = f"Domain not managed: {domain}"
                raise NotFoundError(msg)
            method = await self._write(hosts.remove(domain).render(), admin_password)

        async with self._store.transaction() as records:
            for record in records:
                if record.custom_domain == domain:
                    record.custom_domain = None
        flushed = await self.flush_dns()
        logger.info("domain_removed", domain=domain, method=method)
        return {"domain": domain, "method": method, "dns_flushed": flushed}

    def suggestions(self, project_name: str | None = None) -> list[str]:
        existing = {entry.domain for entry in self.read().managed_entries()}
        return domain_suggestions(project_name, existing)

    def info(self) -> dict[str, Any]:
        hosts = self.read()
        return {
            "hosts_file": str(self.hosts_file),
            "total_lines": len(hosts.lines),
            "managed_domains": len(hosts.managed_entries()),
            "can_write": self.can_write(),
            "platform": self._platform,
            "requires_sudo": self._platform != "win32" and not self.can_write(),
        }

    async def test(self, domain: str, *, port: int = 80) -> dict[str, Any]:
        """Resolve `domain` through the system resolver and probe it over HTTP."""
        validate_domain(domain)
        resolved_ip = None
        try:
            infos = await asyncio.get_running_loop().getaddrinfo(domain, None, family=socket.AF_INET)
            resolved_ip = infos[0][4][0] if infos else None
        except OSError:
            logger.debug("domain_not_resolved", domain=domain)

        url = f"http://{domain}" + (f":{port}" if port != 80 else "")
        http_status = None
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                http_status = (await client.get(url)).status_code
        except httpx.HTTPError as exc:
            logger.debug("domain_http_unreachable", domain=domain, error=str(exc))

        return {
            "domain": domain,
            "port": port,
            "dns_resolved": resolved_ip is not None and resolved_ip.startswith("127."),
            "resolved_ip": resolved_ip,
            "http_accessible": http_status is not None and 200 <= http_status < 400,
            "http_status": http_status,
            "test_url": url,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    async def flush_dns(self) -> bool:
        if self._platform == "darwin":
            commands = [["dscacheutil", "-flushcache"], ["sudo", "-n", "killall", "-HUP", "mDNSResponder"]]
        elif self._platform == "win32":
            commands = [["ipconfig", "/flushdns"]]
        else:
            commands = [["sudo", "-n", "systemctl", "restart", "systemd-resolved"]]
        for args in commands:
            result = await self._executor.run(args, timeout=self._timeout)
            if not result.success:
                logger.warning("dns_flush_failed", command=result.command, error=result.error_text())
                return False
        return True

    async def _write(
        self, content: str, admin_password: str | None, *, entry: HostEntry | None = None
    ) -> WriteMethod:
        if self.can_write():
            await asyncio.to_thread(self.hosts_file.write_text, content, encoding="utf-8")
            return "direct"

        staged = self._staging_dir / "hosts.staged"
        staged.parent.mkdir(parents=True, exist_ok=True)
        staged.write_text(content, encoding="utf-8")

        if self._platform != "win32":
            if admin_password is not None:
                result = await self._executor.run(
                    ["sudo", "-S", "-p", "", "cp", str(staged), str(self.hosts_file)],
                    input_text=admin_password + "\n",
                    timeout=self._timeout,
                )
                if result.success:
                    staged.unlink(missing_ok=True)
                    return "sudo_password"
                # Only a non-zero exit from sudo itself means the password was rejected.
                if result.failure == "exit":
                    msg = "Invalid administrator password"
                    raise InvalidCredentialsError(msg, password_error=True)
                logger.warning(
                    "hosts_sudo_unavailable", failure=result.failure, error=result.error_text()
                )
            else:
                result = await self._executor.run(
                    ["sudo", "-n", "cp", str(staged), str(self.hosts_file)], timeout=self._timeout
                )
                if result.success:
                    staged.unlink(missing_ok=True)
                    return "sudo"

        logger.warning("hosts_write_requires_manual_step", staged=str(staged))
        msg = "Administrator privileges required"
        raise PermissionDeniedError(
            msg,
            requires_manual=True,
            instructions=manual_instructions(self._platform, staged, self.hosts_file),
            staged_file=str(staged),
            domain_entry=entry.line() if entry else None,
        )


def _project_link(domain: str, project: ProjectRecord | None) -> dict[str, Any]:
    if project is None:
        return {"project_id": None, "project_name": None, "port": None, "active": False, "url": f"http://{domain}"}
    port = project.ports.get("app")
    suffix = f":{port}" if port and port != 80 else ""
    return {
        "project_id": project.id,
        "project_name": project.name,
        "port": port,
        "active": project.status is ProjectStatus.RUNNING,
        "url": f"http://{domain}{suffix}",
    }
