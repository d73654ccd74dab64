"""Slot values and optional service blocks for a project's generated files."""

from __future__ import annotations

import base64
import secrets

from devdock.core.templating import StubSlots
from devdock.models.project import AddonService, ProjectRecord


def redis_service(name: str, port: int) -> str:
    return f"""
  redis:
    image: redis:7-alpine
    container_name: {name}_redis
    ports:
      - "{port}:6379"
    volumes:
      - redis_data:/data
    networks:
      - {name}_network
    restart: unless-stopped
    command: redis-server --appendonly yes"""


def phpmyadmin_service(name: str, port: int) -> str:
    return f"""
  phpmyadmin:
    image: phpmyadmin/phpmyadmin:latest
    container_name: {name}_phpmyadmin
    environment:
      PMA_HOST: db
      PMA_PORT: 3306
      PMA_USER: root
      PMA_PASSWORD: password
    ports:
      - "{port}:80"
    depends_on:
      - db
    networks:
      - {name}_network
    restart: unless-stopped"""


def mailhog_service(name: str, port: int) -> str:
    return f"""
  mailhog:
    image: mailhog/mailhog:latest
    container_name: {name}_mailhog
    ports:
      - "{port}:8025"
    networks:
      - {name}_network
    restart: unless-stopped"""


REDIS_ENV = "REDIS_HOST=redis\nREDIS_PASSWORD=null\nREDIS_PORT=6379"


def mail_env(name: str) -> str:
    return (
        "MAIL_MAILER=smtp\n"
        "MAIL_HOST=mailhog\n"
        "MAIL_PORT=1025\n"
        "MAIL_USERNAME=null\n"
        "MAIL_PASSWORD=null\n"
        "MAIL_ENCRYPTION=null\n"
        f"MAIL_FROM_ADDRESS=hello@{name}.local\n"
        f'MAIL_FROM_NAME="{name}"'
    )


def generate_app_key() -> str:
    return "base64:" + base64.b64encode(secrets.token_bytes(32)).decode("ascii")


def services_info(record: ProjectRecord) -> str:
    ports = record.ports
    lines = [f"App: http://localhost:{ports['app']}", f"Database: localhost:{ports['db']}"]
    if "redis" in ports:
        lines.append(f"Redis: localhost:{ports['redis']}")
    if "phpmyadmin" in ports:
        lines.append(f"phpMyAdmin: http://localhost:{ports['phpmyadmin']}")
    if "mailhog" in ports:
        lines.append(f"MailHog: http://localhost:{ports['mailhog']}")
    if "vite" in ports:
        lines.append(f"Vite: http://localhost:{ports['vite']}")
    return "\\n".join(lines)


def build_slots(record: ProjectRecord, *, app_key: str | None = None) -> StubSlots:
    """Compute every stub slot for `record` from its ports and enabled add-ons."""
    config = record.config
    ports = record.ports
    name = record.name
    has_redis = config.has(AddonService.REDIS) and "redis" in ports
    has_phpmyadmin = config.has(AddonService.PHPMYADMIN) and "phpmyadmin" in ports
    has_mailhog = config.has(AddonService.MAILHOG) and "mailhog" in ports

    return StubSlots(
        PROJECT_NAME=name,
        APP_PORT=ports["app"],
        DB_PORT=ports["db"],
        VITE_PORT=ports.get("vite"),
        REDIS_PORT=ports.get("redis"),
        PHPMYADMIN_PORT=ports.get("phpmyadmin"),
        MAILHOG_PORT=ports.get("mailhog"),
        PHP_VERSION=config.php_version,
        NODE_VERSION=config.node_version,
        INSTALL_BUN=_flag(config.install_bun),
        INSTALL_PNPM=_flag(config.install_pnpm),
        APP_KEY=app_key or generate_app_key(),
        CACHE_DRIVER="redis" if has_redis else "file",
        QUEUE_CONNECTION="redis" if has_redis else "sync",
        SESSION_DRIVER="redis" if has_redis else "file",
        REDIS_DEPENDS="\n      - redis" if has_redis else "",
        REDIS_SERVICE=redis_service(name, ports["redis"]) if has_redis else "",
        REDIS_VOLUME="\n  redis_data:\n    driver: local" if has_redis else "",
        PHPMYADMIN_SERVICE=(
            phpmyadmin_service(name, ports["phpmyadmin"]) if has_phpmyadmin else ""
        ),
        MAILHOG_SERVICE=mailhog_service(name, ports["mailhog"]) if has_mailhog else "",
        REDIS_CONFIG=REDIS_ENV if has_redis else "",
        MAIL_CONFIG=mail_env(name) if has_mailhog else "",
        SERVICES_INFO=services_info(record),
    )


def _flag(value: bool) -> str:
    return "true" if value else "false"
