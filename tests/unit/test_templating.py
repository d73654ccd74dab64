from pathlib import Path

import pytest

from devdock.config import BUNDLED_TEMPLATES_DIR
from devdock.core.compose import build_slots
from devdock.core.templates import TemplateCatalog, output_location
from devdock.core.templating import PLACEHOLDER, StubSlots, placeholders, render_stub
from devdock.errors import NotFoundError, TemplateRenderError
from devdock.models.project import AddonService, ProjectConfig, ProjectRecord, Template


def _slots(**overrides: object) -> StubSlots:
    values: dict[str, object] = {
        "PROJECT_NAME": "demo",
        "APP_PORT": 8000,
        "DB_PORT": 3306,
        "PHP_VERSION": "8.2",
        "NODE_VERSION": "18",
        "INSTALL_BUN": "false",
        "INSTALL_PNPM": "false",
        "APP_KEY": "base64:abc",
        "CACHE_DRIVER": "file",
        "QUEUE_CONNECTION": "sync",
        "SESSION_DRIVER": "file",
        "REDIS_DEPENDS": "",
        "REDIS_SERVICE": "",
        "REDIS_VOLUME": "",
        "PHPMYADMIN_SERVICE": "",
        "MAILHOG_SERVICE": "",
        "REDIS_CONFIG": "",
        "MAIL_CONFIG": "",
        "SERVICES_INFO": "",
    }
    values.update(overrides)
    return StubSlots(**values)  # type: ignore[arg-type]


def _record(template: Template, ports: dict[str, int], services: list[AddonService]) -> ProjectRecord:
    return ProjectRecord(
        name="demo",
        template=template,
        path=Path("/srv/demo"),
        ports=ports,
        config=ProjectConfig(services=services),
    )


def test_render_stub_substitutes_tokens() -> None:
    text = "name={{PROJECT_NAME}} port={{ APP_PORT }}"
    assert placeholders(text) == {"PROJECT_NAME", "APP_PORT"}
    assert render_stub(text, _slots()) == "name=demo port=8000"


def test_render_stub_rejects_unknown_tokens() -> None:
    with pytest.raises(TemplateRenderError) as exc_info:
        render_stub("{{NOPE}} {{PROJECT_NAME}}", _slots(), stub_name="x.stub")
    assert exc_info.value.extra["unknown"] == ["NOPE"]


def test_render_stub_rejects_slots_without_value() -> None:
    with pytest.raises(TemplateRenderError) as exc_info:
        render_stub("vite={{VITE_PORT}}", _slots())
    assert exc_info.value.extra["missing"] == ["VITE_PORT"]


def test_stub_slots_forbid_extra_fields() -> None:
    with pytest.raises(ValueError):
        _slots(SOMETHING_ELSE="x")


def test_build_slots_switches_drivers_with_redis() -> None:
    plain = build_slots(_record(Template.LARAVEL, {"app": 8000, "db": 3306, "vite": 5173}, []), app_key="k")
    assert plain.CACHE_DRIVER == "file"
    assert plain.QUEUE_CONNECTION == "sync"
    assert plain.REDIS_SERVICE == ""
    assert plain.APP_KEY == "k"

    redis = build_slots(
        _record(
            Template.LARAVEL,
            {"app": 8000, "db": 3306, "vite": 5173, "redis": 6380},
            [AddonService.REDIS],
        )
    )
    assert redis.CACHE_DRIVER == "redis"
    assert redis.SESSION_DRIVER == "redis"
    assert '"6380:6379"' in redis.REDIS_SERVICE
    assert "REDIS_HOST=redis" in redis.REDIS_CONFIG
    assert redis.APP_KEY.startswith("base64:")


def test_mailhog_does_not_publish_smtp_port() -> None:
    slots = build_slots(
        _record(
            Template.NODEJS,
            {"app": 3000, "db": 3306, "mailhog": 8025},
            [AddonService.MAILHOG],
        )
    )
    assert '"8025:8025"' in slots.MAILHOG_SERVICE
    assert "1025:1025" not in slots.MAILHOG_SERVICE
    assert "MAIL_HOST=mailhog" in slots.MAIL_CONFIG


@pytest.mark.parametrize(
    ("template", "ports", "services"),
    [
        (Template.NODEJS, {"app": 3000, "db": 3306}, []),
        (
            Template.LARAVEL,
            {"app": 8000, "db": 3306, "vite": 5173, "redis": 6379, "phpmyadmin": 8080, "mailhog": 8025},
            list(AddonService),
        ),
    ],
)
def test_every_bundled_stub_renders(
    template: Template, ports: dict[str, int], services: list[AddonService]
) -> None:
    catalog = TemplateCatalog(BUNDLED_TEMPLATES_DIR)
    slots = build_slots(_record(template, ports, services))
    stubs = catalog.stubs(template.value)
    assert "docker-compose.yml.stub" in stubs
    assert ".env.stub" in stubs
    for name, content in stubs.items():
        rendered = render_stub(content, slots, stub_name=name)
        assert PLACEHOLDER.search(rendered) is None


def test_catalog_lists_bundled_templates() -> None:
    catalog = TemplateCatalog(BUNDLED_TEMPLATES_DIR)
    assert [template.id for template in catalog.list()] == ["laravel", "nodejs"]
    assert catalog.get("laravel").config["ports"]["vite"]["default"] == 5173


def test_catalog_rejects_unknown_and_escaping_ids() -> None:
    catalog = TemplateCatalog(BUNDLED_TEMPLATES_DIR)
    with pytest.raises(NotFoundError):
        catalog.get("rails")
    with pytest.raises(NotFoundError):
        catalog.stubs("../laravel")


def test_output_location_maps_stub_names() -> None:
    assert output_location("docker-compose.yml.stub") == ("root", "docker-compose.yml")
    assert output_location(".env.stub") == ("src", ".env")
    assert output_location("nginx.conf.stub") == ("docker", "nginx.conf")
