"""Generate a project directory from its template."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from string import Template as TextTemplate

import structlog

from devdock.core.compose import build_slots
from devdock.core.executor import CommandExecutor, OutputCallback
from devdock.core.templates import TemplateCatalog, output_location
from devdock.core.templating import render_stub
from devdock.db.json_file import write_text_atomic
from devdock.models.project import ProjectRecord, Template

logger = structlog.get_logger(__name__)

type ProgressCallback = Callable[[str], Awaitable[None]]

COMPOSE_STUB = "docker-compose.yml.stub"

NODE_DEPENDENCIES = {
    "express": "^4.18.2",
    "cors": "^2.8.5",
    "helmet": "^7.1.0",
    "morgan": "^1.10.0",
    "dotenv": "^16.3.1",
}

NODE_INDEX = TextTemplate(
    """require('dotenv').config();
const express = require('express');
const cors = require('cors');
const helmet = require('helmet');
const morgan = require('morgan');

const app = express();
const PORT = process.env.PORT || 3000;

app.use(helmet());
app.use(cors());
app.use(morgan('combined'));
app.use(express.json());

app.get('/', (req, res) => {
  res.json({ message: 'Welcome to $name!', version: '1.0.0', timestamp: new Date().toISOString() });
});

app.get('/health', (req, res) => {
  res.json({ status: 'ok', service: '$name' });
});

app.listen(PORT, '0.0.0.0', () => {
  console.log((process.env.APP_NAME || '$name') + ' server running on port ' + PORT);
});
"""
)


def node_package(name: str) -> dict[str, object]:
    return {
        "name": name,
        "version": "1.0.0",
        "description": f"{name} - Node.js Application",
        "main": "index.js",
        "scripts": {"start": "node index.js", "dev": "nodemon index.js"},
        "dependencies": NODE_DEPENDENCIES,
        "devDependencies": {"nodemon": "^3.0.2"},
    }


class ProjectScaffolder:
    """Create source, Docker files and installed dependencies for a new project."""

    def __init__(self, catalog: TemplateCatalog, executor: CommandExecutor) -> None:
        self._catalog = catalog
        self._executor = executor

    async def scaffold(
        self,
        project: ProjectRecord,
        *,
        on_progress: ProgressCallback | None = None,
        on_output: OutputCallback | None = None,
    ) -> None:
        """Run every creation step; a failure leaves the partial directory in place."""

        async def progress(message: str) -> None:
            logger.info("scaffold_step", project=project.name, step=message)
            if on_progress is not None:
                await on_progress(message)

        await progress("Creating project directories")
        project.src_path.mkdir(parents=True, exist_ok=True)
        project.docker_path.mkdir(parents=True, exist_ok=True)

        await progress("Generating project files")
        await self.generate_source(project, on_output=on_output)

        await progress("Setting up Docker")
        self.render_files(project)

        await progress("Installing dependencies")
        await self.setup(project, on_output=on_output)

    async def generate_source(
        self, project: ProjectRecord, *, on_output: OutputCallback | None = None
    ) -> None:
        if project.template is Template.LARAVEL:
            await self._executor.require(
                ["composer", "create-project", "laravel/laravel", ".", "--prefer-dist", "--no-dev"],
                "Failed to create Laravel project",
                cwd=project.src_path,
                on_output=on_output,
            )
            return

        (project.src_path / "package.json").write_text(
            json.dumps(node_package(project.name), indent=2) + "\n", encoding="utf-8"
        )
        (project.src_path / "index.js").write_text(
            NODE_INDEX.substitute(name=project.name), encoding="utf-8"
        )

    def render_files(self, project: ProjectRecord) -> list[Path]:
        """Render every stub of the project's template to its destination."""
        slots = build_slots(project)
        written: list[Path] = []
        for stub_name, content in self._catalog.stubs(project.template.value).items():
            destination = self._destination(project, stub_name)
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_text(render_stub(content, slots, stub_name=stub_name), encoding="utf-8")
            written.append(destination)
        logger.info("stubs_rendered", project=project.name, files=len(written))
        return written

    def regenerate_compose(self, project: ProjectRecord) -> Path:
        """Rewrite only `docker-compose.yml`, e.g. after a port change."""
        stubs = self._catalog.stubs(project.template.value)
        destination = project.compose_file
        write_text_atomic(
            destination,
            render_stub(stubs[COMPOSE_STUB], build_slots(project), stub_name=COMPOSE_STUB),
        )
        logger.info("compose_regenerated", project=project.name, ports=project.ports)
        return destination

    async def setup(
        self, project: ProjectRecord, *, on_output: OutputCallback | None = None
    ) -> bool:
        """Run post-generation setup; failures are logged, not raised."""
        if project.template is Template.LARAVEL:
            args = ["php", "artisan", "key:generate", "--force"]
        else:
            args = ["npm", "install"]
        result = await self._executor.run(args, cwd=project.src_path, on_output=on_output)
        if not result.success:
            logger.warning(
                "project_setup_skipped", project=project.name, command=result.command, error=result.error_text()
            )
        return result.success

    @staticmethod
    def _destination(project: ProjectRecord, stub_name: str) -> Path:
        area, filename = output_location(stub_name)
        if area == "root":
            return project.path / filename
        if area == "src":
            return project.src_path / filename
        return project.docker_path / filename
