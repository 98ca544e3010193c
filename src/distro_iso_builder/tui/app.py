"""Textual application for reviewing, validating and running a distribution build."""
from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Iterable

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Button, Checkbox, Footer, Header, Input, Label, RichLog, Select

from ..builder import DistroBuilder, ValidationFailed, render_build_plan
from ..config import (
    SUPPORTED_ARCHITECTURES,
    BaseSystem,
    Bootloader,
    DesktopEnvironment,
    DistroConfig,
    default_config,
    save_config,
)
from ..progress import ProgressReporter
from ..validator import ConfigValidator


class ConfigUpdated(Message):
    """Dispatched when the configuration changes."""

    def __init__(self, config: DistroConfig) -> None:
        self.config = config
        super().__init__()


class ConfigForm(Vertical):
    """Left-side form for the top-level build settings."""

    def __init__(self, config: DistroConfig) -> None:
        super().__init__(id="config-form")
        self.config = config

    def compose(self) -> ComposeResult:
        desktop = self.config.packages.desktop_environment or DesktopEnvironment.NONE
        yield Label("Build configuration", id="form-title")
        yield Input(self.config.name, placeholder="Distribution name", id="name")
        yield Input(self.config.version, placeholder="Version", id="version")
        yield Select([(arch, arch) for arch in SUPPORTED_ARCHITECTURES], value=self.config.architecture, id="architecture")
        yield Select([(base.value, base) for base in BaseSystem], value=self.config.base_system, id="base_system")
        yield Select([(de.value, de) for de in DesktopEnvironment], value=desktop, id="desktop_environment")
        yield Select([(bl.value, bl) for bl in Bootloader], value=self.config.bootloader.bootloader, id="bootloader")
        yield Checkbox(label="Parallel package installation", value=self.config.build_options.parallel_builds, id="parallel_builds")
        yield Checkbox(label="Dry run (log commands, keep work dir)", value=True, id="dry_run")

    def on_select_changed(self, event: Select.Changed) -> None:
        if event.value is Select.BLANK:
            return
        field_id = event.control.id or ""
        config = self.config
        if field_id == "desktop_environment":
            self._update_config(packages=replace(config.packages, desktop_environment=event.value))
        elif field_id == "bootloader":
            self._update_config(bootloader=replace(config.bootloader, bootloader=event.value))
        elif field_id:
            self._update_config(**{field_id: event.value})

    def on_input_changed(self, event: Input.Changed) -> None:
        field_id = event.control.id or ""
        if field_id:
            self._update_config(**{field_id: event.value})

    def on_checkbox_changed(self, event: Checkbox.Changed) -> None:
        if event.control.id == "parallel_builds":
            options = replace(self.config.build_options, parallel_builds=bool(event.value))
            self._update_config(build_options=options)

    @property
    def dry_run(self) -> bool:
        return self.query_one("#dry_run", Checkbox).value

    def _update_config(self, **updates) -> None:
        self.config = self.config.with_updates(**updates)
        self.post_message(ConfigUpdated(self.config))


class PlanPreview(RichLog):
    def __init__(self) -> None:
        super().__init__(id="plan-preview", highlight=True)
        self.write("Build plan will appear here.")

    def update_lines(self, lines: Iterable[str]) -> None:
        self.clear()
        for line in lines:
            self.write(line)


class BuildLog(RichLog):
    def __init__(self) -> None:
        super().__init__(id="build-log", highlight=False)
        self.write("Build output will appear here.")

    def append_line(self, line: str) -> None:
        self.write(line)
        self.scroll_end(animate=False)

    def reset(self) -> None:
        self.clear()


class DistroBuilderApp(App[None]):
    """Main Textual application."""

    CSS = """
    #body {
        height: 1fr;
    }

    #config-form {
        width: 1fr;
        padding: 1;
        border: solid $surface-lighten-2;
    }

    #config-form Input,
    #config-form Select,
    #config-form Checkbox {
        margin-bottom: 1;
    }

    #right-pane {
        width: 2fr;
        padding: 1;
        border: solid $surface-lighten-2;
    }

    #plan-preview,
    #build-log {
        height: 1fr;
        border: round $surface-lighten-1;
        padding: 1;
    }

    #controls {
        height: auto;
        padding-top: 1;
    }

    #form-title {
        text-style: bold;
        margin-bottom: 1;
    }
    """

    BINDINGS = [
        Binding("b", "start_build", "Start build", show=True),
        Binding("v", "validate", "Validate", show=True),
        Binding("e", "export_config", "Export config", show=True),
    ]

    config: reactive[DistroConfig] = reactive(default_config)

    def __init__(self, config: DistroConfig | None = None, *, work_dir: Path = Path("./work_dir"), output_dir: Path = Path("./output")) -> None:
        super().__init__()
        self.initial_config = config or default_config()
        self.work_dir = work_dir
        self.output_dir = output_dir

    def compose(self) -> ComposeResult:
        self.config = self.initial_config
        self.plan_preview = PlanPreview()
        self.build_log = BuildLog()
        self.form = ConfigForm(self.config)

        yield Header(show_clock=True)
        with Container(id="body"):
            with Horizontal():
                yield self.form
                with Vertical(id="right-pane"):
                    yield Label("Build plan", classes="section-title")
                    yield self.plan_preview
                    yield Label("Build log", classes="section-title")
                    yield self.build_log
                    with Horizontal(id="controls"):
                        yield Button("Start Build", id="start-build", variant="success")
                        yield Button("Validate", id="validate", variant="primary")
                        yield Button("Export Config", id="export-config", variant="primary")
        yield Footer()

    def on_mount(self) -> None:
        self._refresh_preview()

    def on_config_updated(self, message: ConfigUpdated) -> None:
        self.config = message.config
        self._refresh_preview()

    def _refresh_preview(self) -> None:
        self.plan_preview.update_lines(render_build_plan(self.config, self.work_dir, self.output_dir))

    def action_start_build(self) -> None:
        self._start_build()

    def action_validate(self) -> None:
        self._validate()

    def action_export_config(self) -> None:
        self._export_config()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "start-build":
            self._start_build()
        elif event.button.id == "validate":
            self._validate()
        elif event.button.id == "export-config":
            self._export_config()

    def _validate(self) -> None:
        self.build_log.reset()
        result = ConfigValidator().validate(self.config)
        for line in result.summary().splitlines():
            self.build_log.append_line(line)

    def _start_build(self) -> None:
        self.build_log.reset()
        builder = DistroBuilder(
            self.config,
            self.work_dir,
            self.output_dir,
            dry_run=self.form.dry_run,
            reporter=ProgressReporter(callback=self.build_log.append_line, verbosity=self.config.build_options.verbosity),
        )

        async def run_build() -> None:
            self.build_log.append_line("Starting build...")
            try:
                result = await builder.build()
            except ValidationFailed as exc:
                for line in exc.result.summary().splitlines():
                    self.build_log.append_line(line)
                return
            if result.success:
                self.build_log.append_line(f"Build completed successfully: {result.iso_path}")
            else:
                self.build_log.append_line("Build failed. Check logs for details.")

        self.run_worker(run_build, exclusive=True, thread=False)

    def _export_config(self) -> None:
        destination = self.work_dir.parent / f"{self.config.name.lower().replace(' ', '-')}-config.yaml"
        save_config(self.config, destination)
        self.build_log.append_line(f"Configuration exported to {destination}")


def run(config: DistroConfig | None = None, *, work_dir: Path = Path("./work_dir"), output_dir: Path = Path("./output")) -> None:
    app = DistroBuilderApp(config, work_dir=work_dir, output_dir=output_dir)
    app.run()


__all__ = ["DistroBuilderApp", "run"]
