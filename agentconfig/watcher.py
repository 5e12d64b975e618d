import time
from pathlib import Path
from typing import Dict, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from agentconfig.exceptions import AgentConfigError
from agentconfig.logger import LoggingContext, logger


class ConfigFileChangeHandler(FileSystemEventHandler):
    """File system event handler reloading the manager's configuration file"""

    def __init__(self, manager, debounce_secs: float = 1.0):
        self.manager = manager
        self.debounce_secs = debounce_secs
        self.last_modified: Dict[Path, float] = {}

    def _is_watched(self, src_path) -> bool:
        return Path(src_path).resolve() == self.manager.config_file.resolve()

    def on_modified(self, event):
        if event.is_directory or not self._is_watched(event.src_path):
            return
        self._handle_change(Path(event.src_path))

    def on_created(self, event):
        self.on_modified(event)

    def on_moved(self, event):
        # Atomic writes land as a rename onto the watched path
        if event.is_directory or not self._is_watched(event.dest_path):
            return
        self._handle_change(Path(event.dest_path))

    def _handle_change(self, file_path: Path):
        last = self.last_modified.get(file_path)
        if last is not None and time.monotonic() - last < self.debounce_secs:
            return
        if not self.manager.file_changed():
            logger.debug(
                "Config file matches the cached configuration, skipping reload",
                {"config_file": str(file_path)},
            )
            return
        # Only a successful reload starts the quiet period
        if self.reload():
            self.last_modified[file_path] = time.monotonic()

    def reload(self) -> bool:
        """Force-reload the configuration, keeping the cached one on failure"""
        with LoggingContext(operation="hot_reload"):
            try:
                self.manager.get_configuration(force_reload=True)
            except AgentConfigError as e:
                logger.warning(
                    f"Configuration reload failed, keeping current configuration: {e}",
                    {"config_file": str(self.manager.config_file)},
                )
                return False
        return True


class ConfigHotReloader:
    """Owns the watchdog observer for a manager's configuration directory"""

    def __init__(self, manager, debounce_secs: float = 1.0):
        self.manager = manager
        self.handler = ConfigFileChangeHandler(manager, debounce_secs=debounce_secs)
        self._observer: Optional[Observer] = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self):
        if self._observer is not None:
            return
        config_dir = self.manager.config_file.resolve().parent
        observer = Observer()
        observer.schedule(self.handler, str(config_dir), recursive=False)
        observer.start()
        self._observer = observer
        logger.info(
            "Configuration hot reloading enabled", {"config_dir": str(config_dir)}
        )

    def stop(self):
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None
        logger.info("Configuration hot reloading disabled")
