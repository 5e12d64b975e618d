"""
Configuration manager for the monitoring agent.

The manager owns the only mutable reference to the current configuration
tree. Readers get deep copies under a shared lock; loads, updates and
overlays run under the exclusive lock so that the file on disk and the
cached tree always change together.
"""

import hashlib
import os
import shutil
import tempfile
from pathlib import Path
from typing import IO, Callable, List, Optional, Tuple, Union

from agentconfig.exceptions import (
    ConfigNotFoundError,
    ConfigNotWritableError,
    InvalidArgumentError,
)
from agentconfig.locks import ReadWriteLock
from agentconfig.logger import LoggingContext, logger
from agentconfig.model import Configuration
from agentconfig.serializer import ConfigSerializer
from agentconfig.validation import ConfigValidator

BACKUP_SUFFIX = ".bak"

ChangeCallback = Callable[[str, Configuration], None]


def _digest(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class ConfigManager:
    """Loads, caches and commits the agent configuration file.

    Creating a manager does not load anything, since the file might not exist
    yet. Call ``get_configuration(force_reload=...)`` to load it or
    ``update_configuration`` to write it.
    """

    def __init__(
        self,
        config_file: Union[str, Path],
        lock: Optional[ReadWriteLock] = None,
        validator: Optional[ConfigValidator] = None,
        serializer: Optional[ConfigSerializer] = None,
    ):
        self._config_file = Path(config_file)
        self._lock = lock or ReadWriteLock(fair=True)
        self._validator = validator or ConfigValidator()
        self._serializer = serializer or ConfigSerializer()
        self._configuration: Optional[Configuration] = None
        self._change_callbacks: List[ChangeCallback] = []
        self._synced_digest: Optional[str] = None

    @property
    def config_file(self) -> Path:
        """The file where the configuration does or will exist"""
        return self._config_file

    def has_configuration(self) -> bool:
        """True once a configuration has been loaded or written successfully"""
        with self._lock.read_locked():
            return self._configuration is not None

    def get_configuration(
        self, force_reload: Optional[bool] = None
    ) -> Optional[Configuration]:
        """Return a copy of the configuration.

        Without arguments this only reads the cache under the shared lock and
        returns None if nothing has been loaded. Passing ``force_reload``
        (True or False) takes the exclusive lock and loads the file if
        nothing is cached yet, or always when ``force_reload`` is True. A
        failed load leaves the previously cached configuration in place.

        Raises:
            ConfigNotFoundError: the file does not exist or cannot be read
            ConfigFormatError: the file is not a valid configuration document
            ConfigValidationError: the configuration breaks a domain rule
        """
        if force_reload is None:
            with self._lock.read_locked():
                if self._configuration is None:
                    return None
                return self._configuration.copy_tree()

        loaded = False
        with LoggingContext(operation="load"), self._lock.write_locked():
            if self._configuration is None or force_reload:
                new_config, digest = self._load(self._config_file)
                self._validator.validate_or_raise(new_config)
                self._configuration = new_config
                self._synced_digest = digest
                loaded = True
                logger.info(
                    "Configuration loaded", {"config_file": str(self._config_file)}
                )
            snapshot = self._configuration.copy_tree()

        if loaded:
            self._notify_change_callbacks("loaded", snapshot)
        return snapshot

    def update_configuration(self, config: Configuration, create_backup: bool = False):
        """Write the configuration to the file, replacing its previous content.

        Args:
            config: the new configuration
            create_backup: copy the current file to a .bak sibling first

        Raises:
            InvalidArgumentError: config is None
            ConfigNotWritableError: the file cannot be created or written
        """
        if config is None:
            raise InvalidArgumentError("config must not be None", argument="config")

        with LoggingContext(operation="update"), self._lock.write_locked():
            self._synced_digest = self._save(self._config_file, config, create_backup)
            self._configuration = config.copy_tree()
            snapshot = self._configuration.copy_tree()
            logger.info(
                "Configuration updated",
                {"config_file": str(self._config_file), "backup": create_backup},
            )

        self._notify_change_callbacks("updated", snapshot)

    def overlay_configuration(
        self, config_stream: IO, save: bool = True, create_backup: bool = False
    ):
        """Overlay the current configuration with the document in the stream.

        Only metric and resource-type sets are merged: elements with new names
        are added and elements with existing names are replaced. Every other
        section is kept as it is. The merged tree is validated before anything
        changes. If nothing has been loaded yet the file is loaded first; it is
        only cached once the merged tree commits.

        Args:
            config_stream: stream holding the overlay document; the caller
                is responsible for closing it
            save: write the merged configuration over the file
            create_backup: copy the current file to a .bak sibling first
                (ignored when save is False)
        """
        if config_stream is None:
            raise InvalidArgumentError(
                "config stream must not be None", argument="config_stream"
            )

        with LoggingContext(operation="overlay"), self._lock.write_locked():
            overlay_config = self._serializer.load_stream(config_stream)
            self._validator.validate_overlay(overlay_config)

            digest = self._synced_digest
            if self._configuration is None:
                base, digest = self._load(self._config_file)
                self._validator.validate_or_raise(base)
            else:
                base = self._configuration

            new_config = base.copy_tree()
            new_config.overlay(overlay_config)

            self._validator.validate_or_raise(new_config)

            if save:
                digest = self._save(self._config_file, new_config, create_backup)

            self._configuration = new_config
            self._synced_digest = digest
            snapshot = new_config.copy_tree()
            logger.info(
                "Configuration overlaid",
                {
                    "config_file": str(self._config_file),
                    "saved": save,
                    "metric_set_dmr": snapshot.section_names("metric-set-dmr"),
                    "metric_set_jmx": snapshot.section_names("metric-set-jmx"),
                },
            )

        self._notify_change_callbacks("overlaid", snapshot)

    def register_change_callback(self, callback: ChangeCallback):
        """Register a callback run with (event_type, snapshot) after each commit"""
        if callable(callback):
            self._change_callbacks.append(callback)

    def unregister_change_callback(self, callback: ChangeCallback):
        if callback in self._change_callbacks:
            self._change_callbacks.remove(callback)

    def _notify_change_callbacks(self, event_type: str, snapshot: Configuration):
        for callback in list(self._change_callbacks):
            try:
                callback(event_type, snapshot.copy_tree())
            except Exception as e:
                logger.error(
                    f"Error in configuration change callback: {e}",
                    {"event_type": event_type},
                    exc_info=True,
                )

    def file_changed(self) -> bool:
        """True if the file differs from what the manager last loaded or wrote"""
        with self._lock.read_locked():
            synced = self._synced_digest
        if synced is None:
            return True
        try:
            content = self._config_file.read_bytes()
        except OSError:
            return True
        return _digest(content) != synced

    def _load(self, path: Path) -> Tuple[Configuration, str]:
        if not path.is_file() or not os.access(path, os.R_OK):
            raise ConfigNotFoundError(
                f"Config file [{path}] does not exist or cannot be read", path=path
            )
        try:
            content = path.read_bytes()
        except OSError as e:
            raise ConfigNotFoundError(
                f"Config file [{path}] cannot be read: {e}", path=path, cause=e
            )
        return self._serializer.loads(content, str(path)), _digest(content)

    def _save(self, path: Path, config: Configuration, create_backup: bool) -> str:
        """Write the configuration and return the digest of what was written"""
        if create_backup:
            self._backup(path)

        if not path.exists():
            try:
                path.touch()
            except OSError as e:
                raise ConfigNotWritableError(
                    f"Config file [{path}] cannot be created: {e}", path=path, cause=e
                )

        if not path.is_file() or not os.access(path, os.W_OK):
            raise ConfigNotWritableError(
                f"Config file [{path}] cannot be created or is not writable", path=path
            )

        content = self._serializer.dumps(config).encode("utf-8")
        self._write_atomically(path, content)
        return _digest(content)

    def _write_atomically(self, path: Path, content: bytes):
        """Write to a temporary sibling, then swap it over the target"""
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
            )
        except OSError as e:
            raise ConfigNotWritableError(
                f"Config file [{path}] cannot be written: {e}", path=path, cause=e
            )

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            shutil.copymode(path, tmp_name)
            os.replace(tmp_name, path)
        except OSError as e:
            raise ConfigNotWritableError(
                f"Config file [{path}] cannot be written: {e}", path=path, cause=e
            )
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def _backup(self, path: Path):
        if not path.is_file() or not os.access(path, os.R_OK):
            return
        destination = path.with_name(path.name + BACKUP_SUFFIX)
        try:
            shutil.copyfile(path, destination)
            logger.debug(
                "Config file backed up",
                {"config_file": str(path), "backup_file": str(destination)},
            )
        except OSError as e:
            logger.warning(
                f"Cannot backup config file [{path}]: {e}",
                {"backup_file": str(destination)},
            )
