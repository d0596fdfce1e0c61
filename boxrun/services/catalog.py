"""
Predefined command catalog.

Manages the ``predefined_commands`` list and the execution-mode switches of
the configuration file. Entries are looked up by command text first and by
alias second.
"""
from __future__ import annotations

import logging
from typing import Optional

from boxrun.config import ConfigStore, PredefinedCommand
from boxrun.core.exceptions import BoxrunError
from boxrun.core.execution_mode import resolve_is_local
from boxrun.core.models import ExecutionRequest

logger = logging.getLogger(__name__)


class CommandCatalogError(BoxrunError):
    """A catalog edit could not be applied."""

    kind = "CatalogError"


class CommandCatalog:
    """Read and edit predefined commands through a ConfigStore."""

    def __init__(self, store: ConfigStore) -> None:
        self._store = store

    @property
    def commands(self) -> list[PredefinedCommand]:
        return list(self._store.config.predefined_commands)

    def find(self, name: str) -> Optional[PredefinedCommand]:
        name = name.strip()
        for entry in self.commands:
            if entry.command == name:
                return entry
        for entry in self.commands:
            if entry.alias and entry.alias == name:
                return entry
        return None

    def _index_of(self, command: str) -> int:
        for index, entry in enumerate(self.commands):
            if entry.command == command:
                return index
        raise CommandCatalogError(f"Command not found: {command}", context={"command": command})

    def is_local(self, entry: PredefinedCommand) -> bool:
        """Effective execution mode of an entry under the current global switch."""
        return resolve_is_local(
            entry.to_request().mode_override,
            self._store.config.global_execute_locally,
        )

    def request_for(
        self,
        command: str,
        cwd: Optional[str] = None,
        execute_locally: bool = False,
    ) -> ExecutionRequest:
        """
        Build a request for ad-hoc command text.

        A matching predefined entry contributes its per-command override unless
        the caller forces local execution.
        """
        override: Optional[bool] = True if execute_locally else None
        if override is None:
            entry = self.find(command)
            if entry is not None and entry.command == command:
                override = entry.to_request().mode_override
        return ExecutionRequest(command=command, working_directory=cwd or None, mode_override=override)

    def add(
        self,
        command: str,
        cwd: Optional[str] = None,
        alias: Optional[str] = None,
        execute_locally: bool = False,
    ) -> PredefinedCommand:
        command = command.strip()
        if not command:
            raise CommandCatalogError("Command cannot be empty")
        if any(entry.command == command for entry in self.commands):
            raise CommandCatalogError("Command already exists", context={"command": command})

        # Under the global local switch the per-command flag is left unset
        local_flag = None
        if not self._store.config.global_execute_locally and execute_locally:
            local_flag = True

        entry = PredefinedCommand(
            command=command, cwd=cwd, alias=alias, execute_locally=local_flag
        )
        self._store.update(predefined_commands=self.commands + [entry])
        logger.info(f"CATALOG: Added '{entry.display_name}'")
        return entry

    def remove(self, command: str) -> PredefinedCommand:
        index = self._index_of(command)
        commands = self.commands
        removed = commands.pop(index)
        self._store.update(predefined_commands=commands)
        logger.info(f"CATALOG: Removed '{command}'")
        return removed

    def set_alias(self, command: str, alias: Optional[str]) -> PredefinedCommand:
        """Set or clear an alias; a bare entry is promoted to the mapping form."""
        index = self._index_of(command)
        commands = self.commands
        updated = commands[index].model_copy(update={"alias": (alias or "").strip() or None, "bare": False})
        commands[index] = updated
        self._store.update(predefined_commands=commands)
        return updated

    def toggle_execute_locally(self, command: str) -> PredefinedCommand:
        """Flip the per-command override; a bare entry becomes ``execute_locally: true``."""
        index = self._index_of(command)
        commands = self.commands
        current = commands[index]
        new_value = True if current.bare else not current.execute_locally
        updated = current.model_copy(update={"execute_locally": new_value, "bare": False})
        commands[index] = updated
        self._store.update(predefined_commands=commands)
        logger.info(f"CATALOG: '{command}' execute_locally={new_value}")
        return updated

    def set_container(self, name: Optional[str]) -> str:
        """Configure the container; an empty name disables container mode."""
        name = (name or "").strip()
        self._store.update(container_name=name)
        return name

    def toggle_global_execute_locally(self) -> bool:
        new_value = not self._store.config.execute_locally
        self._store.update(execute_locally=new_value)
        return new_value
