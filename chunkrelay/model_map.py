from typing import Mapping, Optional

from .errors import InputError


class ModelMapper:
    """Translates client-facing model aliases into upstream model ids."""

    def __init__(self, aliases: Mapping[str, str], default_alias: str, enforce_allowlist: bool = False):
        self._aliases = dict(aliases)
        self.default_alias = default_alias
        self.enforce_allowlist = enforce_allowlist

    def resolve_alias(self, requested: Optional[str]) -> str:
        """Client-facing name a request is answered under."""
        return requested or self.default_alias

    def resolve(self, requested: Optional[str]) -> str:
        alias = self.resolve_alias(requested)
        if alias in self._aliases:
            return self._aliases[alias]
        if self.enforce_allowlist:
            raise InputError(f"Model '{alias}' is not supported by this proxy")
        return alias

    def aliases(self) -> list[str]:
        return list(self._aliases)
