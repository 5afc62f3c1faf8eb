"""Registry of the kernel cache loader settings and typed accessors for them."""

from __future__ import annotations

import copy
import json
from typing import Any, Mapping

MAIN_SETTINGS_GROUP = "binjaKC"

KC_SETTINGS_GROUP = MAIN_SETTINGS_GROUP + ".kernelcache"
KC_SETTING_EXCLUDED_FILESETS = KC_SETTINGS_GROUP + ".excludedFilesets"
KC_SETTING_INCLUDED_FILESETS = KC_SETTINGS_GROUP + ".includedFilesets"
KC_SETTING_APPLY_DYLD_CHAINED_FIXUPS = KC_SETTINGS_GROUP + ".applyDyldChainedFixups"
KC_SETTING_STRIP_PAC = KC_SETTINGS_GROUP + ".stripPAC"
KC_SETTING_SYMBOLICATE_KALLOC_TYPES = KC_SETTINGS_GROUP + ".symbolicateKallocTypes"

DEBUGINFO_SETTINGS_GROUP = MAIN_SETTINGS_GROUP + ".debugInfo"
DEBUGINFO_SETTING_SYMBOLS_DIRECTORY = DEBUGINFO_SETTINGS_GROUP + ".symbolsDirectory"

DWARF_SETTINGS_GROUP = MAIN_SETTINGS_GROUP + ".dwarf"
DWARF_SETTINGS_ENABLE_DWARF = DWARF_SETTINGS_GROUP + ".enableDWARF"
DWARF_SETTINGS_LOAD_TYPES = DWARF_SETTINGS_GROUP + ".loadTypes"
DWARF_SETTINGS_LOAD_DATA_VARIABLES = DWARF_SETTINGS_GROUP + ".loadDataVariables"
DWARF_SETTINGS_LOAD_FUNCTIONS = DWARF_SETTINGS_GROUP + ".loadFunctions"

MACHO_SETTINGS_GROUP = MAIN_SETTINGS_GROUP + ".machoDebugInfo"
MACHO_SETTINGS_ENABLE_MACHO = MACHO_SETTINGS_GROUP + ".enableMacho"
MACHO_SETTINGS_LOAD_DATA_VARIABLES = MACHO_SETTINGS_GROUP + ".loadDataVariables"
MACHO_SETTINGS_LOAD_FUNCTIONS = MACHO_SETTINGS_GROUP + ".loadFunctions"

SYMTAB_SETTINGS_GROUP = MAIN_SETTINGS_GROUP + ".symtab"
SYMTAB_SETTINGS_ENABLE_SYMTAB = SYMTAB_SETTINGS_GROUP + ".enableSymtab"
SYMTAB_SETTINGS_LOAD_DATA_VARIABLES = SYMTAB_SETTINGS_GROUP + ".loadDataVariables"
SYMTAB_SETTINGS_LOAD_FUNCTIONS = SYMTAB_SETTINGS_GROUP + ".loadFunctions"

FUNCTION_STARTS_SETTINGS_GROUP = MAIN_SETTINGS_GROUP + ".functionStarts"
FUNCTION_STARTS_SETTINGS_ENABLE_FUNCTION_STARTS = (
    FUNCTION_STARTS_SETTINGS_GROUP + ".enableFunctionStarts"
)

_TYPE_CHECKS = {
    "boolean": lambda value: isinstance(value, bool),
    "string": lambda value: isinstance(value, str),
    "number": lambda value: isinstance(value, (int, float)) and not isinstance(value, bool),
}


def _matches_schema(schema: Mapping[str, Any], value: Any) -> bool:
    kind = schema.get("type")
    if kind == "array":
        if not isinstance(value, list):
            return False
        element_check = _TYPE_CHECKS.get(schema.get("elementType", "string"))
        return element_check is None or all(element_check(item) for item in value)
    check = _TYPE_CHECKS.get(kind)
    return check is None or check(value)


class SettingsRegistry:
    """Holds setting groups, setting schemas and the values assigned to them."""

    def __init__(self) -> None:
        self._groups: dict[str, str] = {}
        self._schemas: dict[str, dict[str, Any]] = {}
        self._values: dict[str, Any] = {}

    @property
    def groups(self) -> dict[str, str]:
        """Registered group names mapped to their titles."""
        return dict(self._groups)

    def keys(self) -> list[str]:
        """Keys of every registered setting, in registration order."""
        return list(self._schemas)

    def schema(self, key: str) -> dict[str, Any]:
        """The schema registered for *key*."""
        if key not in self._schemas:
            raise KeyError(key)
        return copy.deepcopy(self._schemas[key])

    def register_group(self, name: str, title: str) -> None:
        """Register a group that settings keys may start with."""
        self._groups[name] = title

    def register_setting(self, key: str, schema: str | Mapping[str, Any]) -> None:
        """Register *key* with a JSON schema given as text or as a mapping.

        Raises ValueError if the key's group is unknown, the key is already
        registered, or the schema's default does not match its type.
        """
        group = key.split(".", 1)[0]
        if group not in self._groups:
            raise ValueError(f"setting {key} belongs to unregistered group {group}")
        if key in self._schemas:
            raise ValueError(f"setting {key} is already registered")
        parsed = json.loads(schema) if isinstance(schema, str) else dict(schema)
        if "default" not in parsed:
            raise ValueError(f"setting {key} has no default value")
        if not _matches_schema(parsed, parsed["default"]):
            raise ValueError(f"default value of setting {key} does not match its type")
        self._schemas[key] = parsed

    def get(self, key: str) -> Any:
        """Current value of *key*, falling back to its default."""
        if key not in self._schemas:
            raise KeyError(key)
        value = self._values.get(key, self._schemas[key]["default"])
        return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        """Assign *value* to *key*; raise TypeError if it does not fit the schema."""
        if key not in self._schemas:
            raise KeyError(key)
        if not _matches_schema(self._schemas[key], value):
            raise TypeError(
                f"value {value!r} does not match type {self._schemas[key].get('type')} of {key}"
            )
        self._values[key] = copy.deepcopy(value)


def _register_kc_settings(registry: SettingsRegistry) -> None:
    registry.register_setting(KC_SETTING_EXCLUDED_FILESETS, {
        "default": ["com.apple.driver.FairPlayIOKit"],
        "description": "List of filesets in kernel cache to ignore",
        "elementType": "string",
        "ignore": [],
        "title": "Excluded filesets",
        "type": "array",
    })
    registry.register_setting(KC_SETTING_INCLUDED_FILESETS, {
        "default": [],
        "description": "List of filesets in kernel cache to include. If empty, all filesets "
                       "are included except the ones in 'Excluded filesets'",
        "elementType": "string",
        "ignore": [],
        "title": "Included filesets",
        "type": "array",
    })
    registry.register_setting(KC_SETTING_APPLY_DYLD_CHAINED_FIXUPS, {
        "default": True,
        "description": "Apply dyld chained fixups",
        "title": "Apply dyld chained fixups",
        "type": "boolean",
    })
    registry.register_setting(KC_SETTING_STRIP_PAC, {
        "default": False,
        "description": "Strip PAC from PAC signed pointers",
        "title": "Strip PAC",
        "type": "boolean",
    })
    registry.register_setting(KC_SETTING_SYMBOLICATE_KALLOC_TYPES, {
        "default": True,
        "description": "Symbolicate __kalloc_type and __kalloc_var sections",
        "title": "Symbolicate kalloc types",
        "type": "boolean",
    })


def _register_debug_info_settings(registry: SettingsRegistry) -> None:
    registry.register_setting(DEBUGINFO_SETTING_SYMBOLS_DIRECTORY, {
        "default": "",
        "description": "Absolute path to directory containing symbol sources (dSYM and Mach-O)",
        "title": "Symbols directory",
        "type": "string",
        "optional": True,
    })


def _register_loader_settings(
    registry: SettingsRegistry,
    enable_key: str,
    enable_default: bool,
    enable_title: str,
    enable_description: str,
    source: str,
    load_keys: Mapping[str, str],
) -> None:
    registry.register_setting(enable_key, {
        "default": enable_default,
        "description": enable_description,
        "title": enable_title,
        "type": "boolean",
    })
    titles = {
        "types": ("Load types", f"Load type information from {source}"),
        "data": ("Load data variable info", f"Load global data variable debug info from {source}"),
        "functions": ("Load function info", f"Load function debug info from {source}"),
    }
    for kind, key in load_keys.items():
        title, description = titles[kind]
        registry.register_setting(key, {
            "default": True,
            "description": description,
            "title": title,
            "type": "boolean",
        })


def register_settings(registry: SettingsRegistry) -> None:
    """Register the main group and every loader setting with its default."""
    registry.register_group(MAIN_SETTINGS_GROUP, "Binja KC")
    _register_kc_settings(registry)
    _register_debug_info_settings(registry)
    _register_loader_settings(
        registry, DWARF_SETTINGS_ENABLE_DWARF, True,
        "Enable DWARF debug info", "Load debug info from .dSYM files", "DWARF",
        {
            "types": DWARF_SETTINGS_LOAD_TYPES,
            "data": DWARF_SETTINGS_LOAD_DATA_VARIABLES,
            "functions": DWARF_SETTINGS_LOAD_FUNCTIONS,
        },
    )
    _register_loader_settings(
        registry, MACHO_SETTINGS_ENABLE_MACHO, False,
        "Enable Mach-O debug info",
        "Load debug info from Mach-O files (eg: *.kext inside KDK)", "Mach-O",
        {
            "data": MACHO_SETTINGS_LOAD_DATA_VARIABLES,
            "functions": MACHO_SETTINGS_LOAD_FUNCTIONS,
        },
    )
    _register_loader_settings(
        registry, SYMTAB_SETTINGS_ENABLE_SYMTAB, True,
        "Enable symbol table debug info",
        "Load debug info from kernelcache SYMTAB", "symbol table",
        {
            "data": SYMTAB_SETTINGS_LOAD_DATA_VARIABLES,
            "functions": SYMTAB_SETTINGS_LOAD_FUNCTIONS,
        },
    )
    registry.register_setting(FUNCTION_STARTS_SETTINGS_ENABLE_FUNCTION_STARTS, {
        "default": False,
        "description": "Load function starts using LC_FUNCTION_STARTS load command",
        "title": "Enable LC_FUNCTION_STARTS debug info",
        "type": "boolean",
    })


class KCSettings:
    """Typed view of the loader settings held by a registry."""

    def __init__(self, registry: SettingsRegistry) -> None:
        self._registry = registry

    def _bool(self, key: str) -> bool:
        return bool(self._registry.get(key))

    def kc_apply_dyld_chained_fixups(self) -> bool:
        return self._bool(KC_SETTING_APPLY_DYLD_CHAINED_FIXUPS)

    def kc_strip_pac(self) -> bool:
        return self._bool(KC_SETTING_STRIP_PAC)

    def kc_excluded_filesets(self) -> list[str]:
        return list(self._registry.get(KC_SETTING_EXCLUDED_FILESETS))

    def kc_included_filesets(self) -> list[str]:
        return list(self._registry.get(KC_SETTING_INCLUDED_FILESETS))

    def kc_symbolicate_kalloc_types(self) -> bool:
        return self._bool(KC_SETTING_SYMBOLICATE_KALLOC_TYPES)

    def debug_info_symbols_search_path(self) -> str | None:
        """The symbols directory, or None when it is empty."""
        path = self._registry.get(DEBUGINFO_SETTING_SYMBOLS_DIRECTORY)
        return path or None

    def dwarf_enabled(self) -> bool:
        return self._bool(DWARF_SETTINGS_ENABLE_DWARF)

    def dwarf_load_types(self) -> bool:
        return self._bool(DWARF_SETTINGS_LOAD_TYPES)

    def dwarf_load_data_variables(self) -> bool:
        return self._bool(DWARF_SETTINGS_LOAD_DATA_VARIABLES)

    def dwarf_load_functions(self) -> bool:
        return self._bool(DWARF_SETTINGS_LOAD_FUNCTIONS)

    def macho_enabled(self) -> bool:
        return self._bool(MACHO_SETTINGS_ENABLE_MACHO)

    def macho_load_data_variables(self) -> bool:
        return self._bool(MACHO_SETTINGS_LOAD_DATA_VARIABLES)

    def macho_load_functions(self) -> bool:
        return self._bool(MACHO_SETTINGS_LOAD_FUNCTIONS)

    def symtab_enabled(self) -> bool:
        return self._bool(SYMTAB_SETTINGS_ENABLE_SYMTAB)

    def symtab_load_data_variables(self) -> bool:
        return self._bool(SYMTAB_SETTINGS_LOAD_DATA_VARIABLES)

    def symtab_load_functions(self) -> bool:
        return self._bool(SYMTAB_SETTINGS_LOAD_FUNCTIONS)

    def function_starts_enabled(self) -> bool:
        return self._bool(FUNCTION_STARTS_SETTINGS_ENABLE_FUNCTION_STARTS)