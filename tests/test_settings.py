import pytest

from kcmacho.settings import KCSettings, SettingsRegistry, register_settings


@pytest.fixture
def registry():
    reg = SettingsRegistry()
    register_settings(reg)
    return reg


@pytest.fixture
def settings(registry):
    return KCSettings(registry)


def test_group_registered(registry):
    assert registry.groups == {"binjaKC": "Binja KC"}


def test_kernelcache_defaults(settings):
    assert settings.kc_excluded_filesets() == ["com.apple.driver.FairPlayIOKit"]
    assert settings.kc_included_filesets() == []
    assert settings.kc_apply_dyld_chained_fixups() is True
    assert settings.kc_strip_pac() is False
    assert settings.kc_symbolicate_kalloc_types() is True


def test_debug_info_default_is_none(settings):
    assert settings.debug_info_symbols_search_path() is None


def test_loader_defaults(settings):
    assert settings.dwarf_enabled() is True
    assert settings.dwarf_load_types() is True
    assert settings.dwarf_load_data_variables() is True
    assert settings.dwarf_load_functions() is True
    assert settings.macho_enabled() is False
    assert settings.macho_load_data_variables() is True
    assert settings.macho_load_functions() is True
    assert settings.symtab_enabled() is True
    assert settings.symtab_load_data_variables() is True
    assert settings.symtab_load_functions() is True
    assert settings.function_starts_enabled() is False


def test_set_values_read_back(registry, settings):
    registry.set("binjaKC.kernelcache.stripPAC", True)
    registry.set("binjaKC.machoDebugInfo.enableMacho", True)
    registry.set("binjaKC.kernelcache.includedFilesets", ["a", "b"])
    assert settings.kc_strip_pac() is True
    assert settings.macho_enabled() is True
    assert settings.kc_included_filesets() == ["a", "b"]


def test_symbols_path_set_and_cleared(registry, settings):
    registry.set("binjaKC.debugInfo.symbolsDirectory", "/tmp/symbols")
    assert settings.debug_info_symbols_search_path() == "/tmp/symbols"
    registry.set("binjaKC.debugInfo.symbolsDirectory", "")
    assert settings.debug_info_symbols_search_path() is None


def test_returned_list_is_a_copy(settings):
    first = settings.kc_excluded_filesets()
    first.append("other")
    assert settings.kc_excluded_filesets() == ["com.apple.driver.FairPlayIOKit"]


def test_unknown_key(registry):
    with pytest.raises(KeyError):
        registry.get("binjaKC.nothing")
    with pytest.raises(KeyError):
        registry.set("binjaKC.nothing", True)


def test_type_mismatch(registry):
    with pytest.raises(TypeError):
        registry.set("binjaKC.kernelcache.stripPAC", "yes")
    with pytest.raises(TypeError):
        registry.set("binjaKC.kernelcache.excludedFilesets", [1, 2])
    assert registry.get("binjaKC.kernelcache.stripPAC") is False


def test_unregistered_group():
    reg = SettingsRegistry()
    with pytest.raises(ValueError):
        reg.register_setting("other.key", '{"default": true, "type": "boolean"}')


def test_duplicate_registration(registry):
    with pytest.raises(ValueError):
        registry.register_setting(
            "binjaKC.kernelcache.stripPAC", '{"default": false, "type": "boolean"}'
        )


def test_json_schema_text():
    reg = SettingsRegistry()
    reg.register_group("grp", "Group")
    reg.register_setting("grp.flag", '{"default": true, "type": "boolean"}')
    assert reg.get("grp.flag") is True
    assert reg.keys() == ["grp.flag"]


def test_bad_default_rejected():
    reg = SettingsRegistry()
    reg.register_group("grp", "Group")
    with pytest.raises(ValueError):
        reg.register_setting("grp.flag", {"default": "x", "type": "boolean"})