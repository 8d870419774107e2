#!/usr/bin/env python3
"""
PatchBuilder / PatchPlugin のテスト。
"""

import sys
from pathlib import Path
from unittest.mock import Mock

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from candidates import CancellationToken, Candidate
from errors import MissingCollaboratorError, OperationCancelled
from form_key import FormKey
from link_resolver import LinkResolver
from patch_builder import PatchBuilder, PatchPlugin
from records import FormLink, InMemoryRecordStore, Record
from schema import SchemaVersion, get_profile

VANILLA_AMMO = FormKey("Fallout4.esm", 0x1F276)
VANILLA_PISTOL = FormKey("Fallout4.esm", 0x4822B)
MOD_AMMO = FormKey("Mod.esp", 0x801)
MOD_RIFLE = FormKey("Mod.esp", 0x820)


def _resolver():
    store = InMemoryRecordStore([
        Record(VANILLA_AMMO, "AMMO", "Ammo10mm"),
        Record(VANILLA_PISTOL, "WEAP", "10mmPistol", {"Ammo": FormLink(VANILLA_AMMO, "AMMO"), "Damage": 18}),
        Record(MOD_AMMO, "AMMO", "ModAmmo_762"),
        Record(MOD_RIFLE, "WEAP", "ModRifle", {"Ammo": FormLink(VANILLA_AMMO, "AMMO")}),
    ])
    return LinkResolver(store)


def _confirmed(form_key, ammo, base_weapon=None, kind="OMOD"):
    c = Candidate(kind=kind, form_key=form_key, base_weapon=base_weapon)
    c.confirm("Test", ammo=ammo)
    return c


def _builder(writers=(), **kwargs):
    return PatchBuilder(_resolver(), schema=get_profile(SchemaVersion.MUTAGEN_V51), writers=writers, **kwargs)


def test_unresolved_ammo_is_skipped_and_next_candidate_continues():
    writer = Mock()
    writer.write.return_value = Path("out.esp")
    broken = _confirmed(FormKey("Mod.esp", 0x900), FormKey("Missing.esp", 0x999), base_weapon=MOD_RIFLE)
    good = _confirmed(FormKey("Mod.esp", 0x901), MOD_AMMO, base_weapon=VANILLA_PISTOL)

    result = _builder([writer]).build([broken, good])

    assert result.skipped_count == 1
    assert result.skipped[0] == (broken, "AmmoUnresolved")
    assert result.success_count == 1
    assert list(result.plugin.overrides) == [VANILLA_PISTOL]
    writer.write.assert_called_once_with(result.plugin)
    assert result.output_paths == [Path("out.esp")]


def test_override_sets_ammo_and_masters():
    result = _builder().build([_confirmed(FormKey("Mod.esp", 0x901), MOD_AMMO, base_weapon=VANILLA_PISTOL)])

    override = result.plugin.overrides[VANILLA_PISTOL]
    assert override.ammo == MOD_AMMO
    assert override.ammo_field == "Ammo"
    assert override.source == "Mod.esp:00000901"
    assert override.editor_id == "10mmPistol"
    assert result.plugin.masters == ["Fallout4.esm", "Mod.esp"]
    assert result.plugin.light


def test_candidate_that_is_itself_a_weapon():
    result = _builder().build([_confirmed(MOD_RIFLE, MOD_AMMO, kind="WEAP")])
    assert list(result.plugin.overrides) == [MOD_RIFLE]
    assert result.plugin.masters == ["Mod.esp"]


@pytest.mark.parametrize("candidate, reason", [
    (_confirmed(FormKey("Mod.esp", 0x900), MOD_AMMO), "WeaponUnresolved"),
    (_confirmed(FormKey("Mod.esp", 0x900), None, base_weapon=MOD_RIFLE), "NoAmmo"),
    (_confirmed(FormKey("Mod.esp", 0x900), VANILLA_PISTOL, base_weapon=MOD_RIFLE), "AmmoUnresolved"),
])
def test_skip_reasons(candidate, reason):
    writer = Mock()
    result = _builder([writer]).build([candidate])
    assert result.skipped == [(candidate, reason)]
    assert result.success_count == 0
    writer.write.assert_not_called()
    assert not result.written


def test_unconfirmed_candidates_are_ignored():
    writer = Mock()
    result = _builder([writer]).build([Candidate(kind="OMOD", form_key=FormKey("Mod.esp", 0x900),
                                                 base_weapon=MOD_RIFLE, ammo=MOD_AMMO)])
    assert result.success_count == 0 and result.skipped_count == 0
    writer.write.assert_not_called()


def test_last_override_for_same_weapon_wins():
    first = _confirmed(FormKey("Mod.esp", 0x900), VANILLA_AMMO, base_weapon=MOD_RIFLE)
    second = _confirmed(FormKey("Mod.esp", 0x901), MOD_AMMO, base_weapon=MOD_RIFLE)
    result = _builder().build([first, second])
    assert result.success_count == 2
    assert result.plugin.overrides[MOD_RIFLE].ammo == MOD_AMMO


def test_add_master_deduplicates_and_skips_self():
    plugin = PatchPlugin(name="Patch.esp")
    plugin.add_master("Fallout4.esm")
    plugin.add_master("FALLOUT4.ESM")
    plugin.add_master("patch.esp")
    plugin.add_master("")
    plugin.add_master("Mod.esp")
    assert plugin.masters == ["Fallout4.esm", "Mod.esp"]


def test_missing_resolver_is_fatal():
    with pytest.raises(MissingCollaboratorError):
        PatchBuilder(None)


def test_cancellation_writes_nothing():
    writer = Mock()
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelled):
        _builder([writer], cancellation=token).build(
            [_confirmed(FormKey("Mod.esp", 0x901), MOD_AMMO, base_weapon=VANILLA_PISTOL)]
        )
    writer.write.assert_not_called()


def test_projectile_is_not_written_as_ammo():
    projectile = FormKey("Mod.esp", 0x8A0)
    resolver = _resolver()
    resolver.store.add(Record(projectile, "PROJ", "ModProjectile_762"))
    builder = PatchBuilder(resolver, schema=get_profile(SchemaVersion.MUTAGEN_V51))

    candidate = _confirmed(FormKey("Mod.esp", 0x902), projectile, base_weapon=MOD_RIFLE)
    result = builder.build([candidate])

    assert result.success_count == 0
    assert result.skipped == [(candidate, "AmmoUnresolved")]
    assert result.plugin.overrides == {}
