#!/usr/bin/env python3
"""
弾薬変更検出器のテスト。
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from detectors import FallbackAmmoChangeDetector, TypedAmmoChangeDetector, create_detector
from form_key import FormKey, extract_identity
from link_resolver import LinkResolver
from records import FormLink, Record
from schema import SchemaVersion


def test_factory_selects_by_schema_version(mod_world):
    resolver = LinkResolver(mod_world.store)
    assert isinstance(create_detector(SchemaVersion.MUTAGEN_V51, resolver), TypedAmmoChangeDetector)
    assert isinstance(create_detector(SchemaVersion.XEDIT_EXPORT, resolver), TypedAmmoChangeDetector)
    assert isinstance(create_detector(SchemaVersion.UNKNOWN, resolver), FallbackAmmoChangeDetector)
    assert isinstance(create_detector(SchemaVersion.MUTAGEN_V51, None), FallbackAmmoChangeDetector)


def test_typed_detector_reads_ammo_property(mod_world):
    keys = mod_world.keys
    detector = TypedAmmoChangeDetector(LinkResolver(mod_world.store), SchemaVersion.MUTAGEN_V51)
    omod = mod_world.store.resolve(keys.m)

    changed = detector.detects_change(omod, FormLink(keys.a))
    assert changed is not None
    assert changed.form_key == keys.a2


def test_typed_detector_ignores_same_ammo(mod_world):
    keys = mod_world.keys
    detector = TypedAmmoChangeDetector(LinkResolver(mod_world.store), SchemaVersion.MUTAGEN_V51)
    omod = mod_world.store.resolve(keys.m)
    assert detector.detects_change(omod, FormLink(keys.a2)) is None


def test_typed_detector_skips_non_modifications(mod_world):
    detector = TypedAmmoChangeDetector(LinkResolver(mod_world.store), SchemaVersion.MUTAGEN_V51)
    weapon = mod_world.store.resolve(mod_world.keys.w)
    assert detector.detects_change(weapon, None) is None
    assert detector.detects_change(None, None) is None


def test_fallback_prefers_ammo_like_field_names():
    original = FormKey("Mod.esp", 0x800)
    replacement = FormKey("Mod.esp", 0x801)
    record = Record(FormKey("Mod.esp", 0x900), "OMOD", "mod_Convert", {
        "TargetWeapon": FormLink(FormKey("Mod.esp", 0x820)),
        "NewAmmo": FormLink(replacement),
    })
    changed = FallbackAmmoChangeDetector().detects_change(record, FormLink(original))
    assert extract_identity(changed) == replacement


def test_fallback_reports_any_differing_reference():
    # 弾薬以外の参照でも「変更」として返す大雑把な検出
    keyword = FormKey("Mod.esp", 0x810)
    record = Record(FormKey("Mod.esp", 0x900), "OMOD", "mod_Cosmetic", {"Keyword": FormLink(keyword)})
    changed = FallbackAmmoChangeDetector().detects_change(record, FormLink(FormKey("Mod.esp", 0x800)))
    assert extract_identity(changed) == keyword


def test_fallback_ignores_own_key_and_original():
    own = FormKey("Mod.esp", 0x900)
    original = FormKey("Mod.esp", 0x800)
    record = Record(own, "OMOD", "mod_Noop", {"Self": FormLink(own), "Ammo": FormLink(original)})
    assert FallbackAmmoChangeDetector().detects_change(record, FormLink(original)) is None
