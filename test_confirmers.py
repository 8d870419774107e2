#!/usr/bin/env python3
"""
コンファーマと確認理由の後処理のテスト。
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

import reverse_index
from candidates import Candidate, ConfirmationContext, ExtractionContext
from confirmers import (
    AttachPointConfirmer, ReverseMapConfirmer, finalize_confirm_reasons, run_confirmers,
)
from detectors import create_detector
from errors import MissingCollaboratorError
from form_key import FormKey
from link_resolver import LinkResolver
from records import FormLink, InMemoryRecordStore, Record
from schema import SchemaVersion, get_profile


def _confirmation(store, excluded=frozenset(), version=SchemaVersion.MUTAGEN_V51):
    resolver = LinkResolver(store)
    extraction = ExtractionContext(
        store=store,
        resolver=resolver,
        excluded_plugins=excluded,
        schema=get_profile(version),
    )
    index = reverse_index.build(store.all_categories(), extraction.excluded_plugins)
    detector = create_detector(version, resolver)
    return ConfirmationContext.from_extraction(extraction, detector, index)


def _omod_recipe_candidate(keys):
    return Candidate(kind="recipe", form_key=keys.xm, label="co_mod_ModRifle_Receiver_762", source_plugin="Mod.esp")


def test_attach_point_match_confirms_first_weapon(mod_world):
    keys = mod_world.keys
    candidate = _omod_recipe_candidate(keys)
    confirmer = AttachPointConfirmer()

    confirmer.confirm([candidate], _confirmation(mod_world.store))

    assert candidate.confirmed
    assert candidate.base_weapon == keys.w
    assert candidate.base_weapon_label == "ModRifle"
    assert candidate.ammo == keys.a2
    assert candidate.ammo_label == "ModAmmo_762"
    assert candidate.confirm_reason == f"AttachPointMatch+Ammo ({keys.p})"
    assert confirmer.stats.confirmed == 1
    assert confirmer.stats.matched_weapons == 2


def test_slot_map_keeps_weapon_order(mod_world):
    slot_map = AttachPointConfirmer.build_slot_map(_confirmation(mod_world.store))
    assert slot_map[mod_world.keys.p] == [mod_world.keys.w, mod_world.keys.w2]


def test_attach_point_counts_created_object_without_attach_point(mod_world):
    candidate = Candidate(kind="recipe", form_key=mod_world.keys.x)
    confirmer = AttachPointConfirmer()
    confirmer.confirm([candidate], _confirmation(mod_world.store))

    assert not candidate.confirmed
    assert confirmer.stats.created_object_not_modification == 1


def test_reverse_map_confirms_through_detector(mod_world):
    keys = mod_world.keys
    converter = Record(FormKey("Mod.esp", 0x860), "OMOD", "mod_ModRifle_Convert_762", {
        "TargetWeapon": FormLink(keys.w),
        "Properties": [{"Property": "Ammo", "Value": FormLink(keys.a2, "AMMO")}],
    })
    mod_world.store.add(converter)
    candidate = Candidate(kind="COBJ", form_key=keys.x, base_weapon=keys.w)

    ReverseMapConfirmer().confirm([candidate], _confirmation(mod_world.store))

    assert candidate.confirmed
    assert candidate.ammo == keys.a2
    assert candidate.confirm_reason == "Detector TypedPropertyDetector reported change"


def test_reverse_map_field_scan_without_typed_schema(mod_world):
    keys = mod_world.keys
    patch = Record(FormKey("Mod.esp", 0x870), "COBJ", "co_AmmoRecipe", {
        "Components": FormLink(keys.w),
        "Output": FormLink(keys.a2),
    })
    mod_world.store.add(patch)
    candidate = Candidate(kind="COBJ", form_key=patch.form_key, base_weapon=keys.w)

    context = _confirmation(mod_world.store)
    context.detector = None
    ReverseMapConfirmer().confirm([candidate], context)

    assert candidate.confirmed
    assert candidate.ammo == keys.a2
    assert candidate.confirm_reason.startswith("Resolved Output -> AMMO on COBJ")


def test_reference_only_from_excluded_plugin_keeps_reason(mod_world):
    keys = mod_world.keys
    mod_world.store.add(Record(FormKey("Excluded.esp", 0x880), "COBJ", "co_Excluded", {
        "CreatedObject": FormLink(keys.w2),
        "Output": FormLink(keys.a2),
    }))
    candidate = Candidate(kind="COBJ", form_key=FormKey("Excluded.esp", 0x880), base_weapon=keys.w2)

    ReverseMapConfirmer().confirm([candidate], _confirmation(mod_world.store, excluded=frozenset({"Excluded.esp"})))

    assert not candidate.confirmed
    assert candidate.confirm_reason
    assert candidate.confirm_reason.startswith("ReverseMap_NoUsableReference;Refs=0")


def test_confirmed_candidate_is_not_touched_by_later_confirmers(mod_world):
    keys = mod_world.keys
    mod_world.store.add(Record(FormKey("Mod.esp", 0x860), "OMOD", "mod_ModRifle_Convert_762", {
        "TargetWeapon": FormLink(keys.w),
        "Properties": [{"Property": "Ammo", "Value": FormLink(keys.a2, "AMMO")}],
    }))
    manual = Candidate(kind="COBJ", form_key=keys.x, base_weapon=keys.w)
    manual.confirm("Manual", ammo=keys.a, ammo_label="ModAmmo_556")
    omod_recipe = _omod_recipe_candidate(keys)

    run_confirmers([manual, omod_recipe], _confirmation(mod_world.store))

    assert manual.confirm_reason == "Manual"
    assert manual.ammo == keys.a
    assert manual.base_weapon == keys.w
    assert omod_recipe.confirm_reason.startswith("AttachPointMatch+Ammo")
    assert omod_recipe.ammo == keys.a2


def test_confirm_refuses_second_confirmation():
    c = Candidate(kind="recipe", form_key=FormKey("Mod.esp", 0x1))
    assert c.confirm("First", ammo=FormKey("Mod.esp", 0x2))
    assert not c.confirm("Second", ammo=FormKey("Mod.esp", 0x3))
    assert c.confirm_reason == "First"
    assert c.ammo == FormKey("Mod.esp", 0x2)


def test_run_confirmers_requires_index(mod_world):
    context = _confirmation(mod_world.store)
    context.reverse_index = None
    with pytest.raises(MissingCollaboratorError):
        run_confirmers([], context)


@pytest.mark.parametrize("candidate, expected", [
    (Candidate(kind="COBJ", form_key=FormKey("Mod.esp", 0x1)), "NoBaseWeapon"),
    (Candidate(kind="recipe", form_key=FormKey("Mod.esp", 0x1), base_weapon=FormKey("Mod.esp", 0x820)),
     "Recipe_NoAmmoLink"),
    (Candidate(kind="recipe", form_key=FormKey("Mod.esp", 0x1), base_weapon=FormKey("Mod.esp", 0x820),
               ammo=FormKey("Mod.esp", 0x800)), "Recipe_AmmoPresent_NotConfirmed"),
    (Candidate(kind="OMOD", form_key=FormKey("Mod.esp", 0x1), base_weapon=FormKey("Mod.esp", 0x820),
               ammo=FormKey("Mod.esp", 0x800)), "CandidateAmmo_UnresolvedName"),
    (Candidate(kind="OMOD", form_key=FormKey("Mod.esp", 0x1), base_weapon=FormKey("Mod.esp", 0x820),
               ammo=FormKey("Mod.esp", 0x800), ammo_label="ModAmmo_556"), "CandidateAmmo_Present_NotConfirmed"),
    (Candidate(kind="OMOD", form_key=FormKey("Mod.esp", 0x1), base_weapon=FormKey("Mod.esp", 0x820)),
     "NoAmmoDetected"),
])
def test_finalize_fills_empty_reasons(mod_world, candidate, expected):
    index = reverse_index.build(mod_world.store.all_categories())
    finalize_confirm_reasons([candidate], index, "FallbackScanDetector")
    assert candidate.confirm_reason.startswith(expected + ";Refs=")
    assert candidate.confirm_reason.endswith(";Detector=FallbackScanDetector")


def test_finalize_keeps_existing_reason():
    c = Candidate(kind="COBJ", form_key=FormKey("Mod.esp", 0x1), confirm_reason="ReverseMap_NoEvidence;Refs=1")
    finalize_confirm_reasons([c], None, "None")
    assert c.confirm_reason == "ReverseMap_NoEvidence;Refs=1"


def _leveled_list_world(extra_fields):
    ammo = Record(FormKey("Mod.esp", 0x800), "AMMO", "ModAmmo_556")
    other_ammo = Record(FormKey("Mod.esp", 0x801), "AMMO", "ModAmmo_762")
    weapon = Record(FormKey("Mod.esp", 0x820), "WEAP", "ModRifle", {"Ammo": FormLink(ammo.form_key, "AMMO")})
    leveled = Record(FormKey("Mod.esp", 0x890), "LVLI", "LL_ModRifle", {"Entries": [FormLink(weapon.form_key)], **extra_fields})
    return InMemoryRecordStore([ammo, other_ammo, weapon, leveled]), weapon, leveled


def test_fallback_detector_never_reports_the_base_weapon_as_ammo():
    store, weapon, leveled = _leveled_list_world({})
    candidate = Candidate(kind="LVLI", form_key=leveled.form_key, base_weapon=weapon.form_key)

    ReverseMapConfirmer().confirm([candidate], _confirmation(store, version=SchemaVersion.UNKNOWN))

    assert not candidate.confirmed
    assert candidate.ammo is None
    assert candidate.confirm_reason.startswith("ReverseMap_NoEvidence;Refs=1;Detector=FallbackScanDetector")


def test_fallback_detector_result_must_be_ammo():
    keyword = Record(FormKey("Mod.esp", 0x810), "KYWD", "ap_ModRifle_Receiver")
    store, weapon, leveled = _leveled_list_world({"AmmoKeyword": FormLink(keyword.form_key)})
    store.add(keyword)
    candidate = Candidate(kind="LVLI", form_key=leveled.form_key, base_weapon=weapon.form_key)

    ReverseMapConfirmer().confirm([candidate], _confirmation(store, version=SchemaVersion.UNKNOWN))

    assert not candidate.confirmed
    assert candidate.ammo is None


def test_fallback_detector_confirms_a_real_ammo_change():
    store, weapon, leveled = _leveled_list_world({"Ammo": FormLink(FormKey("Mod.esp", 0x801))})
    candidate = Candidate(kind="LVLI", form_key=leveled.form_key, base_weapon=weapon.form_key)

    ReverseMapConfirmer().confirm([candidate], _confirmation(store, version=SchemaVersion.UNKNOWN))

    assert candidate.confirmed
    assert candidate.ammo == FormKey("Mod.esp", 0x801)
    assert candidate.ammo_label == "ModAmmo_762"
    assert candidate.confirm_reason == "Detector FallbackScanDetector reported change"
