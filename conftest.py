"""
テスト共通のフィクスチャ。

Mod.esp だけで完結する小さなロードオーダーを組み立てる:
    A   (AMMO) ModAmmo_556       ... W / W2 の元の弾薬
    A2  (AMMO) ModAmmo_762       ... OMOD M が差し替える弾薬
    P   (KYWD) ap_ModRifle_Receiver
    W   (WEAP) ModRifle          ... Ammo=A, AttachParentSlots=[P]
    W2  (WEAP) ModCarbine        ... Ammo=A, AttachParentSlots=[P]
    X   (COBJ) co_ModRifle       ... CreatedObject=W
    M   (OMOD) mod_ModRifle_Receiver_762 ... AttachPoint=P, Properties=[Ammo -> A2]
    XM  (COBJ) co_mod_ModRifle_Receiver_762 ... CreatedObject=M
"""

import sys
import logging
from pathlib import Path
from types import SimpleNamespace

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from form_key import FormKey
from records import FormLink, InMemoryRecordStore, Record
from schema import AMMO, COBJ, KEYWORD, OMOD, WEAPON

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)

MOD = "Mod.esp"


def mod_key(local_id: int) -> FormKey:
    return FormKey(MOD, local_id)


def build_world_records():
    a, a2, p = mod_key(0x800), mod_key(0x801), mod_key(0x810)
    w, w2 = mod_key(0x820), mod_key(0x821)
    x, m, xm = mod_key(0x830), mod_key(0x840), mod_key(0x831)
    records = [
        Record(a, AMMO, "ModAmmo_556"),
        Record(a2, AMMO, "ModAmmo_762"),
        Record(p, KEYWORD, "ap_ModRifle_Receiver"),
        Record(w, WEAPON, "ModRifle", {
            "Ammo": FormLink(a, AMMO),
            "AttachParentSlots": [FormLink(p, KEYWORD)],
        }),
        Record(w2, WEAPON, "ModCarbine", {
            "Ammo": FormLink(a, AMMO),
            "AttachParentSlots": [FormLink(p, KEYWORD)],
        }),
        Record(x, COBJ, "co_ModRifle", {"CreatedObject": FormLink(w)}),
        Record(m, OMOD, "mod_ModRifle_Receiver_762", {
            "AttachPoint": FormLink(p, KEYWORD),
            "Properties": [{"Property": "Ammo", "Value": FormLink(a2, AMMO)}],
        }),
        Record(xm, COBJ, "co_mod_ModRifle_Receiver_762", {"CreatedObject": FormLink(m)}),
    ]
    keys = SimpleNamespace(a=a, a2=a2, p=p, w=w, w2=w2, x=x, m=m, xm=xm)
    return records, keys


@pytest.fixture
def mod_world():
    """上記ロードオーダーの InMemoryRecordStore と各 FormKey。"""
    records, keys = build_world_records()
    store = InMemoryRecordStore(records, load_order=[MOD])
    return SimpleNamespace(store=store, keys=keys)


@pytest.fixture
def world_json():
    """同じロードオーダーを Mutagen 形式の JSON エクスポートとして表した辞書。"""
    def fk(local_id):
        return f"{MOD}:{local_id:08X}"

    return {
        "schema_version": "mutagen_v51",
        "load_order": [MOD],
        "records": [
            {"form_key": fk(0x800), "category": "AMMO", "editor_id": "ModAmmo_556", "fields": {}},
            {"form_key": fk(0x801), "category": "AMMO", "editor_id": "ModAmmo_762", "fields": {}},
            {"form_key": fk(0x810), "category": "KYWD", "editor_id": "ap_ModRifle_Receiver", "fields": {}},
            {"form_key": fk(0x820), "category": "WEAP", "editor_id": "ModRifle",
             "fields": {"Ammo": fk(0x800), "AttachParentSlots": [fk(0x810)]}},
            {"form_key": fk(0x821), "category": "WEAP", "editor_id": "ModCarbine",
             "fields": {"Ammo": fk(0x800), "AttachParentSlots": [fk(0x810)]}},
            {"form_key": fk(0x830), "category": "COBJ", "editor_id": "co_ModRifle",
             "fields": {"CreatedObject": fk(0x820)}},
            {"form_key": fk(0x840), "category": "OMOD", "editor_id": "mod_ModRifle_Receiver_762",
             "fields": {"AttachPoint": fk(0x810),
                        "Properties": [{"Property": "Ammo", "Value": fk(0x801)}]}},
            {"form_key": fk(0x831), "category": "COBJ", "editor_id": "co_mod_ModRifle_Receiver_762",
             "fields": {"CreatedObject": fk(0x840)}},
        ],
    }
