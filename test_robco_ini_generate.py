#!/usr/bin/env python3
"""
Test script for robco_ini_generate module.
"""

import sys
import logging
import zipfile
from pathlib import Path

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)

# Add current directory to path
sys.path.insert(0, str(Path(__file__).parent))

from form_key import FormKey
from patch_builder import PatchPlugin
from records import FormLink, Record
from robco_ini_generate import WEAPON_INI_NAME, RobcoIniWriter, _process_overrides


def _plugin():
    plugin = PatchPlugin(name="TestPatch.esp")
    ammo = Record(FormKey("Mod.esp", 0x801), "AMMO", "ModAmmo_762")
    for local_id, editor_id in ((0x4822B, "10mmPistol"), (0x4F46A, "AssaultRifle")):
        weapon = Record(FormKey("Fallout4.esm", local_id), "WEAP", editor_id,
                        {"Ammo": FormLink(FormKey("Fallout4.esm", 0x1F276), "AMMO")})
        plugin.set_weapon_ammo(weapon, ammo, "Ammo")
    return plugin


def test_override_lines():
    lines = _process_overrides(_plugin()).weapon_set_ammo_lines
    assert "filterByWeapons=Fallout4.esm|0004822B:setNewAmmo=Mod.esp|00000801" in lines
    assert "filterByWeapons=Fallout4.esm|0004F46A:setNewAmmo=Mod.esp|00000801" in lines
    assert lines[0].startswith("; [Fallout4.esm] 10mmPistol")
    assert len(lines) == 4


def test_robco_ini_generation(tmp_path):
    """Test the Robco INI generation into a temporary directory."""
    print("=" * 60)
    print("Testing Robco INI Generation")
    print("=" * 60)

    robco_patcher_dir = tmp_path / 'Robco Patcher'
    ini_path = RobcoIniWriter(robco_patcher_dir).write(_plugin())

    expected = robco_patcher_dir / 'F4SE' / 'Plugins' / 'RobCo_Patcher' / 'weapon' / WEAPON_INI_NAME
    assert ini_path == expected
    content = ini_path.read_text(encoding='utf-8')
    assert content.startswith("; Munitions Auto-Patcher: Set Weapon Ammo")
    assert content.count("filterByWeapons=") == 2

    zip_path = tmp_path / 'Robco Patcher.zip'
    assert zip_path.is_file()
    with zipfile.ZipFile(zip_path) as archive:
        names = archive.namelist()
    assert any(name.endswith(WEAPON_INI_NAME) for name in names)


def test_zip_is_optional(tmp_path):
    RobcoIniWriter(tmp_path / 'robco', create_zip=False).write(_plugin())
    assert not (tmp_path / 'robco.zip').exists()


if __name__ == '__main__':
    import pytest
    sys.exit(pytest.main([__file__, "-v"]))
