# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# plugin_writer.py
#
# PatchPlugin を Fallout 4 形式のプラグインファイルとして書き出す。
#
# 書き出すのはヘッダ (TES4: HEDR / CNAM / MAST+DATA) と、WEAP グループ内の
# オーバーライドレコード (EDID + 弾薬リンク) のみ。武器レコードの全サブレコードを
# 再エンコードするコーデックは外部ツール側の責務。
# =============================================================================

from __future__ import annotations

import logging
import struct
from pathlib import Path

from errors import AutoPatcherError
from form_key import FormKey
from patch_builder import PatchPlugin

FORM_VERSION = 131
HEDR_VERSION = 1.0
NEXT_OBJECT_ID = 0x800
FLAG_LIGHT = 0x0200

AMMO_LINK_SUBRECORD = b"DNAM"


class PluginWriteError(AutoPatcherError):
    pass


def _subrecord(signature: bytes, payload: bytes) -> bytes:
    if len(payload) > 0xFFFF:
        raise PluginWriteError(f"{signature!r} サブレコードが大きすぎます ({len(payload)} bytes)")
    return signature + struct.pack("<H", len(payload)) + payload


def _zstring(text: str) -> bytes:
    return text.encode("cp1252", errors="replace") + b"\x00"


def _record(signature: bytes, flags: int, form_id: int, body: bytes) -> bytes:
    header = struct.pack("<4sIIIIHH", signature, len(body), flags, form_id, 0, FORM_VERSION, 0)
    return header + body


def _group(label: bytes, body: bytes) -> bytes:
    header = struct.pack("<4sI4siHHI", b"GRUP", 24 + len(body), label, 0, 0, 0, 0)
    return header + body


class PluginWriter:
    """PatchPlugin をバイナリのプラグインファイルに書き出すライター。"""

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)

    def write(self, plugin: PatchPlugin) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / plugin.name
        data = encode_plugin(plugin)
        path.write_bytes(data)
        logging.info(
            f"[PluginWriter] {path.name} を書き出しました "
            f"(オーバーライド {len(plugin.overrides)} 件, マスター {len(plugin.masters)} 件, {len(data)} bytes)"
        )
        return path


def encode_form_id(key: FormKey, masters: list[str]) -> int:
    """マスター一覧の位置を上位 8bit に持つ FormID に変換する。"""
    lowered = [m.lower() for m in masters]
    try:
        index = lowered.index(key.plugin_key)
    except ValueError as e:
        raise PluginWriteError(f"{key.plugin} がマスター一覧にありません") from e
    return (index << 24) | (key.local_id & 0x00FFFFFF)


def encode_header(plugin: PatchPlugin) -> bytes:
    body = _subrecord(b"HEDR", struct.pack("<fiI", HEDR_VERSION, len(plugin.overrides), NEXT_OBJECT_ID))
    body += _subrecord(b"CNAM", _zstring(plugin.author))
    for master in plugin.masters:
        body += _subrecord(b"MAST", _zstring(master))
        body += _subrecord(b"DATA", struct.pack("<Q", 0))
    flags = FLAG_LIGHT if plugin.light else 0
    return _record(b"TES4", flags, 0, body)


def encode_plugin(plugin: PatchPlugin) -> bytes:
    data = encode_header(plugin)
    if not plugin.overrides:
        return data
    records = b""
    for override in plugin.overrides.values():
        body = b""
        if override.editor_id:
            body += _subrecord(b"EDID", _zstring(override.editor_id))
        body += _subrecord(AMMO_LINK_SUBRECORD, struct.pack("<I", encode_form_id(override.ammo, plugin.masters)))
        records += _record(b"WEAP", 0, encode_form_id(override.weapon, plugin.masters), body)
    return data + _group(b"WEAP", records)


def read_header(data: bytes) -> dict:
    """書き出したファイルのヘッダを読み戻す。フラグとマスター一覧を返す。"""
    signature, size, flags, _, _, _, _ = struct.unpack_from("<4sIIIIHH", data, 0)
    if signature != b"TES4":
        raise PluginWriteError(f"TES4 ヘッダではありません: {signature!r}")
    offset = 24
    end = 24 + size
    masters = []
    record_count = 0
    while offset < end:
        sub_sig, sub_size = struct.unpack_from("<4sH", data, offset)
        payload = data[offset + 6:offset + 6 + sub_size]
        if sub_sig == b"MAST":
            masters.append(payload.rstrip(b"\x00").decode("cp1252"))
        elif sub_sig == b"HEDR":
            _, record_count, _ = struct.unpack("<fiI", payload)
        offset += 6 + sub_size
    return {"flags": flags, "light": bool(flags & FLAG_LIGHT), "masters": masters, "record_count": record_count}
