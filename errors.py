# =============================================================================
# Munitions 自動統合フレームワーク v3.0
#
# errors.py
# =============================================================================

class AutoPatcherError(Exception):
    """パッチャー内部で発生する例外の基底クラス。"""


class MissingCollaboratorError(AutoPatcherError):
    """パイプライン開始時にレコードストアやリゾルバが渡されていない場合に送出する。"""

    def __init__(self, name: str):
        super().__init__(f"必須コンポーネントがありません: {name}")
        self.name = name


class OperationCancelled(AutoPatcherError):
    """キャンセル要求を検知した時点で送出する。"""


class FieldAccessError(AutoPatcherError):
    """レコードのフィールド値をデコードできなかった場合に送出する。"""

    def __init__(self, record_label: str, field_name: str, cause: Exception | None = None):
        super().__init__(f"{record_label}.{field_name} の読み取りに失敗: {cause}")
        self.record_label = record_label
        self.field_name = field_name
        self.cause = cause


class RecordStoreError(AutoPatcherError):
    """レコードのエクスポートファイルが読めない、または形式が不正な場合に送出する。"""
