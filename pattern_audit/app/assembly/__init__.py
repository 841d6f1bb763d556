from .pipeline import assemble_memo_data
from .precedence import MERGE_RULES, FieldRule, merge_preview_fields, resolve_field
from .cross_border import assemble_cross_border_audit
from .via_negativa import derive_via_negativa

__all__ = [
    "assemble_memo_data",
    "MERGE_RULES",
    "FieldRule",
    "merge_preview_fields",
    "resolve_field",
    "assemble_cross_border_audit",
    "derive_via_negativa",
]
