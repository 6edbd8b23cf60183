"""Conversion between mindmap branches and directory trees."""

from .sanitize import sanitize, disambiguate
from .exporter import TreeExporter, ExportReport, export_mindmap
from .importer import TreeImporter, ImportedTree, CardDraft, import_tree, read_readme
from .mirror import MirrorPlan, scan_tree, plan_mirror, apply_mirror_plan, mirror_tree

__all__ = [
    'sanitize',
    'disambiguate',
    'TreeExporter',
    'ExportReport',
    'export_mindmap',
    'TreeImporter',
    'ImportedTree',
    'CardDraft',
    'import_tree',
    'read_readme',
    'MirrorPlan',
    'scan_tree',
    'plan_mirror',
    'apply_mirror_plan',
    'mirror_tree',
]
