"""
Feedboard Templates

Template definitions and the directory-backed store that loads them.
"""

from .schemas import (
    Execution,
    Step,
    Template,
    TemplateInput,
    TemplateMeta,
    TemplateOutput,
    Transform,
)
from .store import TemplateStore

__all__ = [
    "Template",
    "TemplateMeta",
    "TemplateInput",
    "TemplateOutput",
    "Execution",
    "Step",
    "Transform",
    "TemplateStore",
]
