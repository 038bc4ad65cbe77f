# src/deploy_pipeline/actions/__init__.py

from .base import Action, ActionScope
from .echo import Echo
from .record import RecordArtifact
from .report import PublishReport
from .variables import SetVariable

# name used in pipeline documents -> implementation
ACTIONS = {
    cls.name: cls
    for cls in (SetVariable, RecordArtifact, PublishReport, Echo)
}

__all__ = [
    "ACTIONS",
    "Action",
    "ActionScope",
    "Echo",
    "RecordArtifact",
    "PublishReport",
    "SetVariable",
]
