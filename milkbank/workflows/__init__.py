"""Use-case orchestration over the engine and the SQLite repositories."""
from .administration import AdministrationWorkflow
from .donors import DonorWorkflow
from .intake import IntakeWorkflow
from .pooling import PoolingWorkflow
from .processing import ProcessingWorkflow
from .receivers import ReceiverWorkflow
from .waste import WasteWorkflow

__all__ = [
    "AdministrationWorkflow",
    "DonorWorkflow",
    "IntakeWorkflow",
    "PoolingWorkflow",
    "ProcessingWorkflow",
    "ReceiverWorkflow",
    "WasteWorkflow",
]
