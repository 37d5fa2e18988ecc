"""Pipeline stages of the QReport export engine.

Stages of one export run:
1. stage_budget - Pre-flight disk space check
2. stage_photo - Decode, orient, resize, watermark, re-encode
3. stage_document - Word report (python-docx)
4. stage_text - 80-column plain-text summary
5. stage_folder - FOTO/ folder with deterministic names

The orchestrator drives them through one state machine and one output
transaction. A single NamingResolver per run keeps photo names identical
across all outputs.
"""

from .cancellation import CancellationToken, ExportCancelled
from .naming import (
    PHOTO_FOLDER_NAME,
    NamingResolver,
    document_file_name,
    export_directory_name,
    normalize_component,
    photo_index_file_name,
    text_file_name,
)
from .orchestrator import ExportOrchestrator, ExportStateMachine, InvalidTransition
from .stage_budget import StorageBudgeter
from .stage_document import AssembledDocument, DocumentAssembler
from .stage_folder import PhotoFolderExporter, render_photo_index
from .stage_photo import PhotoProcessor, iter_processed
from .stage_text import TextReportRenderer

__all__ = [
    # Cancellation
    "CancellationToken",
    "ExportCancelled",
    # Naming
    "NamingResolver",
    "normalize_component",
    "document_file_name",
    "text_file_name",
    "photo_index_file_name",
    "export_directory_name",
    "PHOTO_FOLDER_NAME",
    # Photo processing
    "PhotoProcessor",
    "iter_processed",
    # Storage budget
    "StorageBudgeter",
    # Document
    "AssembledDocument",
    "DocumentAssembler",
    # Text report
    "TextReportRenderer",
    # Photo folder
    "PhotoFolderExporter",
    "render_photo_index",
    # Orchestration
    "ExportOrchestrator",
    "ExportStateMachine",
    "InvalidTransition",
]
