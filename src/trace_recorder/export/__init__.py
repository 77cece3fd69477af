"""Session export: Markdown report, JSON document and ZIP archive."""

from trace_recorder.export.archive import ZipArchiveWriter
from trace_recorder.export.exporter import ExportResult, SessionExporter
from trace_recorder.export.markdown import analyze_odata_operations, generate_markdown, sequence_summary

__all__ = [
    "ExportResult",
    "SessionExporter",
    "ZipArchiveWriter",
    "analyze_odata_operations",
    "generate_markdown",
    "sequence_summary",
]
