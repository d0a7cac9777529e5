"""Optional diagnostic visualization for the heatmap loss layer."""

from .visualizer import (
    DiagnosticFrame,
    DiagnosticRender,
    DiagnosticVisualizer,
    DirectorySink,
    VisualizationSink,
    WindowSink,
    find_peak,
    peak_locations,
)

__all__ = [
    "DiagnosticFrame",
    "DiagnosticRender",
    "DiagnosticVisualizer",
    "DirectorySink",
    "VisualizationSink",
    "WindowSink",
    "find_peak",
    "peak_locations",
]
