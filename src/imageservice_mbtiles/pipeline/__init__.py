"""Concurrent fetch, subdivide and write pipeline."""

from .blank import BlankTileClassifier
from .progress import ProgressReporter
from .queues import ClosableQueue, OutstandingWork, QueueClosed, TaskQueue
from .runner import PipelineError, PipelineSummary, PyramidPipeline, build_pyramid
from .workers import FetchWorkerPool
from .writer import TileStoreWriter, WriterStats

__all__ = [
    "BlankTileClassifier",
    "ClosableQueue",
    "FetchWorkerPool",
    "OutstandingWork",
    "PipelineError",
    "PipelineSummary",
    "ProgressReporter",
    "PyramidPipeline",
    "QueueClosed",
    "TaskQueue",
    "TileStoreWriter",
    "WriterStats",
    "build_pyramid",
]
