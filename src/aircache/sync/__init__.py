"""
Synchronisation engine: slot versioning, locks, full and incremental
refresh, attachment downloads and the worker that schedules them.
"""

from aircache.sync.attachments import AttachmentPipeline, BoundedWorkerPool, HttpAttachmentFetcher
from aircache.sync.incremental import IncrementalReconciler
from aircache.sync.lock import LockCoordinator
from aircache.sync.refresh import FullRefreshPipeline
from aircache.sync.version import VersionManager
from aircache.sync.worker import RefreshWorker

__all__ = [
    "AttachmentPipeline",
    "BoundedWorkerPool",
    "FullRefreshPipeline",
    "HttpAttachmentFetcher",
    "IncrementalReconciler",
    "LockCoordinator",
    "RefreshWorker",
    "VersionManager",
]
