"""
Pipeline services - process execution, discovery, persistence, event logging
Each service has a single responsibility
"""

from .process_runner import ProcessRunner
from .event_logger import EventLogger, EventLogStatusSink
from .module_scanner import ModuleScanner, stage_id_for
from .profile_store import ProfileStore

__all__ = ['ProcessRunner', 'EventLogger', 'EventLogStatusSink', 'ModuleScanner', 'ProfileStore', 'stage_id_for']
