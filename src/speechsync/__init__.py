"""
SpeechSync - Speech-synchronised teleprompter feedback engine.

Aligns recognized words with a prepared script and turns them into live
highlighting, pace feedback, filler-word detection, adaptive scrolling and
an end-of-session report.
"""

__version__ = "0.1.0"

from .aligner import KaraokeAligner
from .events import WordEvent
from .fillers import FillerWordDetector
from .pacing import PaceAnalyzer
from .report import SessionReportGenerator, SessionSummaryReport
from .script_index import ScriptIndex, build_script_index
from .scroll import AdaptiveScrollController
from .session import PracticeSession
from .threaded_session import ThreadedSession

__all__ = [
    "WordEvent",
    "ScriptIndex",
    "build_script_index",
    "KaraokeAligner",
    "PaceAnalyzer",
    "FillerWordDetector",
    "AdaptiveScrollController",
    "SessionReportGenerator",
    "SessionSummaryReport",
    "PracticeSession",
    "ThreadedSession",
]
