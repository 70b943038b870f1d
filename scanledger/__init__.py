"""ScanLedger - Application configuration and output routing."""

import os
import re
from typing import Any, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    import argparse

__version__ = "0.1.0"

DEFAULT_SCAN_FOLDER = os.path.join(os.getcwd(), "test-scans")
DEFAULT_STATE_DIR = os.path.join(os.getcwd(), "state")


def _strip_rich_markup(text: str) -> str:
    """Remove Rich markup tags like [red], [/red], [bold], etc."""
    return re.sub(r'\[/?[a-zA-Z_]+\]', '', text)


def _parse_folders(value: Optional[str]) -> List[str]:
    """Split a comma-separated FOLDERS value, dropping empty entries."""
    if not value:
        return []
    return [os.path.abspath(part.strip()) for part in value.split(",") if part.strip()]


class ScanLedger:
    """Central configuration and output routing for ScanLedger.

    Holds plain configuration values only. The registry, cache and
    pipeline are constructed explicitly in main.build_service() and passed
    to whoever needs them.
    """

    # Configuration (environment + CLI)
    folders: List[str] = []
    state_dir: str = DEFAULT_STATE_DIR
    llm_provider_name: str = "openai"
    backup_count: int = 5
    scan_batch_size: int = 100

    # UI app reference (None = CLI mode)
    _app: Optional[Any] = None

    # Progress tracking
    _total_items: int = 0
    _current_item: int = 0

    @classmethod
    def configure(cls, args: Optional["argparse.Namespace"] = None) -> None:
        """Initialize configuration from environment and parsed CLI args."""
        cls.folders = _parse_folders(os.environ.get('FOLDERS')) or [DEFAULT_SCAN_FOLDER]
        cls.state_dir = os.path.abspath(os.environ.get('STATE_DIR', DEFAULT_STATE_DIR))
        cls.llm_provider_name = os.environ.get('LLM_PROVIDER', 'openai')
        cls.backup_count = int(os.environ.get('BACKUP_COUNT', '5'))
        cls.scan_batch_size = int(os.environ.get('SCAN_BATCH_SIZE', '100'))

        folders_arg = getattr(args, 'folders', None)
        if folders_arg:
            cls.folders = _parse_folders(folders_arg)
        state_dir_arg = getattr(args, 'state_dir', None)
        if state_dir_arg:
            cls.state_dir = os.path.abspath(state_dir_arg)

    @classmethod
    def set_app(cls, app: Any) -> None:
        """Set the Textual app reference for UI updates."""
        cls._app = app

    @classmethod
    def print_left(cls, line1: str, line2: str) -> None:
        """Add entry to activity log (left panel in TUI, stdout in CLI)."""
        if cls._app is not None:
            cls._app.call_from_thread(cls._app.add_activity, line1, line2)
        else:
            print(_strip_rich_markup(line1))
            print(_strip_rich_markup(line2))

    @classmethod
    def print_right(cls, message: str) -> None:
        """Add line to debug log (right panel in TUI, stdout in CLI)."""
        if cls._app is not None:
            cls._app.call_from_thread(cls._app.add_debug, message)
        else:
            print(_strip_rich_markup(message))

    @classmethod
    def set_progress(cls, current: int, total: int) -> None:
        """Update progress bar and label."""
        cls._current_item = current
        cls._total_items = total
        if cls._app is not None:
            cls._app.call_from_thread(cls._app.set_progress, current, total)
