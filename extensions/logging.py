from __future__ import annotations
import logging
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Optional

# Per-pass context: which node is the scheduler visiting right now?
_CURRENT_NODE: ContextVar[Optional[str]] = ContextVar("_CURRENT_NODE", default=None)

_VARIANT_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class _NodeFilter(logging.Filter):
    """
    Stamp every record with the node currently being visited (``-`` outside
    a node visit) so handlers can show it without each call site passing it.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        if not hasattr(record, "node"):
            record.node = _CURRENT_NODE.get() or "-"
        return True


def notify(logger: logging.Logger, message: str, variant: str = "info") -> None:
    """Log ``message`` at the level matching a toast variant (info/success/warning/error)."""
    if not message:
        return
    logger.log(_VARIANT_LEVELS.get(variant, logging.INFO), message)


class LoggingExtension:
    def __init__(
        self,
        log_file: Optional[Path] = None,
        *,
        global_level: int = logging.INFO,
        file_level: Optional[int] = None,  # default to global_level if None
    ) -> None:
        self.log_file = Path(log_file) if log_file else None
        self.global_level = global_level
        self.file_level = file_level if file_level is not None else global_level
        self._node_filter = _NodeFilter()
        self._file_handler: Optional[logging.Handler] = None
        self._console_handler: Optional[logging.Handler] = None

        # Console formatter/handler on root
        self._install_console(self.global_level)

        if self.log_file is not None:
            self._install_file(self.log_file, self.file_level)

        # Make root permissive; rely on handler levels to filter.
        logging.getLogger().setLevel(logging.DEBUG)

    # ---------------- Console ----------------

    def _install_console(self, level: int) -> None:
        root = logging.getLogger()
        # Remove any default handlers (e.g., from basicConfig)
        for h in list(root.handlers):
            if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler):
                root.removeHandler(h)

        ch = logging.StreamHandler()
        ch.setLevel(level)
        ch.addFilter(self._node_filter)
        ch.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(node)s] %(message)s", datefmt="%H:%M:%S"))
        root.addHandler(ch)
        self._console_handler = ch

    # ---------------- Session file ----------------

    def _install_file(self, path: Path, level: int) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, mode="a", encoding="utf-8")
        fh.setLevel(level)
        fh.addFilter(self._node_filter)
        fh.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] [%(node)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logging.getLogger().addHandler(fh)
        self._file_handler = fh

    # ---------------- Context helpers ----------------

    @staticmethod
    def set_node_context(node: str) -> Token:
        """
        Bind the node being visited. Returns a token you must reset when the
        visit is over.
        """
        return _CURRENT_NODE.set(str(node))

    @staticmethod
    def reset_node_context(token: Token) -> None:
        try:
            _CURRENT_NODE.reset(token)
        except ValueError:
            # token created in another context; just clear
            _CURRENT_NODE.set(None)

    @staticmethod
    def current_node() -> Optional[str]:
        return _CURRENT_NODE.get()

    # ---------------- Cleanup ----------------

    def close(self) -> None:
        root = logging.getLogger()
        ch = self._console_handler
        if ch is not None:
            self._console_handler = None
            root.removeHandler(ch)
        fh = self._file_handler
        if fh is None:
            return
        self._file_handler = None
        root.removeHandler(fh)
        fh.flush()
        fh.close()
