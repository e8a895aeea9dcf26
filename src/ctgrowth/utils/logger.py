#########################################################################################
##
##                               CENTRALIZED LOGGING
##                               (utils/logger.py)
##
##                                Kevin McBride 2026
##
#########################################################################################

# IMPORTS ===============================================================================

import logging
import sys


# CLASS =================================================================================

class LoggerManager:
    """Singleton that owns the ``ctgrowth`` logger hierarchy.

    All package modules request child loggers through :meth:`get_logger`, so a
    single :meth:`configure` call controls level, output stream and format for
    the whole package.

    Example
    -------
    .. code-block:: python

        from ctgrowth import LoggerManager

        LoggerManager().configure(level=logging.DEBUG)
        logger = LoggerManager().get_logger("opt")
    """

    _instance = None
    _initialized = False

    ROOT_NAME = "ctgrowth"
    DEFAULT_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
    DEFAULT_DATE_FORMAT = "%H:%M:%S"


    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance


    def __init__(self):
        if LoggerManager._initialized:
            return
        LoggerManager._initialized = True

        self._root = logging.getLogger(self.ROOT_NAME)
        self._root.setLevel(logging.INFO)
        self._root.propagate = False
        self._handler = None
        self._formatter = logging.Formatter(
            fmt=self.DEFAULT_FORMAT, datefmt=self.DEFAULT_DATE_FORMAT
        )
        self._install_handler(logging.StreamHandler(sys.stdout))


    def _install_handler(self, handler: logging.Handler) -> None:
        if self._handler is not None:
            self._root.removeHandler(self._handler)
            self._handler.close()
        handler.setFormatter(self._formatter)
        self._root.addHandler(handler)
        self._handler = handler


    def configure(
        self,
        enabled: bool = True,
        level: int = logging.INFO,
        output: str | None = None,
        format: str | None = None,
        date_format: str | None = None,
    ) -> None:
        """Configure the package logger.

        Parameters
        ----------
        enabled : bool
            ``False`` silences all package logging.
        level : int
            Logging level for the root ``ctgrowth`` logger.
        output : str, optional
            File path; logs go to stdout when omitted.
        format : str, optional
            Record format string.
        date_format : str, optional
            Timestamp format string.
        """
        self._formatter = logging.Formatter(
            fmt=format or self.DEFAULT_FORMAT,
            datefmt=date_format or self.DEFAULT_DATE_FORMAT,
        )

        if output is None:
            handler = logging.StreamHandler(sys.stdout)
        else:
            handler = logging.FileHandler(output)
        self._install_handler(handler)

        # child loggers only see the root through its level
        self._root.setLevel(level if enabled else logging.CRITICAL + 1)


    def get_logger(self, name: str) -> logging.Logger:
        """Return the child logger ``ctgrowth.<name>``."""
        return logging.getLogger(f"{self.ROOT_NAME}.{name}")


    def set_level(self, level: int, module: str | None = None) -> None:
        """Set the level of the root logger or of one child module logger."""
        if module is None:
            self._root.setLevel(level)
        else:
            self.get_logger(module).setLevel(level)
