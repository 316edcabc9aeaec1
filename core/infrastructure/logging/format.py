from typing import Any, Dict

LEVEL_COLORS = {
    "CRITICAL": "red",
    "DEBUG": "white",
    "ERROR": "magenta",
    "INFO": "blue",
    "SUCCESS": "green",
    "TRACE": "dim",
    "WARNING": "yellow",
}

# Shown inline on the console; everything else only reaches the file sinks.
CONSOLE_CONTEXT_KEYS = ("request_id", "recipient_id", "job")


class NotificationLogFormat:
    """Render Loguru records for the console and file sinks.

    Parameters
    ----------
    record: Dict[str, Any]
        Loguru record dictionary.
    """

    def __init__(self, record: Dict[str, Any]) -> None:
        self.record = record
        self.time_str = record["time"].strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        self.level = record["level"].name
        self.color = LEVEL_COLORS.get(self.level, "white")

        function = record["function"]
        if function == "<module>":
            function = "\\<module\\>"
        self.location = f"{record['name']}:{function}:{record['line']}"

    def _escape(self, text: Any) -> str:
        return str(text).replace("{", "{{").replace("}", "}}").replace("<", "\\<")

    def _context(self, keys=None) -> str:
        extra = self.record["extra"]
        parts = [
            f"{key}={self._escape(value)}"
            for key, value in extra.items()
            if value is not None and (keys is None or key in keys)
        ]
        return " ".join(parts)

    def log_console_format(self) -> str:
        context = self._context(CONSOLE_CONTEXT_KEYS)
        context = f" <dim>[{context}]</dim>" if context else ""
        return (
            f"<dim>{self.time_str}</dim> | "
            f"<{self.color}>{self.level:8}</{self.color}> | "
            f"<cyan>{self.location}</cyan>{context} - "
            f"<{self.color}>{{message}}</{self.color}>\n{{exception}}"
        )

    def log_file_format(self) -> str:
        context = self._context()
        context = f" | {context}" if context else ""
        return (
            f"{self.time_str} | {self.level:8} | {self.location} - "
            f"{{message}}{context}\n{{exception}}"
        )
