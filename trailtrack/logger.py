"""Event log for a Trailtrack run.

Every lifecycle transition, accepted or rejected fix, source error, backup
write and save-or-discard outcome goes through one Logger, written as
``[timestamp] message | {json data}``.
"""

import json
from datetime import datetime
from typing import Optional, Callable


class Logger:
    """Writes tracking events to stdout, an optional log file and an optional callback.

    The callback receives ``(message, data)``; the CLI points it at the
    websocket bridge so connected clients see the same log as the terminal.
    """

    def __init__(self, log_path: Optional[str] = None, callback: Optional[Callable] = None,
                 echo: bool = True):
        self.log_path = log_path
        self.callback = callback
        self.echo = echo
        self.file = None
        if log_path:
            self.file = open(log_path, "a")
            self._write_header()

    def _write_header(self):
        if self.file:
            self.file.write(f"\n{'='*60}\n")
            self.file.write(f"Trailtrack route log - {datetime.now().isoformat()}\n")
            self.file.write(f"{'='*60}\n\n")
            self.file.flush()

    def log(self, message: str, data: Optional[dict] = None):
        """Log a message with optional structured data"""
        timestamp = datetime.now().isoformat()
        line = f"[{timestamp}] {message}"
        if data:
            line += f" | {json.dumps(data, default=str)}"
        if self.echo:
            print(line)
        if self.file:
            self.file.write(line + "\n")
            self.file.flush()
        if self.callback:
            self.callback(message, data)

    def close(self):
        if self.file:
            self.file.close()
            self.file = None
