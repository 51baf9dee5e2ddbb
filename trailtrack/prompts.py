"""User-decision surface: confirmations, text prompts and notices."""

import asyncio
from typing import Optional, Protocol


class DecisionSurface(Protocol):
    async def confirm(self, message: str) -> bool: ...

    async def prompt_text(self, message: str, default: str = "") -> Optional[str]: ...

    def notify(self, message: str) -> None: ...


class ConsoleDecisions:
    """Terminal prompts; input() runs in a worker thread so the loop keeps going"""

    async def _ask(self, prompt: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(input, prompt)
        except EOFError:
            return None

    async def confirm(self, message: str) -> bool:
        answer = await self._ask(f"{message}\n[y/N] ")
        return bool(answer) and answer.strip().lower() in ("y", "yes")

    async def prompt_text(self, message: str, default: str = "") -> Optional[str]:
        """Returns None when the user cancels (empty input is 'use default')"""
        suffix = f" [{default}]" if default else ""
        answer = await self._ask(f"{message}{suffix}: ")
        if answer is None:
            return None
        return answer if answer.strip() else default

    def notify(self, message: str):
        print(f"\n*** {message}")
