"""Outbound map renderer contract."""

from typing import Protocol

from .models import Coords


class MapRenderer(Protocol):
    """Receives display notifications; never changes tracking state"""

    def add_route_segment(self, prev: Coords, curr: Coords) -> None: ...

    def update_marker_position(self, coords: Coords) -> None: ...

    def clear_route(self) -> None: ...


class NullRenderer:
    """Renderer for headless runs"""

    def add_route_segment(self, prev: Coords, curr: Coords):
        pass

    def update_marker_position(self, coords: Coords):
        pass

    def clear_route(self):
        pass
