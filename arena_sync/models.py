from dataclasses import dataclass, field


@dataclass(frozen=True)
class Position:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def as_tuple(self):
        return (self.x, self.y, self.z)


ORIGIN = Position()


@dataclass(frozen=True)
class Peer:
    id: int
    position: Position = field(default=ORIGIN)

    def moved_to(self, position: Position) -> "Peer":
        return Peer(self.id, position)
