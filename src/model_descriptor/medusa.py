"""Medusa speculative-decoding module description."""
from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Sequence

from .errors import InvalidConfiguration

# Default choice tree for four Medusa heads.
DEFAULT_MEDUSA_CHOICES: tuple[tuple[int, ...], ...] = (
    (0, ), (0, 0), (1, ), (0, 1), (2, ), (0, 0, 0), (1, 0), (0, 2), (3, ),
    (0, 3), (4, ), (0, 4), (2, 0), (0, 5), (0, 0, 1), (5, ), (0, 6), (6, ),
    (0, 7), (0, 1, 0), (1, 1), (7, ), (0, 8), (0, 0, 2), (3, 0), (0, 9),
    (8, ), (9, ), (1, 0, 0), (0, 2, 0), (1, 2), (0, 0, 3), (4, 0), (2, 1),
    (0, 0, 4), (0, 0, 5), (0, 0, 0, 0), (0, 1, 1), (0, 0, 6), (0, 3, 0),
    (5, 0), (1, 3), (0, 0, 7), (0, 0, 8), (0, 0, 9), (6, 0), (0, 4, 0),
    (1, 4), (7, 0), (0, 1, 2), (2, 0, 0), (3, 1), (2, 2), (8, 0), (0, 5, 0),
    (1, 5), (1, 0, 1), (0, 2, 1), (9, 0), (0, 6, 0), (0, 0, 0, 1), (1, 6),
    (0, 7, 0),
)


@dataclass(frozen=True)
class MedusaModule:
    """Describes the draft-token tree produced by Medusa heads.

    ``max_accepted_tokens`` is the deepest path through the tree (one token
    per head) and ``max_draft_tokens`` the number of tree nodes verified in a
    single step.
    """

    max_accepted_tokens: int
    max_draft_tokens: int
    choices: tuple[tuple[int, ...], ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "choices",
                           tuple(tuple(int(c) for c in choice)
                                 for choice in self.choices))

    @property
    def max_decoding_tokens(self) -> int:
        return self.max_draft_tokens + 1

    @property
    def num_paths(self) -> int:
        """Number of leaves in the choice tree."""
        if not self.choices:
            return 1
        prefixes = {choice[:-1] for choice in self.choices}
        return sum(1 for choice in self.choices if choice not in prefixes)

    @property
    def max_path_len(self) -> int:
        return self.max_accepted_tokens + 1

    @classmethod
    def from_choices(cls,
                     choices: Sequence[Sequence[int]],
                     num_medusa_heads: int) -> "MedusaModule":
        normalised = tuple(tuple(int(c) for c in choice) for choice in choices)
        if not normalised:
            raise InvalidConfiguration("medusa_choices", "choice tree is empty")
        depth = max(len(choice) for choice in normalised)
        if depth > num_medusa_heads:
            raise InvalidConfiguration(
                "medusa_choices",
                f"path depth {depth} exceeds {num_medusa_heads} Medusa heads")
        if len(set(normalised)) != len(normalised):
            raise InvalidConfiguration("medusa_choices", "duplicate paths")
        return cls(max_accepted_tokens=depth,
                   max_draft_tokens=len(normalised),
                   choices=normalised)
