"""Data structures for flattened metric observations."""
from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass
class SeriesPoint:
    """A single gauge observation with labels."""
    name: str
    labels: Dict[str, str]
    value: float

    def label_names(self) -> Tuple[str, ...]:
        """Sorted label names; together with the name they identify the family."""
        return tuple(sorted(self.labels))

    def gauge_key(self) -> Tuple[str, Tuple[str, ...]]:
        return (self.name, self.label_names())

