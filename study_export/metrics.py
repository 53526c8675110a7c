"""Per-task metrics that the exporter emits into"""

from collections import Counter, defaultdict


class Metrics:
    """
    A sink for counters and key/value sets, owned by a single export task.

    Counters are named like "<table key>.lineCount" and key/value sets like
    "uniqueAppVersions[<study id>]". Aggregating these across tasks is someone else's job.
    """

    def __init__(self):
        self._counters = Counter()
        self._key_values = defaultdict(set)

    def increment_counter(self, name: str, amount: int = 1) -> None:
        self._counters[name] += amount

    def counter(self, name: str) -> int:
        return self._counters[name]

    def add_key_value(self, key: str, value: str) -> None:
        self._key_values[key].add(value)

    def key_values(self, key: str) -> set[str]:
        return set(self._key_values.get(key, ()))

    def as_json(self) -> dict:
        return {
            "counters": dict(sorted(self._counters.items())),
            "keyValues": {key: sorted(values) for key, values in sorted(self._key_values.items())},
        }
