"""
RecordCache — the in-memory rows a view renders, updated optimistically.

Every optimistic apply hands back the values it replaced so the caller
can restore exactly those on failure.
"""

from typing import Dict, List


class RecordCache:

    def __init__(self, rows=()):
        self._rows: Dict[object, dict] = {}
        self.load(rows)

    def load(self, rows):
        """Replace the whole cache, keeping the given order."""
        self._rows = {row["id"]: dict(row) for row in rows}

    def __contains__(self, row_id):
        return row_id in self._rows

    def __len__(self):
        return len(self._rows)

    def get(self, row_id):
        row = self._rows.get(row_id)
        return dict(row) if row is not None else None

    def rows(self) -> List[dict]:
        return [dict(r) for r in self._rows.values()]

    def apply(self, row_id, changes) -> dict:
        """Merge changes into a row; returns the prior values of the changed keys.

        Unknown rows are left alone and yield an empty snapshot.
        """
        row = self._rows.get(row_id)
        if row is None:
            return {}
        prior = {key: row.get(key) for key in changes}
        row.update(changes)
        return prior

    def restore(self, row_id, snapshot):
        row = self._rows.get(row_id)
        if row is not None:
            row.update(snapshot)

    def merge(self, row_id, fresh, skip=()):
        """Overwrite a row with authoritative values, except fields in skip."""
        row = self._rows.setdefault(row_id, {"id": row_id})
        for key, value in fresh.items():
            if key not in skip:
                row[key] = value

    def insert(self, row):
        self._rows[row["id"]] = dict(row)

    def discard(self, row_id):
        self._rows.pop(row_id, None)
