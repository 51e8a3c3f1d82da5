from typing import Dict, Iterable, Optional, Set

from biometric.parser import normalize_name

_UNSEEN = object()


def name_keys(employee) -> Set[str]:
    """All normalized spellings a scanner might hold for this employee."""
    first = normalize_name(employee.first_name)
    last = normalize_name(employee.last_name)
    middle = normalize_name(getattr(employee, "middle_name", None) or "")

    keys = set()
    if first and last:
        keys.add(f"{last} {first}")
        keys.add(f"{first} {last}")
        keys.add(f"{last} {first[0]}")
        # "Nodado A" style with the first word of a compound first name
        keys.add(f"{last} {first.split()[0]}")
        if middle:
            keys.add(f"{last} {first} {middle}")
            keys.add(f"{first} {middle} {last}")
            keys.add(f"{last} {first} {middle[0]}")
    if last:
        keys.add(last)

    keys.discard("")
    return keys


def _claim(index: Dict[str, Optional[int]], ambiguous: Set[str], key: str, employee_id: int):
    owner = index.get(key, _UNSEEN)
    if owner is _UNSEEN:
        index[key] = employee_id
    elif owner != employee_id:
        index[key] = None
        ambiguous.add(key)


class EmployeeMatcher:
    """
    Exact lookup of normalized device names against the employee directory.

    A key claimed by more than one employee is ambiguous and never matches,
    the punch is archived unmatched instead of being pinned on the wrong person.
    An explicit ``biometric_name`` wins over derived spellings.
    """

    def __init__(self, employees: Iterable):
        self.ambiguous: Set[str] = set()

        derived: Dict[str, Optional[int]] = {}
        aliases: Dict[str, Optional[int]] = {}
        for emp in employees:
            for key in name_keys(emp):
                _claim(derived, self.ambiguous, key, emp.id)
            alias = normalize_name(getattr(emp, "biometric_name", None) or "")
            if alias:
                _claim(aliases, self.ambiguous, alias, emp.id)

        self._index = dict(derived)
        self._index.update(aliases)
        for key, owner in aliases.items():
            if owner is not None:
                self.ambiguous.discard(key)

    def match(self, normalized_name: str) -> Optional[int]:
        return self._index.get(normalize_name(normalized_name))

    def __len__(self):
        return len(self._index)
