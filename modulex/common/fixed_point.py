# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Free / bound worklist shared by the template variables resolution and by the references resolution.

Entries are split in two maps: ``free`` entries are fully known, ``bound`` entries still refer to
other entries. Every pass attempts to rewrite each bound entry using only the free ones. An entry
whose rewrite no longer misses any name is promoted to free. The loop stops once a pass promotes
nothing, so it runs at most ``len(bound)`` passes.
"""

from __future__ import annotations

from typing import Callable, NamedTuple


class FixedPointResult(NamedTuple):
    """
    :ivar dict resolved: all the free entries after convergence
    :ivar dict unresolved: name -> (last rewritten value, frozenset of names it still misses)
    :ivar int iterations: number of passes performed
    """

    resolved: dict
    unresolved: dict
    iterations: int

    def cycles(self) -> list:
        """
        Groups the unresolved entries that depend on each other (strongly connected components).

        :return: list of sorted name lists, one per cycle
        :rtype: list[list[str]]
        """
        index_counter = [0]
        indexes = {}
        lowlinks = {}
        on_stack = set()
        stack = []
        components = []

        def edges(name):
            return sorted(
                missing for missing in self.unresolved[name][1] if missing in self.unresolved
            )

        def strongconnect(name):
            indexes[name] = index_counter[0]
            lowlinks[name] = index_counter[0]
            index_counter[0] += 1
            stack.append(name)
            on_stack.add(name)
            for target in edges(name):
                if target not in indexes:
                    strongconnect(target)
                    lowlinks[name] = min(lowlinks[name], lowlinks[target])
                elif target in on_stack:
                    lowlinks[name] = min(lowlinks[name], indexes[target])
            if lowlinks[name] == indexes[name]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == name:
                        break
                if len(component) > 1 or name in self.unresolved[name][1]:
                    components.append(sorted(component))

        for entry_name in sorted(self.unresolved):
            if entry_name not in indexes:
                strongconnect(entry_name)
        return sorted(components)

    def dangling(self) -> list:
        """
        References that are not part of a cycle. A reference to an entry left unresolved for
        another reason is skipped, the error is reported on that entry.

        :return: list of (name, missing name, whether the missing name is in a cycle)
        :rtype: list[tuple[str, str, bool]]
        """
        in_cycle = {name for cycle in self.cycles() for name in cycle}
        results = []
        for name in sorted(self.unresolved):
            for missing in sorted(self.unresolved[name][1]):
                is_bound = missing in self.unresolved
                if name in in_cycle and missing in in_cycle:
                    continue
                if is_bound and missing not in in_cycle:
                    continue
                results.append((name, missing, is_bound))
        return results


def solve_fixed_point(
    free: dict,
    bound: dict,
    rewrite: Callable[[str, object, dict], tuple],
) -> FixedPointResult:
    """
    Runs the free/bound promotion loop.

    :param dict free: entries already known
    :param dict bound: entries referencing other entries
    :param rewrite: callable(name, value, resolved) returning (new_value, set of missing names)
    :return: the resolved and unresolved entries
    :rtype: FixedPointResult
    """
    resolved = dict(free)
    pending = dict(bound)
    missing_names = {name: frozenset() for name in pending}
    iterations = 0
    progress = True
    while pending and progress:
        progress = False
        iterations += 1
        for name in list(pending):
            value, missing = rewrite(name, pending[name], resolved)
            if not missing:
                resolved[name] = value
                del pending[name]
                del missing_names[name]
                progress = True
            else:
                pending[name] = value
                missing_names[name] = frozenset(missing)
    return FixedPointResult(
        resolved,
        {name: (pending[name], missing_names[name]) for name in pending},
        iterations,
    )
