"""
Tests for TaskGraph: child index, parent lookup and cycle detection.
"""
import uuid

import pytest

from service import CyclicDependencyError, TaskGraph, UnknownTaskError


class TestIndex:
    """Children and parent lookups."""

    def test_children_in_input_order(self, make_task):
        """Children are returned in the order the tasks were supplied."""
        a = make_task()
        b = make_task(dependency=a)
        c = make_task(dependency=a)
        graph = TaskGraph([a, c, b])
        assert [t.id for t in graph.children_of(a.id)] == [c.id, b.id]

    def test_leaf_has_no_children(self, make_task):
        a = make_task()
        b = make_task(dependency=a)
        graph = TaskGraph([a, b])
        assert graph.children_of(b.id) == []

    def test_parent_of(self, make_task):
        a = make_task()
        b = make_task(dependency=a)
        graph = TaskGraph([a, b])
        assert graph.parent_of(b.id) is a
        assert graph.parent_of(a.id) is None

    def test_unknown_task_raises(self, make_task):
        graph = TaskGraph([make_task()])
        with pytest.raises(UnknownTaskError):
            graph.get(uuid.uuid4())

    def test_empty_graph(self):
        graph = TaskGraph([])
        assert len(graph) == 0
        assert graph.project_id is None


class TestValidation:
    """Snapshot consistency checks."""

    def test_mixed_projects_rejected(self, make_task):
        with pytest.raises(ValueError):
            TaskGraph([make_task(), make_task(project_id=uuid.uuid4())])

    def test_duplicate_ids_rejected(self, make_task):
        a = make_task()
        with pytest.raises(ValueError):
            TaskGraph([a, a])

    def test_dangling_dependency_is_recorded(self, make_task):
        """A dependency on a missing task is reported and the task becomes a root."""
        missing = uuid.uuid4()
        a = make_task(dependency=missing)
        graph = TaskGraph([a])
        assert len(graph.dangling) == 1
        assert graph.dangling[0].task_id == a.id
        assert graph.dangling[0].missing_dependency_id == missing
        assert graph.parent_of(a.id) is None


class TestCycles:
    """Cycle detection on existing edges and on proposed edges."""

    def test_ancestors_nearest_first(self, make_task):
        a = make_task()
        b = make_task(dependency=a)
        c = make_task(dependency=b)
        graph = TaskGraph([a, b, c])
        assert [t.id for t in graph.ancestors(c.id)] == [b.id, a.id]

    def test_existing_cycle_detected(self, make_task):
        a = make_task()
        b = make_task(dependency=a)
        a.dependency = b.id
        graph = TaskGraph([a, b])
        with pytest.raises(CyclicDependencyError):
            graph.validate_acyclic()

    def test_would_create_cycle(self, make_task):
        a = make_task()
        b = make_task(dependency=a)
        c = make_task(dependency=b)
        graph = TaskGraph([a, b, c])
        assert graph.would_create_cycle(a.id, c.id)
        assert graph.would_create_cycle(a.id, a.id)
        assert not graph.would_create_cycle(c.id, a.id)
