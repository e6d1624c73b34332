import os
import unittest

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from taskhub.db.session import Base
from taskhub.models.member import Member
from taskhub.models.project import Project
from taskhub.models.query import SavedQuery
from taskhub.models.user import User
from taskhub.models.work_package import WorkPackage
from taskhub.services.authorization import (
    MANAGE_PUBLIC_QUERIES,
    SAVE_QUERIES,
    VIEW_WORK_PACKAGES,
    AuthorizationContext,
)
from taskhub.services.query_errors import (
    AuthorizationError,
    QueryNotFoundError,
    QueryPermissionError,
    ValidationError,
)
from taskhub.services.query_fields import FieldRegistry
from taskhub.services.query_filters import Filter, Operator
from taskhub.services.query_model import (
    DisplayRepresentation,
    PageRequest,
    Query,
    QueryVisibility,
    SortCriterion,
    SortDirection,
)
from taskhub.services import saved_queries

REGISTRY = FieldRegistry()
ALICE = AuthorizationContext(
    user_id=1,
    per_project_permissions={1: frozenset({VIEW_WORK_PACKAGES, SAVE_QUERIES, MANAGE_PUBLIC_QUERIES})},
)
BOB = AuthorizationContext(user_id=2, per_project_permissions={1: frozenset({VIEW_WORK_PACKAGES, SAVE_QUERIES})})
CAROL = AuthorizationContext(user_id=4)
ADMIN = AuthorizationContext(user_id=3, is_admin=True)


def _open_bugs(**kwargs) -> Query:
    query = Query(name=kwargs.pop("name", "Open bugs"), **kwargs)
    query.add_filter(Filter("status_id", Operator.EQUALS, ("1",)))
    query.add_filter(Filter("assigned_to_id", Operator.EQUALS, ("me",)))
    query.set_sort([SortCriterion("due_date", SortDirection.DESC)])
    return query


class SavedQueryServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autocommit=False, autoflush=False)
        Base.metadata.create_all(bind=cls.engine)

    @classmethod
    def tearDownClass(cls):
        Base.metadata.drop_all(bind=cls.engine)
        cls.engine.dispose()

    def setUp(self):
        self.db = self.SessionLocal()
        for model in (SavedQuery, WorkPackage, Member, User, Project):
            self.db.execute(delete(model))
        self.db.add_all(
            [
                Project(id=1, identifier="alpha", name="Alpha"),
                Project(id=2, identifier="beta", name="Beta"),
                User(id=1, login="alice", name="Alice"),
                User(id=2, login="bob", name="Bob"),
                User(id=3, login="root", name="Root", admin=True),
                WorkPackage(id=1, project_id=1, subject="Crash", type_id=1, status_id=1, author_id=2, assigned_to_id=1),
                WorkPackage(id=2, project_id=1, subject="Typo", type_id=1, status_id=1, author_id=1, assigned_to_id=2),
            ]
        )
        self.db.commit()

    def tearDown(self):
        self.db.close()

    def test_create_stores_definition_for_the_caller(self):
        created = saved_queries.create_saved_query(self.db, _open_bugs(project_id=1, owner_id=99), ALICE, registry=REGISTRY)
        self.assertIsNotNone(created.id)
        self.assertEqual(created.owner_id, 1)
        self.assertFalse(created.starred)
        row = self.db.get(SavedQuery, created.id)
        self.assertEqual(row.filters[1], {"field": "assigned_to_id", "operator": "=", "values": ["me"]})
        self.assertEqual(row.sort_criteria, [["due_date", "desc"]])

    def test_create_requires_name(self):
        with self.assertRaises(ValidationError) as ctx:
            saved_queries.create_saved_query(self.db, Query(), ALICE, registry=REGISTRY)
        self.assertEqual(ctx.exception.fields, ["name"])

    def test_create_validates_definition(self):
        query = _open_bugs()
        query.add_filter(Filter("due_date", Operator.BETWEEN, ("2026-01-01",)))
        with self.assertRaises(ValidationError):
            saved_queries.create_saved_query(self.db, query, ALICE, registry=REGISTRY)
        self.assertEqual(self.db.execute(select(SavedQuery)).scalars().all(), [])

    def test_anonymous_can_not_save(self):
        with self.assertRaises(AuthorizationError):
            saved_queries.create_saved_query(self.db, _open_bugs(), AuthorizationContext.anonymous(), registry=REGISTRY)

    def test_saving_into_invisible_project_is_rejected(self):
        with self.assertRaises(ValidationError):
            saved_queries.create_saved_query(self.db, _open_bugs(project_id=2), ALICE, registry=REGISTRY)

    def test_publishing_needs_permission(self):
        with self.assertRaises(QueryPermissionError):
            saved_queries.create_saved_query(
                self.db, _open_bugs(project_id=1, visibility=QueryVisibility.PUBLIC), BOB, registry=REGISTRY
            )
        with self.assertRaises(QueryPermissionError):
            saved_queries.create_saved_query(
                self.db, _open_bugs(visibility=QueryVisibility.GLOBAL), ALICE, registry=REGISTRY
            )
        created = saved_queries.create_saved_query(
            self.db, _open_bugs(visibility=QueryVisibility.GLOBAL), ADMIN, registry=REGISTRY
        )
        self.assertEqual(created.visibility, QueryVisibility.GLOBAL)

    def test_private_queries_are_hidden_from_others(self):
        created = saved_queries.create_saved_query(self.db, _open_bugs(project_id=1), ALICE, registry=REGISTRY)
        with self.assertRaises(QueryNotFoundError):
            saved_queries.get_saved_query(self.db, created.id, BOB)
        self.assertEqual(saved_queries.get_saved_query(self.db, created.id, ADMIN).id, created.id)

    def test_list_visible_queries(self):
        saved_queries.create_saved_query(self.db, _open_bugs(name="b private", project_id=1), ALICE, registry=REGISTRY)
        saved_queries.create_saved_query(
            self.db,
            _open_bugs(name="a public", project_id=1, visibility=QueryVisibility.PUBLIC),
            ALICE,
            registry=REGISTRY,
        )
        saved_queries.create_saved_query(
            self.db, _open_bugs(name="c global", visibility=QueryVisibility.GLOBAL), ADMIN, registry=REGISTRY
        )

        alice = saved_queries.list_visible_queries(self.db, ALICE)
        self.assertEqual([q.name for q in alice.items], ["a public", "b private", "c global"])
        bob = saved_queries.list_visible_queries(self.db, BOB)
        self.assertEqual([q.name for q in bob.items], ["a public", "c global"])
        carol = saved_queries.list_visible_queries(self.db, CAROL)
        self.assertEqual([q.name for q in carol.items], ["c global"])

        page = saved_queries.list_visible_queries(self.db, ALICE, page=PageRequest(1, 1))
        self.assertEqual(page.total, 3)
        self.assertEqual([q.name for q in page.items], ["b private"])
        scoped = saved_queries.list_visible_queries(self.db, ALICE, project_id=1)
        self.assertEqual(scoped.total, 2)

    def test_public_query_without_project_needs_a_signed_in_caller(self):
        created = saved_queries.create_saved_query(
            self.db, _open_bugs(name="Shared", visibility=QueryVisibility.PUBLIC), ALICE, registry=REGISTRY
        )
        self.assertEqual([q.name for q in saved_queries.list_visible_queries(self.db, CAROL).items], ["Shared"])
        anonymous = AuthorizationContext.anonymous()
        self.assertEqual(saved_queries.list_visible_queries(self.db, anonymous).items, [])
        with self.assertRaises(QueryNotFoundError):
            saved_queries.get_saved_query(self.db, created.id, anonymous)

    def test_replace_overwrites_every_attribute(self):
        created = saved_queries.create_saved_query(self.db, _open_bugs(project_id=1), ALICE, registry=REGISTRY)
        saved_queries.star_query(self.db, created.id, ALICE)

        replacement = Query(
            name="Renamed",
            project_id=1,
            display_sums=True,
            include_subprojects=False,
            display_representation=DisplayRepresentation.BOARD,
            show_hierarchies=False,
            timestamps=["PT0S"],
        )
        replacement.set_columns(["subject", "estimated_hours"])
        replacement.set_group_by("status_id")
        updated = saved_queries.replace_saved_query(self.db, created.id, replacement, ALICE, registry=REGISTRY)

        self.assertEqual(updated.name, "Renamed")
        self.assertEqual(len(updated.filters), 0)
        self.assertEqual(updated.sort.criteria, [])
        self.assertEqual([ref.key for ref in updated.columns], ["subject", "estimated_hours"])
        self.assertEqual(updated.group_by.key, "status_id")
        self.assertTrue(updated.display_sums)
        self.assertFalse(updated.include_subprojects)
        self.assertIs(updated.display_representation, DisplayRepresentation.BOARD)
        self.assertFalse(updated.show_hierarchies)
        self.assertEqual(updated.timestamps, ["PT0S"])
        self.assertEqual(updated.owner_id, 1)
        self.assertTrue(updated.starred)

    def test_replace_is_owner_or_admin_only(self):
        created = saved_queries.create_saved_query(
            self.db, _open_bugs(project_id=1, visibility=QueryVisibility.PUBLIC), ALICE, registry=REGISTRY
        )
        with self.assertRaises(QueryPermissionError):
            saved_queries.replace_saved_query(self.db, created.id, _open_bugs(name="Mine now"), BOB, registry=REGISTRY)
        updated = saved_queries.replace_saved_query(
            self.db, created.id, _open_bugs(name="Admin edit", project_id=1), ADMIN, registry=REGISTRY
        )
        self.assertEqual(updated.name, "Admin edit")
        self.assertEqual(updated.owner_id, 1)

    def test_invalid_replacement_leaves_row_untouched(self):
        created = saved_queries.create_saved_query(self.db, _open_bugs(project_id=1), ALICE, registry=REGISTRY)
        broken = Query(name="Broken")
        broken.set_group_by("subject")
        with self.assertRaises(ValidationError):
            saved_queries.replace_saved_query(self.db, created.id, broken, ALICE, registry=REGISTRY)
        self.assertEqual(saved_queries.get_saved_query(self.db, created.id, ALICE).name, "Open bugs")

    def test_delete_removes_only_the_definition(self):
        created = saved_queries.create_saved_query(
            self.db, _open_bugs(project_id=1, visibility=QueryVisibility.PUBLIC), ALICE, registry=REGISTRY
        )
        with self.assertRaises(QueryPermissionError):
            saved_queries.delete_saved_query(self.db, created.id, BOB)
        saved_queries.delete_saved_query(self.db, created.id, ALICE)
        with self.assertRaises(QueryNotFoundError):
            saved_queries.get_saved_query(self.db, created.id, ALICE)
        self.assertEqual(len(self.db.execute(select(WorkPackage)).scalars().all()), 2)

    def test_star_and_unstar(self):
        created = saved_queries.create_saved_query(self.db, _open_bugs(project_id=1), ALICE, registry=REGISTRY)
        self.assertTrue(saved_queries.star_query(self.db, created.id, ALICE).starred)
        self.assertTrue(saved_queries.star_query(self.db, created.id, ALICE).starred)
        self.assertFalse(saved_queries.unstar_query(self.db, created.id, ALICE).starred)

    def test_executing_a_saved_query_binds_me_to_the_caller(self):
        created = saved_queries.create_saved_query(
            self.db, _open_bugs(project_id=1, visibility=QueryVisibility.PUBLIC), ALICE, registry=REGISTRY
        )
        _, for_alice = saved_queries.execute_saved_query(self.db, created.id, ALICE, registry=REGISTRY)
        _, for_bob = saved_queries.execute_saved_query(self.db, created.id, BOB, registry=REGISTRY)
        self.assertEqual([wp.id for wp in for_alice.items], [1])
        self.assertEqual([wp.id for wp in for_bob.items], [2])


if __name__ == "__main__":
    unittest.main()
