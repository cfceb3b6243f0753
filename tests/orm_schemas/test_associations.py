import pytest

from orm_schemas.associations import AssociationKind, DeclaredKind, parse_association_spec
from orm_schemas.config import RegistryConfig
from orm_schemas.exceptions import (
    AssociationSpecError,
    ConfigurationError,
    TableNotFoundError,
    ThroughTableConflictError,
    UnknownAssociationKindError,
    WiringError,
)
from orm_schemas.registry import SchemaRegistry
from orm_schemas.schema.definition import ModelDefinition

USER_SCHEMA = """
attributes = {"name": "string"}
"""

POST_SCHEMA = """
attributes = {"title": "string"}
associations = {"one_to_many": ["User"]}
"""


@pytest.fixture
def blog_dir(tmp_path):
    (tmp_path / "User.py").write_text(USER_SCHEMA)
    (tmp_path / "Post.py").write_text(POST_SCHEMA)
    return tmp_path


def definitions(**schemas):
    return [ModelDefinition.from_mapping(name, schema) for name, schema in schemas.items()]


def test_one_to_many_from_schema_files(blog_dir):
    registry = SchemaRegistry.from_config(RegistryConfig.from_options({"schemas_dir": blog_dir}))
    User, Post = registry["User"], registry["Post"]

    assert registry.table_names == ["Post", "User"]
    forward, reverse = Post.__edges__["user"], User.__edges__["posts"]
    assert forward.kind is AssociationKind.BELONGS_TO
    assert forward.target is User
    assert forward.foreign_key == "user_id"
    assert forward.reverse == "posts"
    assert reverse.kind is AssociationKind.HAS_MANY
    assert reverse.target is Post
    assert reverse.foreign_key == "user_id"

    fk = next(iter(Post.__table__.c.user_id.foreign_keys))
    assert fk.target_fullname == "user.id"
    assert fk.ondelete == "SET NULL"

    registry.base.registry.configure()
    assert Post.__mapper__.relationships["user"].back_populates == "posts"
    assert User.__mapper__.relationships["posts"].uselist is True


def test_one_to_one_reverse_is_scalar():
    registry = SchemaRegistry(
        definitions=definitions(
            Person={"attributes": {"name": "string"}},
            Passport={"attributes": {"number": "string"}, "associations": {"oneToOne": "Person"}},
        )
    )

    reverse = registry["Person"].__edges__["passport"]
    assert reverse.kind is AssociationKind.HAS_ONE
    registry.base.registry.configure()
    assert registry["Person"].__mapper__.relationships["passport"].uselist is False


def test_accessor_and_foreign_key_options():
    registry = SchemaRegistry(
        definitions=definitions(
            User={"attributes": {"name": "string"}},
            Post={
                "attributes": {"title": "string"},
                "associations": {
                    "one_to_many": [("User", {"as": "author", "foreign_key": "written_by"}, {"as": "writings"})]
                },
            },
        )
    )

    edge = registry["Post"].__edges__["author"]
    assert edge.foreign_key == "written_by"
    assert "written_by" in registry["Post"].__table__.c
    assert registry["User"].__edges__["writings"].reverse == "author"


def test_disabled_reverse_installs_forward_edge_only():
    registry = SchemaRegistry(
        definitions=definitions(
            User={"attributes": {"name": "string"}},
            Post={"attributes": {"title": "string"}, "associations": {"one_to_many": [("User", {}, None)]}},
        )
    )

    assert set(registry["Post"].__edges__) == {"user"}
    assert registry["User"].__edges__ == {}
    assert [repr(edge) for edge in registry.edges] == ["<Post.user belongs_to User>"]


def test_self_referential_association():
    registry = SchemaRegistry(
        definitions=definitions(
            Category={
                "attributes": {"name": "string"},
                "associations": {"one_to_many": [("Category", {"as": "parent"}, {"as": "children"})]},
            }
        )
    )
    Category = registry["Category"]

    assert Category.__edges__["parent"].foreign_key == "parent_id"
    assert Category.__edges__["children"].kind is AssociationKind.HAS_MANY
    registry.base.registry.configure()


def test_many_to_many_through_registered_model(shop_registry):
    Item, Tag, ItemTag = shop_registry["Item"], shop_registry["Tag"], shop_registry["ItemTag"]

    forward, reverse = Tag.__edges__["items"], Item.__edges__["tags"]
    assert forward.kind is reverse.kind is AssociationKind.BELONGS_TO_MANY
    assert forward.through is reverse.through is ItemTag.__table__
    assert forward.through_model is ItemTag
    assert forward.through_name == "ItemTag"
    assert (forward.foreign_key, forward.other_key) == ("tag_id", "item_id")
    assert (reverse.foreign_key, reverse.other_key) == ("item_id", "tag_id")
    assert {"tag_id", "item_id", "weight"} <= set(ItemTag.__table__.c.keys())


def test_many_to_many_through_given_on_reverse_side_only():
    registry = SchemaRegistry(
        definitions=definitions(
            Student={"attributes": {"name": "string"}},
            Enrollment={"attributes": {"grade": "integer"}},
            Course={
                "attributes": {"title": "string"},
                "associations": {"many_to_many": [("Student", {}, {"through": "Enrollment"})]},
            },
        )
    )

    assert registry["Course"].__edges__["students"].through_model is registry["Enrollment"]
    assert registry["Student"].__edges__["courses"].through_model is registry["Enrollment"]


def test_many_to_many_plain_join_table():
    registry = SchemaRegistry(
        definitions=definitions(
            Book={"attributes": {"title": "string"}, "associations": {"many_to_many": [("Author", {"through": "book_authors"})]}},
            Author={"attributes": {"name": "string"}},
        )
    )

    join = registry.metadata.tables["book_authors"]
    assert set(join.c.keys()) == {"book_id", "author_id"}
    assert registry["Book"].__edges__["authors"].through_model is None
    assert registry["Book"].__edges__["authors"].through_name == "book_authors"


def test_many_to_many_declared_on_both_sides_is_wired_once():
    registry = SchemaRegistry(
        definitions=definitions(
            Book={"attributes": {"title": "string"}, "associations": {"many_to_many": [("Author", {"through": "BookAuthor"})]}},
            Author={"attributes": {"name": "string"}, "associations": {"many_to_many": [("Book", {"through": "BookAuthor"})]}},
            BookAuthor={"attributes": {"position": "integer"}},
        )
    )

    assert len(registry.edges) == 2
    registry.base.registry.configure()


def test_conflicting_through_tables_wire_nothing():
    registry = SchemaRegistry(
        definitions=definitions(
            Student={"attributes": {"name": "string"}},
            Course={"attributes": {"title": "string"}},
            Enrollment={"attributes": {"grade": "integer"}},
            Attendance={"attributes": {"hours": "integer"}},
        )
    )

    with pytest.raises(ThroughTableConflictError) as exc_info:
        registry.wire_association("Course", "many_to_many", ("Student", {"through": "Enrollment"}, {"through": "Attendance"}))

    assert "Enrollment" in str(exc_info.value)
    assert "Attendance" in str(exc_info.value)
    assert registry["Course"].__edges__ == {}
    assert registry["Student"].__edges__ == {}
    assert not registry["Course"].__mapper__.has_property("students")
    assert "course_id" not in registry["Enrollment"].__table__.c


def test_camel_case_edge_options():
    registry = SchemaRegistry(
        definitions=definitions(
            User={"attributes": {"name": "string"}},
            Post={
                "attributes": {"title": "string"},
                "associations": {"one_to_many": [("User", {"onDelete": "CASCADE", "foreignKey": "owner_id"})]},
            },
        )
    )

    assert registry["Post"].__edges__["user"].foreign_key == "owner_id"
    fk = next(iter(registry["Post"].__table__.c.owner_id.foreign_keys))
    assert fk.ondelete == "CASCADE"


@pytest.mark.parametrize(
    "options, match",
    [
        ({"lazzy": "joined"}, "Unknown association option"),
        ({"cascade": "explode"}, "Invalid relationship to User"),
    ],
)
def test_bad_edge_option_wires_nothing(options, match):
    registry = SchemaRegistry(
        definitions=definitions(User={"attributes": {"name": "string"}}, Post={"attributes": {"title": "string"}})
    )

    with pytest.raises(ConfigurationError, match=match) as exc_info:
        registry.wire_association("Post", "one_to_many", ("User", options))

    assert isinstance(exc_info.value, WiringError)
    assert exc_info.value.schema_name == "Post"
    assert "user_id" not in registry["Post"].__table__.c
    assert registry["Post"].__edges__ == {}
    assert registry["User"].__edges__ == {}
    assert not registry["Post"].__mapper__.has_property("user")
    assert not registry["User"].__mapper__.has_property("posts")


def test_bad_reverse_option_on_many_to_many_wires_nothing():
    registry = SchemaRegistry(
        definitions=definitions(
            Student={"attributes": {"name": "string"}},
            Course={"attributes": {"title": "string"}},
        )
    )

    with pytest.raises(ConfigurationError, match="Invalid relationship to Course"):
        registry.wire_association(
            "Course", "many_to_many", ("Student", {"through": "enrollments"}, {"cascade": "explode"})
        )

    assert "enrollments" not in registry.metadata.tables
    assert registry["Course"].__edges__ == {}
    assert registry["Student"].__edges__ == {}
    assert not registry["Course"].__mapper__.has_property("students")


def test_many_to_many_without_through_is_rejected():
    registry = SchemaRegistry(definitions=definitions(Student={"attributes": {"name": "string"}}, Course={"attributes": {"title": "string"}}))

    with pytest.raises(ConfigurationError, match="through"):
        registry.wire_association("Course", "many_to_many", "Student")


def test_unknown_target_lists_registered_names():
    with pytest.raises(TableNotFoundError) as exc_info:
        SchemaRegistry(
            definitions=definitions(
                User={"attributes": {"name": "string"}},
                Post={"attributes": {"title": "string"}, "associations": {"one_to_many": ["Usr"]}},
            )
        )

    error = exc_info.value
    assert isinstance(error, LookupError)
    assert error.known_tables == ["User", "Post"]
    assert error.schema_name == "Post"
    assert error.association_spec == "Usr"
    assert "There is no table named Usr, allowed names are:\n\tUser\n\tPost" in str(error)
    assert 'associations with "Usr"' in str(error)


def test_annotation_names_schema_file(blog_dir):
    (blog_dir / "Comment.py").write_text('attributes = {"body": "text"}\nassociations = {"one_to_many": ["Article"]}\n')

    with pytest.raises(WiringError) as exc_info:
        SchemaRegistry.from_config(RegistryConfig.from_options({"schemas_dir": blog_dir}))

    assert exc_info.value.source == (blog_dir / "Comment.py").resolve()
    assert f"at {(blog_dir / 'Comment.py').resolve()}" in str(exc_info.value)


def test_unknown_association_kind():
    registry = SchemaRegistry(definitions=definitions(User={"attributes": {"name": "string"}}))

    with pytest.raises(UnknownAssociationKindError, match="one_to_few associations are not available"):
        registry.wire_association("User", "one_to_few", "User")


def test_accessor_clash_is_rejected():
    registry = SchemaRegistry(
        definitions=definitions(
            User={"attributes": {"name": "string"}},
            Post={"attributes": {"title": "string", "user": "string"}},
        )
    )

    with pytest.raises(ConfigurationError, match="already has an attribute"):
        registry.wire_association("Post", "one_to_many", "User")
    assert registry["User"].__edges__ == {}


def test_declared_kind_parse_accepts_camel_case():
    assert DeclaredKind.parse("manyToMany") is DeclaredKind.MANY_TO_MANY
    assert DeclaredKind.parse("one_to_one") is DeclaredKind.ONE_TO_ONE
    assert DeclaredKind.parse(DeclaredKind.ONE_TO_MANY) is DeclaredKind.ONE_TO_MANY


@pytest.mark.parametrize(
    "spec, expected",
    [
        ("User", ("User", {}, {})),
        (("User",), ("User", {}, {})),
        (["User", {"as": "owner"}], ("User", {"as": "owner"}, {})),
        (("User", None, False), ("User", {}, None)),
        (("User", {}, True), ("User", {}, {})),
        ({"table": "User", "options": {"as": "owner"}, "reverseOptions": {"as": "things"}}, ("User", {"as": "owner"}, {"as": "things"})),
        ({"table": "User", "reverse_options": None}, ("User", {}, None)),
    ],
)
def test_parse_association_spec(spec, expected):
    parsed = parse_association_spec(spec)

    assert (parsed.table, parsed.options, parsed.reverse_options) == expected


@pytest.mark.parametrize("spec", [42, (), ("User", {}, {}, {}), ("User", "as"), {"name": "User"}])
def test_parse_association_spec_rejects_other_shapes(spec):
    with pytest.raises(AssociationSpecError) as exc_info:
        parse_association_spec(spec)

    assert isinstance(exc_info.value, TypeError)
