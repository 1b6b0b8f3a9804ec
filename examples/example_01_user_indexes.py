"""Example 01: Materialized indexes over a user table.

This example demonstrates:
- Wrapping a pydantic model in a codec
- Registering secondary indexes with predicates and sort keys
- Writing values and reading them back from each index
- Range scans and property lookups
"""

from pathlib import Path

from pydantic import BaseModel

from fattable import IndexDefinition, TableContext, pydantic_codec


class User(BaseModel):
    """A user account."""

    id: str
    name: str
    status: str = "Active"
    city: str = ""
    age: int = 0


def main():
    """Run the user index example."""
    print("=" * 80)
    print("FATTABLE USER INDEX EXAMPLE")
    print("=" * 80)

    Path("tmp").mkdir(exist_ok=True)
    ctx = TableContext.open(pydantic_codec(User), storage_uri="sqlite:///tmp/users.db")
    print(f"\n✓ Table opened: {ctx.table_name}")

    # Every user lands in the default index; active users also land in ActiveUsers.
    ctx.create_index("ActiveUsers").where(lambda u: u.status == "Active")
    ctx.add_index(
        IndexDefinition("ByCity")
        .sorted_by(lambda u: f"{u.city}|{u.id}")
        .indexing(lambda u: u.city)
        .projecting("age", lambda u: u.age)
    )

    print("\nSaving users...")
    report = ctx.save(
        [
            User(id="u1", name="Ada", city="London", age=36),
            User(id="u2", name="Bob", status="Archived", city="Oslo", age=41),
            User(id="u3", name="Cy", city="London", age=29),
        ]
    ).raise_for_failures()
    print(f"✓ Wrote {len(report.succeeded_records)} index records")

    print("\n1. All users:")
    for user in ctx.get_all():
        print(f"   - {user.id}: {user.name} ({user.status})")

    print("\n2. Active users:")
    for user in ctx.get_from_index("ActiveUsers"):
        print(f"   - {user.id}: {user.name}")

    print("\n3. Users in London (indexed value lookup):")
    for user in ctx.get_by_indexed_value("ByCity", "London"):
        print(f"   - {user.id}: {user.name}")

    print("\n4. Sort key range u1..u2 on the default index:")
    for user in ctx.get_range(None, "u1", "u2"):
        print(f"   - {user.id}")

    print("\n5. Users aged 41:")
    for user in ctx.get_where("ByCity", "age", 41):
        print(f"   - {user.id}: {user.name}")

    ctx.close()
    print("\nDatabase file: tmp/users.db")
    print("=" * 80)


if __name__ == "__main__":
    main()
